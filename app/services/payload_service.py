"""Field extraction from provider webhook payloads.

The provider does not publish a fixed schema, so every field is scanned from a
priority-ordered list of aliases. Nothing here touches storage or the network.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping

from app.services.state_machine import MessageStatus

MESSAGE_EVENT = "messages"
STATUS_EVENT = "messages_update"

DEFAULT_CONTENT = "Mídia/Outro"
MEDIA_TYPES = ("image", "audio", "video", "document", "sticker")

MESSAGE_ID_FIELDS = ("id", "messageid", "messageId", "wa_id")
CONTENT_FIELDS = ("text", "content", "body", "caption")
NAME_PATHS = ("senderName", "notifyName", "name", "chat.name", "chat.pushName")
AVATAR_PATHS = (
    "senderPhoto",
    "profilePicture",
    "avatar",
    "chat.imagePreview",
    "chat.image",
    "chat.pic",
    "chat.profilePicture",
    "sender.profilePicture",
    "sender.avatar",
)
MEDIA_URL_FALLBACK_FIELDS = ("mediaUrl", "fileUrl", "downloadUrl")

PROVIDER_STATUS_MAP = {
    "pending": MessageStatus.PENDING,
    "sent": MessageStatus.SENT,
    "serverack": MessageStatus.SENT,
    "delivered": MessageStatus.DELIVERED,
    "deliveryack": MessageStatus.DELIVERED,
    "read": MessageStatus.READ,
    "played": MessageStatus.READ,
    "failed": MessageStatus.FAILED,
    "error": MessageStatus.FAILED,
}


@dataclass
class InboundMessage:
    provider_message_id: str | None
    content: str
    message_type: str = "text"
    media_url: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None
    node: dict = field(default_factory=dict, repr=False)

    @property
    def has_relocatable_media(self) -> bool:
        return self.message_type in MEDIA_TYPES and is_http_url(self.media_url)


@dataclass
class StatusUpdate:
    provider_message_id: str
    status: MessageStatus


def _text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list, tuple, bool)):
        return None
    text = str(value).strip()
    return text or None


def get_path(node: Mapping[str, Any], path: str) -> Any:
    """Read a dotted path (``chat.name``) from nested mappings, None when any hop is missing."""
    current: Any = node
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def first_text(node: Mapping[str, Any], paths: tuple[str, ...]) -> str | None:
    for path in paths:
        value = _text(get_path(node, path))
        if value:
            return value
    return None


def is_http_url(value: str | None) -> bool:
    return bool(value) and value.lower().startswith(("http://", "https://"))


def extract_message_node(body: Mapping[str, Any]) -> dict | None:
    """Return the message node of a ``messages`` delivery, or None when it should be ignored."""
    message = body.get("message")
    if body.get("EventType") != MESSAGE_EVENT and not message:
        return None
    if isinstance(message, dict):
        return message
    return dict(body)


def is_own_echo(node: Mapping[str, Any]) -> bool:
    return bool(node.get("fromMe") or node.get("wasSentByApi"))


def extract_provider_message_id(node: Mapping[str, Any]) -> str | None:
    return first_text(node, MESSAGE_ID_FIELDS)


def extract_media(node: Mapping[str, Any]) -> tuple[str, str | None]:
    """Detect the message type and the remote media URL, ``("text", None)`` for plain text."""
    for media_type in MEDIA_TYPES:
        typed = node.get(media_type)
        wrapped = node.get(f"{media_type}Message")
        if not (typed or wrapped or node.get("type") == media_type):
            continue
        url = (
            first_text(node, (f"{media_type}.url", f"{media_type}Message.url"))
            or first_text(node, MEDIA_URL_FALLBACK_FIELDS)
        )
        return media_type, url
    return "text", None


def parse_inbound(node: Mapping[str, Any]) -> InboundMessage:
    message_type, media_url = extract_media(node)
    return InboundMessage(
        provider_message_id=extract_provider_message_id(node),
        content=first_text(node, CONTENT_FIELDS) or DEFAULT_CONTENT,
        message_type=message_type,
        media_url=media_url,
        display_name=first_text(node, NAME_PATHS),
        avatar_url=first_text(node, AVATAR_PATHS),
        node=dict(node),
    )


def fallback_display_name(phone: str) -> str:
    return f"Contato {phone}"


def build_preview(content: str | None, limit: int = 50) -> str:
    return (content or "")[:limit]


def extract_status_update(body: Mapping[str, Any]) -> StatusUpdate | None:
    """Parse a ``messages_update`` delivery into a status transition request."""
    if body.get("EventType") != STATUS_EVENT:
        return None
    node = body.get("event") if isinstance(body.get("event"), dict) else body.get("message")
    if not isinstance(node, dict):
        node = dict(body)

    message_id = first_text(node, MESSAGE_ID_FIELDS) or first_text(node, ("MessageIDs",))
    if not message_id and isinstance(node.get("MessageIDs"), list) and node["MessageIDs"]:
        message_id = _text(node["MessageIDs"][0])
    raw_status = first_text(node, ("status", "Type", "state"))
    if not message_id or not raw_status:
        return None

    status = PROVIDER_STATUS_MAP.get(raw_status.replace("_", "").lower())
    if status is None:
        return None
    return StatusUpdate(provider_message_id=message_id, status=status)
