from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from app.database import insert_or_ignore
from app.logging_config import get_logger
from app.models import Message
from app.services.errors import StorageConflictError
from app.services.state_machine import InvalidTransitionError, MessageStatus, transition_message

logger = get_logger("message_service")

DIRECTION_INBOUND = "inbound"
DIRECTION_OUTBOUND = "outbound"
SENDER_CONTACT = "contact"
SENDER_AGENT = "agent"


def find_by_provider_id(db: Session, provider_message_id: str) -> Message | None:
    return db.query(Message).filter(Message.provider_message_id == provider_message_id).first()


def find_by_client_id(db: Session, client_message_id: str) -> Message | None:
    return db.query(Message).filter(Message.client_message_id == client_message_id).first()


def persist_message(
    db: Session,
    *,
    conversation_id: UUID,
    contact_id: UUID,
    clinic_id: UUID,
    direction: str,
    sender_type: str,
    content: str | None,
    status: MessageStatus,
    message_type: str = "text",
    media_url: str | None = None,
    provider_message_id: str | None = None,
    client_message_id: str | None = None,
) -> tuple[Message, bool]:
    """Store one message, at most once per provider id. Returns (message, created).

    Without a provider id (or client correlation id) this is a plain insert and
    a redelivery creates a second row.
    """
    now = datetime.now(timezone.utc)
    values = {
        "conversation_id": conversation_id,
        "contact_id": contact_id,
        "clinic_id": clinic_id,
        "direction": direction,
        "sender_type": sender_type,
        "message_type": message_type,
        "content": content,
        "media_url": media_url,
        "provider_message_id": provider_message_id,
        "client_message_id": client_message_id,
        "status": status.value,
        "created_at": now,
        "updated_at": now,
    }

    if not (provider_message_id or client_message_id):
        message = Message(**values)
        db.add(message)
        db.flush()
        return message, True

    # No conflict target: a repeat on either unique id is a no-op. The client
    # correlation id is re-read first.
    created = insert_or_ignore(db, Message, values, None)
    message = None
    if client_message_id:
        key_column, key = "client_message_id", client_message_id
        message = find_by_client_id(db, client_message_id)
    if message is None and provider_message_id:
        key_column, key = "provider_message_id", provider_message_id
        message = find_by_provider_id(db, provider_message_id)
    if message is None:
        raise StorageConflictError(
            "message_conflict_unresolved",
            stage="message",
            message=f"message {key_column}={key} neither inserted nor found",
        )
    if not created:
        logger.info(
            "Message already stored, insert skipped",
            extra={"context": {key_column: key, "message_id": str(message.id)}},
        )
    return message, created


def set_status(db: Session, message: Message, new_status: MessageStatus) -> bool:
    """Apply a status transition. Invalid or backwards transitions are logged and ignored."""
    current = MessageStatus(message.status)
    if current == new_status:
        return False
    try:
        message.status = transition_message(current, new_status).value
    except InvalidTransitionError as e:
        logger.info(
            "Ignoring message status transition",
            extra={"context": {"message_id": str(message.id), "error": str(e)}},
        )
        return False
    message.updated_at = datetime.now(timezone.utc)
    db.flush()
    return True


def apply_provider_status(db: Session, provider_message_id: str, new_status: MessageStatus) -> Message | None:
    message = find_by_provider_id(db, provider_message_id)
    if message is None:
        logger.info(
            "Status update for unknown message",
            extra={"context": {"provider_message_id": provider_message_id, "status": new_status.value}},
        )
        return None
    set_status(db, message, new_status)
    return message


def list_recent_messages(db: Session, conversation_id: UUID, limit: int = 50) -> list[Message]:
    """Most recent ``limit`` messages of a conversation, oldest first."""
    rows = (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(rows))
