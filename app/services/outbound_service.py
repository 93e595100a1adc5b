from sqlalchemy.orm import Session

from app.config import settings
from app.logging_config import get_logger
from app.models import Contact, Conversation, Message
from app.services import provider_service
from app.services.conversation_service import record_outbound_activity
from app.services.message_service import (
    DIRECTION_OUTBOUND,
    SENDER_AGENT,
    find_by_client_id,
    persist_message,
)
from app.services.payload_service import build_preview
from app.services.result import Result
from app.services.state_machine import MessageStatus

logger = get_logger("outbound_service")


def send_conversation_message(
    db: Session,
    conversation: Conversation,
    *,
    text: str | None = None,
    media_type: str | None = None,
    file: str | None = None,
    client_message_id: str | None = None,
    http_client=None,
) -> Result[Message]:
    """Send through the provider and store the outbound row (sent, or failed).

    A repeated ``client_message_id`` returns the stored row without sending again.
    """
    if client_message_id:
        existing = find_by_client_id(db, client_message_id)
        if existing is not None:
            return Result.success(existing)

    contact = db.query(Contact).filter(Contact.id == conversation.contact_id).first()
    if contact is None:
        return Result.failure("Conversation has no contact", code="missing_contact")

    if file:
        send_result = provider_service.send_media(
            contact.phone, media_type=media_type or "document", file=file, caption=text, client=http_client
        )
        message_type = (media_type or "document").lower()
    else:
        send_result = provider_service.send_text(contact.phone, text or "", client=http_client)
        message_type = "text"

    status = MessageStatus.SENT if send_result.ok else MessageStatus.FAILED
    message, created = persist_message(
        db,
        conversation_id=conversation.id,
        contact_id=contact.id,
        clinic_id=conversation.clinic_id,
        direction=DIRECTION_OUTBOUND,
        sender_type=SENDER_AGENT,
        content=text,
        status=status,
        message_type=message_type,
        media_url=file if file and file.startswith(("http://", "https://")) else None,
        provider_message_id=send_result.value if send_result.ok else None,
        client_message_id=client_message_id,
    )
    if not created:
        logger.info(
            "Concurrent send stored this client_message_id first",
            extra={"context": {"client_message_id": client_message_id, "message_id": str(message.id)}},
        )
    record_outbound_activity(db, conversation, preview=build_preview(text or message_type, settings.message_preview_chars))
    db.commit()

    logger.info(
        "Outbound message stored",
        extra={
            "context": {
                "conversation_id": str(conversation.id),
                "message_id": str(message.id),
                "status": status.value,
                "client_message_id": client_message_id,
                "error": send_result.error,
            }
        },
    )
    return send_result.with_value(message)
