from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.database import insert_or_ignore
from app.logging_config import get_logger
from app.models import Conversation
from app.services.errors import StorageConflictError
from app.services.state_machine import ConversationStatus, reopen, transition_conversation

logger = get_logger("conversation_service")


def find_conversation(db: Session, clinic_id: UUID, contact_id: UUID) -> Conversation | None:
    return (
        db.query(Conversation)
        .filter(Conversation.clinic_id == clinic_id, Conversation.contact_id == contact_id)
        .first()
    )


def get_conversation(db: Session, conversation_id: UUID) -> Conversation | None:
    return db.query(Conversation).filter(Conversation.id == conversation_id).first()


def _insert_conversation(db: Session, *, clinic_id: UUID, contact_id: UUID, **fields) -> bool:
    now = datetime.now(timezone.utc)
    values = {
        "clinic_id": clinic_id,
        "contact_id": contact_id,
        "channel_type": "whatsapp",
        "status": ConversationStatus.OPEN.value,
        "unread_count": 0,
        "created_at": now,
        "updated_at": now,
    }
    values.update(fields)
    return insert_or_ignore(db, Conversation, values, ["clinic_id", "contact_id"])


def _reread(db: Session, clinic_id: UUID, contact_id: UUID) -> Conversation:
    conversation = find_conversation(db, clinic_id, contact_id)
    if conversation is None:
        raise StorageConflictError(
            "conversation_conflict_unresolved",
            stage="conversation",
            message=f"conversation for contact {contact_id} neither inserted nor found",
        )
    return conversation


def bump_for_inbound(db: Session, conversation: Conversation, *, preview: str) -> Conversation:
    """Increment unread_count in SQL and refresh timestamp/preview. Reopens a closed conversation."""
    now = datetime.now(timezone.utc)
    values = {
        "unread_count": Conversation.unread_count + 1,
        "last_message_at": now,
        "last_message_preview": preview,
        "updated_at": now,
    }
    current = ConversationStatus(conversation.status)
    if current == ConversationStatus.CLOSED:
        values["status"] = reopen(current).value

    db.execute(
        update(Conversation)
        .where(Conversation.id == conversation.id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.refresh(conversation)
    return conversation


def ensure_conversation(
    db: Session,
    *,
    clinic_id: UUID,
    contact_id: UUID,
    lead_status: str | None = None,
    inbox_conversation_id: str | None = None,
) -> tuple[Conversation, bool]:
    """Find-or-create the contact's conversation without touching the unread counter.

    Inbound deliveries call ``bump_for_inbound`` afterwards, once the message row
    is known to be new, so a freshly created conversation ends up with unread_count=1.
    """
    conversation = find_conversation(db, clinic_id, contact_id)
    created = False
    if conversation is None:
        created = _insert_conversation(
            db,
            clinic_id=clinic_id,
            contact_id=contact_id,
            lead_status=lead_status,
            inbox_conversation_id=inbox_conversation_id,
        )
        conversation = _reread(db, clinic_id, contact_id)
        if created:
            logger.info(
                "Conversation created",
                extra={"context": {"conversation_id": str(conversation.id), "contact_id": str(contact_id)}},
            )
            return conversation, True

    changed = False
    if inbox_conversation_id and conversation.inbox_conversation_id != inbox_conversation_id:
        conversation.inbox_conversation_id = inbox_conversation_id
        changed = True
    if lead_status and not conversation.lead_status:
        conversation.lead_status = lead_status
        changed = True
    if changed:
        conversation.updated_at = datetime.now(timezone.utc)
        db.flush()
    return conversation, created


def record_outbound_activity(db: Session, conversation: Conversation, *, preview: str) -> Conversation:
    now = datetime.now(timezone.utc)
    conversation.last_message_at = now
    conversation.last_message_preview = preview
    conversation.updated_at = now
    db.flush()
    return conversation


def mark_read(db: Session, conversation: Conversation) -> Conversation:
    conversation.unread_count = 0
    conversation.updated_at = datetime.now(timezone.utc)
    db.flush()
    return conversation


def change_status(db: Session, conversation: Conversation, new_status: ConversationStatus) -> Conversation:
    """Apply a status transition. Raises InvalidTransitionError if not allowed."""
    conversation.status = transition_conversation(ConversationStatus(conversation.status), new_status).value
    conversation.updated_at = datetime.now(timezone.utc)
    db.flush()
    return conversation
