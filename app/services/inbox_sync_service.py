"""Mirror of agent-inbox events (contact/conversation created) into the local store."""

from typing import Any

from sqlalchemy.orm import Session

from app.config import settings
from app.logging_config import get_logger
from app.models import Clinic
from app.services.contact_service import reconcile_contact
from app.services.conversation_service import ensure_conversation
from app.services.payload_service import fallback_display_name, first_text
from app.services.phone_service import resolve_phone

logger = get_logger("inbox_sync_service")

EVENT_CONTACT_CREATED = "contact_created"
EVENT_CONVERSATION_CREATED = "conversation_created"
NEW_LEAD_STATUS = "novo"


class InboxSyncError(Exception):
    def __init__(self, message: str, code: str = "sync_error"):
        self.code = code
        super().__init__(message)


def _event_entity(event: dict[str, Any], key: str) -> dict[str, Any] | None:
    entity = event.get(key)
    if not isinstance(entity, dict):
        payload = event.get("payload") if isinstance(event.get("payload"), dict) else {}
        entity = payload.get(key)
    if not isinstance(entity, dict) and event.get("event") and "id" in event:
        # Some webhook versions send the entity fields at the top level.
        entity = event
    return entity if isinstance(entity, dict) else None


def _resolve_event_phone(raw_phone: str | None) -> str:
    resolution = resolve_phone({"phone": raw_phone}, settings.domestic_country_code)
    if not resolution.accepted:
        raise InboxSyncError("Phone number not found", code=resolution.reason or "no_phone")
    return resolution.phone


async def handle_contact_created(db: Session, clinic: Clinic, event: dict[str, Any]) -> dict[str, Any]:
    contact_data = _event_entity(event, "contact")
    if contact_data is None:
        raise InboxSyncError("Contact data not found", code="missing_contact")

    phone = _resolve_event_phone(first_text(contact_data, ("phone_number", "phone")))
    contact = await reconcile_contact(
        db,
        clinic_id=clinic.id,
        phone=phone,
        display_name=first_text(contact_data, ("name",)),
        fallback_name=fallback_display_name(phone),
        country_code=settings.domestic_country_code,
    )
    db.commit()
    return {
        "success": True,
        "action": "contact_synced",
        "contact_id": str(contact.id),
        "patient_id": str(contact.patient_id) if contact.patient_id else None,
        "phone": phone,
    }


async def handle_conversation_created(db: Session, clinic: Clinic, event: dict[str, Any]) -> dict[str, Any]:
    conversation_data = _event_entity(event, "conversation")
    if conversation_data is None:
        raise InboxSyncError("Conversation data not found", code="missing_conversation")

    raw_phone = first_text(conversation_data, ("meta.sender.phone_number", "contact_inbox.source_id"))
    phone = _resolve_event_phone(raw_phone)
    contact = await reconcile_contact(
        db,
        clinic_id=clinic.id,
        phone=phone,
        display_name=first_text(conversation_data, ("meta.sender.name",)),
        fallback_name=fallback_display_name(phone),
        country_code=settings.domestic_country_code,
    )
    external_id = first_text(conversation_data, ("id",))
    conversation, created = ensure_conversation(
        db,
        clinic_id=clinic.id,
        contact_id=contact.id,
        lead_status=NEW_LEAD_STATUS,
        inbox_conversation_id=external_id,
    )
    db.commit()
    return {
        "success": True,
        "action": "conversation_created" if created else "conversation_linked",
        "conversation_id": str(conversation.id),
        "inbox_conversation_id": external_id,
        "contact_id": str(contact.id),
        "phone": phone,
    }


async def handle_inbox_event(db: Session, clinic: Clinic, event: dict[str, Any]) -> dict[str, Any]:
    """Dispatch one agent-inbox webhook event. Failures become ``{success: False, error}``; nothing is retried."""
    event_name = event.get("event")
    handlers = {
        EVENT_CONTACT_CREATED: handle_contact_created,
        EVENT_CONVERSATION_CREATED: handle_conversation_created,
    }
    handler = handlers.get(event_name)
    if handler is None:
        logger.info("Inbox event not handled", extra={"context": {"event": event_name, "clinic": clinic.slug}})
        return {"success": True, "message": "Event not handled", "event": event_name}

    try:
        result = await handler(db, clinic, event)
    except InboxSyncError as e:
        db.rollback()
        logger.warning(
            "Inbox event rejected",
            extra={"context": {"event": event_name, "clinic": clinic.slug, "code": e.code, "error": str(e)}},
        )
        return {"success": False, "error": str(e), "code": e.code, "event": event_name}
    except Exception as e:
        db.rollback()
        logger.error(
            "Inbox event failed",
            extra={"context": {"event": event_name, "clinic": clinic.slug, "error": str(e)}},
            exc_info=True,
        )
        return {"success": False, "error": str(e), "event": event_name}

    logger.info("Inbox event synced", extra={"context": {"event": event_name, "clinic": clinic.slug, **result}})
    return result
