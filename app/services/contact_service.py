from datetime import datetime, timezone
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from app.database import insert_or_ignore
from app.logging_config import get_logger
from app.models import Contact
from app.services.errors import StorageConflictError
from app.services.media_service import NAMESPACE_AVATAR, relocate_media
from app.services.patient_service import resolve_patient_id

logger = get_logger("contact_service")


def find_contact(db: Session, clinic_id: UUID, phone: str) -> Contact | None:
    return db.query(Contact).filter(Contact.clinic_id == clinic_id, Contact.phone == phone).first()


async def sync_avatar(
    contact: Contact | None,
    avatar_url: str | None,
    *,
    credential: str | None,
    media_client: httpx.AsyncClient | None = None,
) -> tuple[str, str] | None:
    """Relocate a newly observed avatar. Returns (stored url, source url), None when unchanged.

    A failed relocation falls back to the raw provider URL instead of dropping the update.
    """
    if not avatar_url:
        return None
    if contact is not None and avatar_url in (contact.avatar_source_url, contact.avatar_url):
        return None
    durable_url = await relocate_media(avatar_url, credential, NAMESPACE_AVATAR, client=media_client)
    return durable_url or avatar_url, avatar_url


def create_contact(
    db: Session,
    *,
    clinic_id: UUID,
    phone: str,
    name: str,
    avatar: tuple[str, str] | None,
    patient_id: UUID | None,
) -> tuple[Contact, bool]:
    """Insert-or-ignore on (clinic_id, phone), then re-read. Returns (contact, created)."""
    now = datetime.now(timezone.utc)
    created = insert_or_ignore(
        db,
        Contact,
        {
            "clinic_id": clinic_id,
            "phone": phone,
            "name": name,
            "avatar_url": avatar[0] if avatar else None,
            "avatar_source_url": avatar[1] if avatar else None,
            "patient_id": patient_id,
            "channel_type": "whatsapp",
            "status": "active",
            "created_at": now,
            "updated_at": now,
        },
        ["clinic_id", "phone"],
    )
    contact = find_contact(db, clinic_id, phone)
    if contact is None:
        raise StorageConflictError(
            "contact_conflict_unresolved",
            stage="contact",
            message=f"contact for {phone} neither inserted nor found",
        )
    return contact, created


def apply_contact_updates(
    contact: Contact,
    *,
    name: str | None,
    avatar: tuple[str, str] | None,
    patient_id: UUID | None,
) -> list[str]:
    """Mutate ``contact`` in place and return the names of the changed fields."""
    changed: list[str] = []
    if name and name != contact.name:
        contact.name = name
        changed.append("name")
    if avatar:
        contact.avatar_url, contact.avatar_source_url = avatar
        changed.append("avatar_url")
    if patient_id and not contact.patient_id:
        contact.patient_id = patient_id
        changed.append("patient_id")
    if changed:
        contact.updated_at = datetime.now(timezone.utc)
    return changed


async def reconcile_contact(
    db: Session,
    *,
    clinic_id: UUID,
    phone: str,
    display_name: str | None,
    fallback_name: str,
    avatar_url: str | None = None,
    credential: str | None = None,
    media_client: httpx.AsyncClient | None = None,
    country_code: str = "55",
) -> Contact:
    """Find or create the contact for (clinic, phone) and sync name, avatar and patient link.

    ``display_name`` is what the payload carried; ``fallback_name`` is only used
    for new contacts, so a placeholder never overwrites a real name.
    """
    contact = find_contact(db, clinic_id, phone)

    # The download is the only await here; every write below must come after it
    # so no row lock is held across I/O.
    avatar = await sync_avatar(contact, avatar_url, credential=credential, media_client=media_client)

    patient_id = None
    if contact is None or not contact.patient_id:
        patient_id = resolve_patient_id(db, clinic_id, phone, country_code)

    if contact is None:
        contact, created = create_contact(
            db,
            clinic_id=clinic_id,
            phone=phone,
            name=display_name or fallback_name,
            avatar=avatar,
            patient_id=patient_id,
        )
        if created:
            logger.info(
                "Contact created",
                extra={
                    "context": {
                        "clinic_id": str(clinic_id),
                        "phone": phone,
                        "contact_id": str(contact.id),
                        "patient_id": str(patient_id) if patient_id else None,
                    }
                },
            )
            return contact
        logger.info(
            "Contact creation lost race, using existing row",
            extra={"context": {"clinic_id": str(clinic_id), "phone": phone, "contact_id": str(contact.id)}},
        )

    changed = apply_contact_updates(contact, name=display_name, avatar=avatar, patient_id=patient_id)
    if changed:
        db.flush()
        logger.info(
            "Contact updated",
            extra={"context": {"contact_id": str(contact.id), "phone": phone, "fields": changed}},
        )
    return contact
