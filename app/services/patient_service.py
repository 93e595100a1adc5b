from uuid import UUID

from sqlalchemy.orm import Session

from app.database import insert_or_ignore
from app.logging_config import get_logger
from app.models import Patient, PatientPhone
from app.services.phone_service import phone_variants

logger = get_logger("patient_service")


def find_patient_by_whatsapp_phone(db: Session, clinic_id: UUID, phone: str) -> UUID | None:
    """Exact hit on the WhatsApp-flagged phone index."""
    return (
        db.query(PatientPhone.patient_id)
        .join(Patient, Patient.id == PatientPhone.patient_id)
        .filter(
            Patient.clinic_id == clinic_id,
            PatientPhone.phone == phone,
            PatientPhone.is_whatsapp.is_(True),
        )
        .order_by(Patient.created_at)
        .limit(1)
        .scalar()
    )


def find_patient_flexible(db: Session, clinic_id: UUID, phone: str, country_code: str = "55") -> UUID | None:
    """Match the phone against patient records using its equivalent spellings."""
    variants = phone_variants(phone, country_code)

    patient_id = (
        db.query(Patient.id)
        .filter(Patient.clinic_id == clinic_id, Patient.phone.in_(variants))
        .order_by(Patient.created_at)
        .limit(1)
        .scalar()
    )
    if patient_id:
        return patient_id

    return (
        db.query(PatientPhone.patient_id)
        .join(Patient, Patient.id == PatientPhone.patient_id)
        .filter(Patient.clinic_id == clinic_id, PatientPhone.phone.in_(variants))
        .order_by(Patient.created_at)
        .limit(1)
        .scalar()
    )


def remember_whatsapp_phone(db: Session, patient_id: UUID, phone: str) -> bool:
    """Write the phone back into the index. An existing entry is not an error."""
    inserted = insert_or_ignore(
        db,
        PatientPhone,
        {"patient_id": patient_id, "phone": phone, "is_whatsapp": True, "phone_type": "mobile"},
        ["patient_id", "phone"],
    )
    db.flush()
    return inserted


def resolve_patient_id(db: Session, clinic_id: UUID, phone: str, country_code: str = "55") -> UUID | None:
    patient_id = find_patient_by_whatsapp_phone(db, clinic_id, phone)
    if patient_id:
        logger.info(
            "Patient found via phone index",
            extra={"context": {"clinic_id": str(clinic_id), "phone": phone, "patient_id": str(patient_id)}},
        )
        return patient_id

    patient_id = find_patient_flexible(db, clinic_id, phone, country_code)
    if not patient_id:
        return None

    logger.info(
        "Patient found via flexible lookup",
        extra={"context": {"clinic_id": str(clinic_id), "phone": phone, "patient_id": str(patient_id)}},
    )
    remember_whatsapp_phone(db, patient_id, phone)
    return patient_id
