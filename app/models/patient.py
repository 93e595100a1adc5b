import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class Patient(Base):
    """Read-mostly view of the patient subsystem's records."""

    __tablename__ = "patients"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid, ForeignKey("clinics.id"), nullable=False)
    name = Column(Text, nullable=False)
    phone = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    phones = relationship("PatientPhone", back_populates="patient")


class PatientPhone(Base):
    __tablename__ = "patient_phones"
    __table_args__ = (UniqueConstraint("patient_id", "phone", name="uq_patient_phones_patient_phone"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id = Column(Uuid, ForeignKey("patients.id"), nullable=False)
    phone = Column(Text, nullable=False)
    is_whatsapp = Column(Boolean, nullable=False, default=False)
    phone_type = Column(Text, default="mobile")

    patient = relationship("Patient", back_populates="phones")
