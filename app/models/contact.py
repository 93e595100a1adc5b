import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class Contact(Base):
    __tablename__ = "contacts"
    __table_args__ = (UniqueConstraint("clinic_id", "phone", name="uq_contacts_clinic_phone"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid, ForeignKey("clinics.id"), nullable=False)
    phone = Column(Text, nullable=False)  # canonical local digits
    name = Column(Text)
    avatar_url = Column(Text)
    avatar_source_url = Column(Text)  # provider URL the stored avatar was relocated from
    patient_id = Column(Uuid)  # weak link, no FK: patients live in another subsystem
    channel_type = Column(Text, nullable=False, default="whatsapp")
    status = Column(Text, nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    clinic = relationship("Clinic", back_populates="contacts")
    conversations = relationship("Conversation", back_populates="contact")
