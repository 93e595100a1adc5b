import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (UniqueConstraint("clinic_id", "contact_id", name="uq_conversations_clinic_contact"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid, ForeignKey("clinics.id"), nullable=False)
    contact_id = Column(Uuid, ForeignKey("contacts.id"), nullable=False)
    channel_type = Column(Text, nullable=False, default="whatsapp")
    status = Column(Text, nullable=False, default="open")  # open, pending, closed
    unread_count = Column(Integer, nullable=False, default=0)
    last_message_at = Column(DateTime(timezone=True))
    last_message_preview = Column(Text)
    lead_status = Column(Text)
    inbox_conversation_id = Column(Text)  # id in the external agent inbox, when mirrored
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    contact = relationship("Contact", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation")
