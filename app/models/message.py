import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_conversation_created", "conversation_id", "created_at"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False)
    contact_id = Column(Uuid, ForeignKey("contacts.id"), nullable=False)
    clinic_id = Column(Uuid, ForeignKey("clinics.id"), nullable=False)
    direction = Column(Text, nullable=False)  # inbound, outbound
    sender_type = Column(Text, nullable=False)  # contact, agent
    message_type = Column(Text, nullable=False, default="text")
    content = Column(Text)
    media_url = Column(Text)
    provider_message_id = Column(Text, unique=True)  # NULLs never collide
    client_message_id = Column(Text, unique=True)
    status = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    conversation = relationship("Conversation", back_populates="messages")
