import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Text, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class Clinic(Base):
    __tablename__ = "clinics"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    slug = Column(Text, nullable=False, unique=True)
    name = Column(Text, nullable=False)
    instance_id = Column(Text)  # provider instance the webhook is registered on
    webhook_secret = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    contacts = relationship("Contact", back_populates="clinic")
