import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB

from app.database import Base


class IngestFailure(Base):
    """Dead-letter row for a webhook delivery that exhausted in-line recovery."""

    __tablename__ = "ingest_failures"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid, ForeignKey("clinics.id"))
    clinic_slug = Column(Text)
    stage = Column(Text, nullable=False)
    reason = Column(Text, nullable=False)
    provider_message_id = Column(Text)
    payload_json = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)
    status = Column(Text, nullable=False, default="PENDING")  # PENDING, PROCESSING, REPLAYED, FAILED
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True))
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
