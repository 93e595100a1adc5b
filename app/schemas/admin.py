from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class IngestFailureOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    clinic_id: Optional[UUID] = None
    clinic_slug: Optional[str] = None
    stage: str
    reason: str
    provider_message_id: Optional[str] = None
    status: str
    attempts: int
    next_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: datetime
    payload_json: Optional[dict[str, Any]] = None


class ReplayResponse(BaseModel):
    failure_id: UUID
    status: str
    outcome: dict[str, Any]
