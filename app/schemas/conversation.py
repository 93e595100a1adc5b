from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ConversationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    clinic_id: UUID
    contact_id: UUID
    status: str
    unread_count: int
    last_message_at: Optional[datetime] = None
    last_message_preview: Optional[str] = None
    lead_status: Optional[str] = None
    inbox_conversation_id: Optional[str] = None


class ConversationStatusUpdate(BaseModel):
    status: str
