from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, model_validator


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    conversation_id: UUID
    contact_id: UUID
    clinic_id: UUID
    direction: str
    sender_type: str
    message_type: str
    content: Optional[str] = None
    media_url: Optional[str] = None
    provider_message_id: Optional[str] = None
    client_message_id: Optional[str] = None
    status: str
    created_at: datetime
    updated_at: datetime


class SendMessageRequest(BaseModel):
    text: Optional[str] = None
    media_type: Optional[str] = None
    file: Optional[str] = None
    client_message_id: Optional[str] = None

    @model_validator(mode="after")
    def require_text_or_file(self) -> "SendMessageRequest":
        if not (self.text and self.text.strip()) and not self.file:
            raise ValueError("text or file is required")
        return self


class SendMessageResponse(BaseModel):
    success: bool
    message: MessageOut
    error: Optional[str] = None
    error_code: Optional[str] = None
