from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class WebhookAck(BaseModel):
    """Acknowledgement returned to the provider. Exactly one status flag is set."""

    ignored: Optional[bool] = None
    duplicate: Optional[bool] = None
    received: Optional[bool] = None
    success: Optional[bool] = None
    error: Optional[bool] = None
    reason: Optional[str] = None
    wa_message_id: Optional[str] = None
    message_id: Optional[UUID] = None
    conversation_id: Optional[UUID] = None


class InboxEventResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    event: Optional[str] = None
