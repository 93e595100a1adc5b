from app.schemas.admin import IngestFailureOut, ReplayResponse
from app.schemas.conversation import ConversationOut, ConversationStatusUpdate
from app.schemas.message import MessageOut, SendMessageRequest, SendMessageResponse
from app.schemas.webhook import InboxEventResponse, WebhookAck

__all__ = [
    "ConversationOut",
    "ConversationStatusUpdate",
    "IngestFailureOut",
    "InboxEventResponse",
    "MessageOut",
    "ReplayResponse",
    "SendMessageRequest",
    "SendMessageResponse",
    "WebhookAck",
]
