from app.services.errors import (
    FatalConfigError,
    IngestError,
    PayloadValidationError,
    StorageConflictError,
    TransientIOError,
)
from app.services.phone_service import PhoneResolution, resolve_phone
from app.services.result import Result
from app.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    MessageStatus,
    can_transition_conversation,
    can_transition_message,
    transition_conversation,
    transition_message,
)
