from enum import Enum


class MessageStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class ConversationStatus(str, Enum):
    OPEN = "open"
    PENDING = "pending"
    CLOSED = "closed"


MESSAGE_TRANSITIONS = {
    MessageStatus.PENDING: [MessageStatus.SENT, MessageStatus.FAILED],
    MessageStatus.SENT: [MessageStatus.DELIVERED, MessageStatus.READ, MessageStatus.FAILED],
    MessageStatus.DELIVERED: [MessageStatus.READ, MessageStatus.FAILED],
    MessageStatus.READ: [],
    MessageStatus.FAILED: [],
}

CONVERSATION_TRANSITIONS = {
    ConversationStatus.OPEN: [ConversationStatus.PENDING, ConversationStatus.CLOSED],
    ConversationStatus.PENDING: [ConversationStatus.OPEN, ConversationStatus.CLOSED],
    ConversationStatus.CLOSED: [ConversationStatus.OPEN],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: Enum, to_state: Enum):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition_message(from_state: MessageStatus, to_state: MessageStatus) -> bool:
    """Check if a message status transition is valid."""
    return to_state in MESSAGE_TRANSITIONS.get(from_state, [])


def transition_message(from_state: MessageStatus, to_state: MessageStatus) -> MessageStatus:
    """Perform message status transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition_message(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def can_transition_conversation(from_state: ConversationStatus, to_state: ConversationStatus) -> bool:
    return to_state in CONVERSATION_TRANSITIONS.get(from_state, [])


def transition_conversation(from_state: ConversationStatus, to_state: ConversationStatus) -> ConversationStatus:
    if not can_transition_conversation(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def reopen(current_state: ConversationStatus) -> ConversationStatus:
    """A new inbound message reopens a closed conversation."""
    return transition_conversation(current_state, ConversationStatus.OPEN)


def close(current_state: ConversationStatus) -> ConversationStatus:
    return transition_conversation(current_state, ConversationStatus.CLOSED)
