import pytest

from app.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    MessageStatus,
    can_transition_conversation,
    can_transition_message,
    close,
    reopen,
    transition_conversation,
    transition_message,
)


class TestMessageTransitions:
    def test_pending_to_sent(self):
        assert transition_message(MessageStatus.PENDING, MessageStatus.SENT) == MessageStatus.SENT

    def test_sent_to_read_skips_delivered(self):
        assert transition_message(MessageStatus.SENT, MessageStatus.READ) == MessageStatus.READ

    def test_read_is_terminal(self):
        with pytest.raises(InvalidTransitionError):
            transition_message(MessageStatus.READ, MessageStatus.DELIVERED)

    def test_failed_is_terminal(self):
        assert can_transition_message(MessageStatus.FAILED, MessageStatus.SENT) is False

    def test_error_message(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition_message(MessageStatus.DELIVERED, MessageStatus.PENDING)
        assert str(exc_info.value) == "Invalid transition: delivered -> pending"


class TestConversationTransitions:
    def test_open_to_pending(self):
        assert transition_conversation(ConversationStatus.OPEN, ConversationStatus.PENDING) == ConversationStatus.PENDING

    def test_same_state(self):
        with pytest.raises(InvalidTransitionError):
            transition_conversation(ConversationStatus.OPEN, ConversationStatus.OPEN)

    def test_closed_only_reopens(self):
        assert can_transition_conversation(ConversationStatus.CLOSED, ConversationStatus.OPEN) is True
        assert can_transition_conversation(ConversationStatus.CLOSED, ConversationStatus.PENDING) is False


class TestHelpers:
    def test_reopen(self):
        assert reopen(ConversationStatus.CLOSED) == ConversationStatus.OPEN

    def test_close_from_pending(self):
        assert close(ConversationStatus.PENDING) == ConversationStatus.CLOSED

    def test_reopen_open_is_invalid(self):
        with pytest.raises(InvalidTransitionError):
            reopen(ConversationStatus.OPEN)
