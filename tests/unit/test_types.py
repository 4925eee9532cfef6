"""Unit tests for wire models and event id ordering."""

import pytest
from pydantic import ValidationError

from charisma.types import (
    ConversationOptions,
    HistoryEvent,
    MessageEvent,
    ProblemEvent,
    ReplyEvent,
    SpeechConfig,
    StartEvent,
    event_id_value,
    is_newer_event,
)


class TestEventIds:
    """Event ids compare as arbitrary-precision integers."""

    def test_compares_numerically_not_lexically(self) -> None:
        """Test "10" is newer than "9"."""
        assert is_newer_event("10", "9")
        assert not is_newer_event("9", "10")

    def test_beyond_float_precision(self) -> None:
        """Test ids differing only past 53 bits still order correctly."""
        base = 2**64
        assert is_newer_event(str(base + 1), str(base))
        assert not is_newer_event(str(base), str(base))
        assert event_id_value("18446744073709551617") == 2**64 + 1

    def test_no_reference_is_always_newer(self) -> None:
        assert is_newer_event("1", None)

    @pytest.mark.parametrize("bad", ["", "-1", "1.5", "abc", " 1"])
    def test_invalid_ids_rejected(self, bad: str) -> None:
        with pytest.raises(ValueError, match="Invalid event id"):
            event_id_value(bad)


class TestMessageEvent:
    """Test suite for MessageEvent."""

    def test_parses_camel_case_payload(self) -> None:
        """Test inbound camelCase keys map to snake_case fields."""
        event = MessageEvent.model_validate(
            {
                "conversationUuid": "c-1",
                "eventId": "12345678901234567890",
                "type": "character",
                "message": {"text": "Hello"},
                "tapToContinue": True,
                "endStory": False,
                "unknownField": "kept",
            }
        )

        assert event.conversation_uuid == "c-1"
        assert event.event_id == "12345678901234567890"
        assert event.tap_to_continue is True
        assert event.message["text"] == "Hello"

    def test_integer_event_id_is_normalized(self) -> None:
        """Test numeric ids become decimal strings."""
        event = MessageEvent.model_validate({"conversationUuid": "c-1", "eventId": 7})
        assert event.event_id == "7"

    def test_invalid_event_id_rejected(self) -> None:
        with pytest.raises(ValidationError):
            MessageEvent.model_validate({"conversationUuid": "c-1", "eventId": "not-a-number"})

    def test_conversation_uuid_required(self) -> None:
        with pytest.raises(ValidationError):
            MessageEvent.model_validate({"eventId": "1"})


class TestOutgoingPayloads:
    """Outgoing models serialize to camelCase without unset fields."""

    def test_reply_to_wire(self) -> None:
        assert ReplyEvent(text="hi").to_wire() == {"text": "hi"}

    def test_start_to_wire_omits_unset_fields(self) -> None:
        assert StartEvent(scene_index=2).to_wire() == {"sceneIndex": 2}
        assert StartEvent().to_wire() == {}

    def test_conversation_options_speech_config(self) -> None:
        """Test nested speech config is aliased."""
        options = ConversationOptions(speech_config=SpeechConfig(encoding="mp3", output="url"))
        assert options.to_wire() == {"speechConfig": {"encoding": "mp3", "output": "url"}}
        assert ConversationOptions().to_wire() == {}


class TestHistoryEvent:
    """Test suite for HistoryEvent."""

    def test_to_message_event(self) -> None:
        """Test a history entry rebuilds the live message shape."""
        entry = HistoryEvent.model_validate(
            {
                "id": "42",
                "type": "message_character",
                "timestamp": 1700000000000,
                "payload": {"message": {"text": "Back again"}, "tapToContinue": True},
            }
        )

        message = entry.to_message_event("c-9")

        assert message.event_id == "42"
        assert message.conversation_uuid == "c-9"
        assert message.type == "character"
        assert message.timestamp == 1700000000000
        assert message.tap_to_continue is True
        assert message.message == {"text": "Back again"}


def test_problem_event_optional_conversation() -> None:
    """Test problems may be playthrough-wide."""
    problem = ProblemEvent.model_validate({"type": "ratelimit", "error": "slow down"})
    assert problem.conversation_uuid is None
