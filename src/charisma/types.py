"""Wire models exchanged with the backend.

Defines Pydantic models for the realtime topic payloads and the HTTP API
responses. Field names are snake_case in Python and camelCase on the wire.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def event_id_value(event_id: str) -> int:
    """Convert an event identifier to an arbitrary-precision integer.

    Identifiers exceed the 53-bit range, so they are never compared as
    floats or as plain strings.

    Args:
        event_id: Decimal string identifier

    Returns:
        Integer value of the identifier

    Raises:
        ValueError: If the identifier is not a non-negative decimal string
    """
    if not event_id.isdigit():
        raise ValueError(f"Invalid event id: {event_id!r}")
    return int(event_id)


def is_newer_event(candidate: str, reference: str | None) -> bool:
    """Return True if ``candidate`` is strictly greater than ``reference``."""
    if reference is None:
        return True
    return event_id_value(candidate) > event_id_value(reference)


def _coerce_event_id(v: Any) -> Any:
    if isinstance(v, int) and not isinstance(v, bool):
        v = str(v)
    if isinstance(v, str):
        event_id_value(v)
    return v


class WireModel(BaseModel):
    """Base for camelCase wire payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_wire(self) -> dict[str, Any]:
        """Serialize to a camelCase dict without unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


# Conversation options


class SpeechConfig(WireModel):
    """Speech synthesis options attached to outgoing commands."""

    encoding: Literal["mp3", "ogg", "pcm", "wav"] | list[str] | None = None
    output: Literal["url", "buffer"] | None = None


class ConversationOptions(WireModel):
    """Options merged into every command a conversation sends."""

    speech_config: SpeechConfig | None = None


# Events sent to the server


class StartEvent(WireModel):
    scene_index: int | None = None
    start_graph_id: int | None = None
    start_graph_reference_id: str | None = None
    start_node_id: int | None = None


class ReplyEvent(WireModel):
    text: str


class ActionEvent(WireModel):
    action: str


# Events sent to the client


class ConversationScopedEvent(WireModel):
    """Any inbound payload routed by conversation uuid."""

    conversation_uuid: str = Field(..., min_length=1)


class StartTypingEvent(ConversationScopedEvent):
    pass


class StopTypingEvent(ConversationScopedEvent):
    pass


class MessageEvent(ConversationScopedEvent):
    """A story message. ``event_id`` orders messages within a conversation."""

    event_id: str
    type: str = "character"
    message: dict[str, Any] = Field(default_factory=dict)
    timestamp: int | None = None
    end_story: bool = False
    tap_to_continue: bool = False
    path: list[dict[str, Any]] = Field(default_factory=list)
    emotions: list[dict[str, Any]] = Field(default_factory=list)
    memories: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("event_id", mode="before")
    @classmethod
    def validate_event_id(cls, v: Any) -> Any:
        return _coerce_event_id(v)


class EpisodeCompleteEvent(ConversationScopedEvent):
    impacts: list[dict[str, Any]] = Field(default_factory=list)
    completed_episode_id: int | None = None
    next_episode_id: int | None = None
    character_mood_changes: list[dict[str, Any]] = Field(default_factory=list)


class ProblemEvent(WireModel):
    """Problem report, optionally scoped to a conversation."""

    type: str
    error: str
    conversation_uuid: str | None = None


class ConfirmEvent(ConversationScopedEvent):
    """Server acknowledgement of a command."""

    event_id: str | None = None
    player_id: str | None = None

    @field_validator("event_id", mode="before")
    @classmethod
    def validate_event_id(cls, v: Any) -> Any:
        return _coerce_event_id(v)


class ConfirmStartEvent(ConfirmEvent):
    pass


class ConfirmReplyEvent(ConfirmEvent):
    text: str | None = None


class ConfirmActionEvent(ConfirmEvent):
    action: str | None = None


class ConfirmResumeEvent(ConfirmEvent):
    pass


class ConfirmTapEvent(ConfirmEvent):
    pass


class StatusMessage(WireModel):
    """Connection acknowledgement sent on the ``status`` topic."""

    status: str | None = None
    player_session_id: str | None = None


class TransportError(WireModel):
    """Non-fatal error reported by the transport."""

    code: int
    message: str | None = None


# HTTP API payloads


class HistoryEvent(WireModel):
    """One entry of the event history endpoint."""

    id: str
    type: str
    timestamp: int | None = None
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def validate_id(cls, v: Any) -> Any:
        return _coerce_event_id(v)

    def to_message_event(self, conversation_uuid: str) -> MessageEvent:
        """Rebuild the live ``message`` payload this history entry recorded."""
        data: dict[str, Any] = {"type": "character", **self.payload}
        data["conversationUuid"] = conversation_uuid
        data["eventId"] = self.id
        if self.timestamp is not None:
            data.setdefault("timestamp", self.timestamp)
        return MessageEvent.model_validate(data)


class MemoryToSet(WireModel):
    recall_value: str
    save_value: str | None = None


class PlaythroughInfo(WireModel):
    emotions: list[dict[str, Any]] = Field(default_factory=list)
    memories: list[dict[str, Any]] = Field(default_factory=list)
    impacts: list[dict[str, Any]] = Field(default_factory=list)


class ForkPlaythroughTokenResult(WireModel):
    token: str
    playthrough_uuid: str
