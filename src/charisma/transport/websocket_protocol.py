"""WebSocket room protocol definitions.

Defines Pydantic models for the JSON envelopes exchanged with the room
server. Every frame is a JSON object with a ``type`` discriminator.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

# Error code sent when a rejoin targets a room that no longer exists
ERROR_ROOM_NOT_FOUND = 4212


class JoinRequest(BaseModel):
    """Client → Server: Join or create a room."""

    type: Literal["join"] = "join"
    room: str = Field(..., min_length=1, description="Room type to join")
    options: dict[str, Any] = Field(default_factory=dict, description="Join options")


class RejoinRequest(BaseModel):
    """Client → Server: Rejoin a room with a previous seat."""

    type: Literal["rejoin"] = "rejoin"
    room_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)


class JoinedMessage(BaseModel):
    """Server → Client: Join or rejoin accepted."""

    type: Literal["joined"] = "joined"
    room_id: str = Field(..., min_length=1, description="Room identifier")
    session_id: str = Field(..., min_length=1, description="Seat identifier")


class TopicMessage(BaseModel):
    """Either direction: Message on a topic."""

    type: Literal["message"] = "message"
    topic: str = Field(..., min_length=1)
    data: Any = None


class ErrorMessage(BaseModel):
    """Server → Client: Error notification."""

    type: Literal["error"] = "error"
    code: int = Field(default=500, description="Error code")
    message: str = Field(default="", description="Error description")


ServerMessage = JoinedMessage | TopicMessage | ErrorMessage

ClientMessage = JoinRequest | RejoinRequest | TopicMessage
