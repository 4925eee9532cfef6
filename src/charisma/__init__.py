"""Realtime client for interactive story playthroughs.

This package provides the playthrough session (connection state machine,
command buffering and reconnection), conversations with catch-up replay,
and the HTTP API client used alongside the realtime connection.
"""

from charisma.api import PlayApiClient
from charisma.commands import CommandName
from charisma.config import ClientConfig
from charisma.conversation import Conversation
from charisma.errors import (
    ApiError,
    CharismaError,
    ConversationNotJoinedError,
    InvalidTokenError,
    PlaythroughDisconnectedError,
    RoomNotFoundError,
)
from charisma.events import ConnectionStatus, ConversationEvent, PlaythroughEvent
from charisma.playthrough import Playthrough

__version__ = "0.1.0"

__all__ = [
    "ApiError",
    "CharismaError",
    "ClientConfig",
    "CommandName",
    "ConnectionStatus",
    "Conversation",
    "ConversationEvent",
    "ConversationNotJoinedError",
    "InvalidTokenError",
    "PlayApiClient",
    "Playthrough",
    "PlaythroughDisconnectedError",
    "PlaythroughEvent",
    "RoomNotFoundError",
]
