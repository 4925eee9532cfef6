"""Transport layer for realtime rooms.

Provides the room abstraction consumed by the playthrough and a WebSocket
implementation of it.
"""

from charisma.transport.base import (
    CLOSE_CODE_ABNORMAL,
    CLOSE_CODE_CONSENTED,
    BaseRoom,
    Room,
    RoomClient,
    is_room_not_found,
)
from charisma.transport.websocket_room import WebSocketRoom, WebSocketRoomClient

__all__ = [
    "CLOSE_CODE_ABNORMAL",
    "CLOSE_CODE_CONSENTED",
    "BaseRoom",
    "Room",
    "RoomClient",
    "WebSocketRoom",
    "WebSocketRoomClient",
    "is_room_not_found",
]
