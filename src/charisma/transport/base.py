"""Base transport abstraction for realtime rooms.

Defines the interface that transport implementations must provide to the
playthrough: a ``Room`` with topic-scoped messaging and a terminal leave
event, and a ``RoomClient`` with the two ways of obtaining one.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from charisma.errors import RoomNotFoundError

logger = logging.getLogger(__name__)

# Close code reserved for a user-requested disconnect
CLOSE_CODE_CONSENTED = 4000

# Close code used when the connection dropped without a close frame
CLOSE_CODE_ABNORMAL = 1006

MessageHandler = Callable[[Any], None]
ErrorHandler = Callable[[int, str | None], None]
LeaveHandler = Callable[[int], Awaitable[None] | None]

_ROOM_NOT_FOUND_RE = re.compile(r'room ".*" not found')


def is_room_not_found(error: BaseException) -> bool:
    """Check whether an error means the room expired on the server."""
    return isinstance(error, RoomNotFoundError) or bool(
        _ROOM_NOT_FOUND_RE.search(str(error))
    )


class Room(ABC):
    """A single realtime connection to a server-side room."""

    @property
    @abstractmethod
    def id(self) -> str:
        """Server-assigned room identifier."""

    @property
    @abstractmethod
    def session_id(self) -> str:
        """Identifier of this client's seat in the room, used to rejoin."""

    @abstractmethod
    async def send(self, topic: str, payload: Any = None) -> None:
        """Send a message on a topic.

        Args:
            topic: Command name
            payload: JSON-serializable payload

        Raises:
            ConnectionError: If the connection is closed or broken
        """

    @abstractmethod
    def on_message(self, topic: str, handler: MessageHandler) -> None:
        """Register the handler for an inbound topic (one per topic)."""

    @abstractmethod
    def on_error(self, handler: ErrorHandler) -> None:
        """Register the handler for non-fatal transport errors."""

    @abstractmethod
    def on_leave(self, handler: LeaveHandler) -> None:
        """Register the handler for the terminal close event."""

    @abstractmethod
    def remove_all_listeners(self) -> None:
        """Drop every registered handler."""

    @abstractmethod
    async def leave(self, code: int = CLOSE_CODE_CONSENTED) -> None:
        """Close the connection with ``code``."""


class BaseRoom(Room):
    """Room with the listener bookkeeping shared by implementations.

    Subclasses feed inbound traffic through ``_dispatch``, ``_emit_error``
    and ``_emit_leave``.
    """

    def __init__(self, room_id: str, session_id: str) -> None:
        self._room_id = room_id
        self._session_id = session_id
        self._message_handlers: dict[str, MessageHandler] = {}
        self._error_handlers: list[ErrorHandler] = []
        self._leave_handlers: list[LeaveHandler] = []
        self._left = False
        self._background_tasks: set[asyncio.Task[Any]] = set()

    @property
    def id(self) -> str:
        return self._room_id

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def has_left(self) -> bool:
        return self._left

    def on_message(self, topic: str, handler: MessageHandler) -> None:
        self._message_handlers[topic] = handler

    def on_error(self, handler: ErrorHandler) -> None:
        self._error_handlers.append(handler)

    def on_leave(self, handler: LeaveHandler) -> None:
        self._leave_handlers.append(handler)

    def remove_all_listeners(self) -> None:
        self._message_handlers.clear()
        self._error_handlers.clear()
        self._leave_handlers.clear()

    def _dispatch(self, topic: str, data: Any) -> None:
        handler = self._message_handlers.get(topic)
        if handler is None:
            logger.debug(
                "No handler for topic, skipping",
                extra={"room_id": self._room_id, "topic": topic},
            )
            return
        handler(data)

    def _emit_error(self, code: int, message: str | None) -> None:
        for handler in list(self._error_handlers):
            handler(code, message)

    def _emit_leave(self, code: int) -> None:
        if self._left:
            return
        self._left = True
        logger.info("Left room", extra={"room_id": self._room_id, "code": code})
        for handler in list(self._leave_handlers):
            result = handler(code)
            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._background_tasks.add(task)
                task.add_done_callback(self._background_tasks.discard)


class RoomClient(ABC):
    """Factory for rooms on one backend.

    The two constructors map onto the two phases of reconnection: rejoin
    the exact same room, or open a fresh room for the same identity.
    """

    @abstractmethod
    async def join_or_create(self, room_name: str, options: dict[str, Any]) -> Room:
        """Join an existing room for ``options`` or create one.

        Args:
            room_name: Room type (e.g. "chat")
            options: Join options carrying the playthrough identity

        Returns:
            Connected room

        Raises:
            ConnectionError: If the room cannot be opened
        """

    @abstractmethod
    async def reconnect(self, room_id: str, session_id: str) -> Room:
        """Rejoin a previously joined room.

        Args:
            room_id: Identifier of the room to rejoin
            session_id: Seat identifier held in that room

        Returns:
            Connected room

        Raises:
            RoomNotFoundError: If the room no longer exists
            ConnectionError: If the server cannot be reached
        """
