"""Outgoing command buffering.

Commands produced by conversations are queued here and only reach the
transport while the playthrough is connected, strictly in enqueue order.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from charisma.task_queue import TaskQueue

logger = logging.getLogger(__name__)


class CommandName(str, Enum):
    """Outbound command names understood by the backend."""

    START = "start"
    REPLY = "reply"
    REPLY_INTERMEDIATE = "reply-intermediate"
    TAP = "tap"
    ACTION = "action"
    RESUME = "resume"
    PAUSE = "pause"
    PLAY = "play"


@dataclass(frozen=True)
class OutgoingCommand:
    """A command waiting to be sent to the transport."""

    name: CommandName
    payload: dict[str, Any] | None = field(default=None)


SendFn = Callable[[OutgoingCommand], Awaitable[None]]


class OutgoingCommandQueue:
    """Per-playthrough FIFO of outgoing commands.

    The queue starts paused. While paused, commands accumulate; ``resume()``
    flushes them in order before any command enqueued afterwards. A send
    that fails with ``ConnectionError`` puts the command back at the head
    and pauses the queue, so nothing is ever dropped.
    """

    def __init__(self, send: SendFn, name: str = "outgoing-commands") -> None:
        """Initialize command queue.

        Args:
            send: Coroutine function delivering one command to the transport
            name: Identifier used in log records
        """
        self._send = send
        self._queue = TaskQueue(name, paused=True)

    @property
    def pending(self) -> int:
        """Number of commands not yet sent."""
        return self._queue.size

    @property
    def is_paused(self) -> bool:
        return self._queue.is_paused

    def enqueue(self, command: OutgoingCommand) -> None:
        """Append a command; it is sent immediately when the queue is active."""
        if self._queue.is_paused:
            logger.debug(
                "Command buffered until connected",
                extra={"command": command.name.value, "pending": self.pending + 1},
            )
        self._queue.add(lambda: self._deliver(command))

    def pause(self) -> None:
        self._queue.pause()

    def resume(self) -> None:
        self._queue.resume()

    async def join(self) -> None:
        """Wait until every sendable command has been sent."""
        await self._queue.join()

    async def _deliver(self, command: OutgoingCommand) -> None:
        try:
            await self._send(command)
        except ConnectionError as e:
            logger.warning(
                "Command send failed, keeping it queued",
                extra={"command": command.name.value, "error": str(e)},
            )
            self._queue.pause()
            self._queue.requeue(lambda: self._deliver(command))
