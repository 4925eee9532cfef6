"""Ordered, pausable task queue.

Runs zero-argument callables (sync or async) one at a time in FIFO order on
the running event loop. Pausing holds pending tasks without dropping them;
resuming drains them in their original order before anything added later.
"""

import asyncio
import inspect
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

Task = Callable[[], Awaitable[Any] | Any]


class TaskQueue:
    """FIFO queue of tasks drained by a single background coroutine.

    A task that is already running when ``pause()`` is called runs to
    completion; the next one waits for ``resume()``.

    Attributes:
        name: Identifier used in log records and task names
    """

    def __init__(self, name: str, *, paused: bool = False) -> None:
        """Initialize task queue.

        Args:
            name: Identifier used in log records
            paused: Start in paused mode
        """
        self.name = name
        self._pending: deque[Task] = deque()
        self._paused = paused
        self._drain_task: asyncio.Task[None] | None = None

    @property
    def size(self) -> int:
        """Number of tasks waiting to run."""
        return len(self._pending)

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_running(self) -> bool:
        """Check if a drain is currently in progress."""
        return self._drain_task is not None and not self._drain_task.done()

    def add(self, task: Task) -> None:
        """Append a task. Errors it raises are logged, not propagated.

        Args:
            task: Zero-argument callable, may return an awaitable
        """
        self._pending.append(task)
        self._schedule_drain()

    def requeue(self, task: Task) -> None:
        """Put a task back at the head of the queue."""
        self._pending.appendleft(task)
        self._schedule_drain()

    def pause(self) -> None:
        if not self._paused:
            logger.debug("Task queue paused", extra={"queue": self.name})
        self._paused = True

    def resume(self) -> None:
        if self._paused:
            logger.debug(
                "Task queue resumed",
                extra={"queue": self.name, "pending": len(self._pending)},
            )
        self._paused = False
        self._schedule_drain()

    async def join(self) -> None:
        """Wait until there is nothing left the queue may run.

        Returns once the queue is empty or paused.
        """
        while self._drain_task is not None and not self._drain_task.done():
            await asyncio.wait({self._drain_task})

    def _schedule_drain(self) -> None:
        if self._paused or not self._pending or self.is_running:
            return
        self._drain_task = asyncio.get_running_loop().create_task(
            self._drain(), name=f"{self.name}-drain"
        )

    async def _drain(self) -> None:
        while self._pending and not self._paused:
            task = self._pending.popleft()
            try:
                result = task()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "Queued task failed",
                    extra={"queue": self.name, "error": str(e)},
                    exc_info=True,
                )
