"""Publish/subscribe primitives with a closed event vocabulary.

Each component exposes an ``EventEmitter`` keyed by its own ``Enum``, so a
subscriber can only register for events the component actually emits.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    """Playthrough connection state.

    State Transitions:
    - DISCONNECTED → CONNECTING (on connect)
    - CONNECTING → CONNECTED (room opened or rejoined)
    - CONNECTED → CONNECTING (abnormal transport closure)
    - * → DISCONNECTED (explicit disconnect or reconnection exhausted)
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class PlaythroughEvent(Enum):
    """Events emitted by a ``Playthrough``."""

    CONNECTION_STATUS = "connection-status"
    ERROR = "error"
    PROBLEM = "problem"


class ConversationEvent(Enum):
    """Events emitted by a ``Conversation``.

    ``PLAYBACK_START`` and ``PLAYBACK_STOP`` bracket the messages replayed
    after a reconnection.
    """

    MESSAGE = "message"
    START_TYPING = "start-typing"
    STOP_TYPING = "stop-typing"
    EPISODE_COMPLETE = "episode-complete"
    PROBLEM = "problem"
    START = "start"
    REPLY = "reply"
    ACTION = "action"
    RESUME = "resume"
    TAP = "tap"
    PLAYBACK_START = "playback-start"
    PLAYBACK_STOP = "playback-stop"


E = TypeVar("E", bound=Enum)

Handler = Callable[..., Awaitable[None] | None]


class EventEmitter(Generic[E]):
    """Synchronous event emitter over a fixed enum of event types.

    Handlers run in registration order. A handler that returns a coroutine
    is scheduled as a background task. Handler exceptions are logged and do
    not stop delivery to the remaining handlers.
    """

    def __init__(self, event_type: type[E]) -> None:
        self._event_type = event_type
        self._handlers: dict[E, list[Handler]] = defaultdict(list)
        self._once: set[tuple[E, int]] = set()
        self._background_tasks: set[asyncio.Task[Any]] = set()

    def _check(self, event: E) -> None:
        if not isinstance(event, self._event_type):
            raise TypeError(
                f"{event!r} is not a {self._event_type.__name__} member"
            )

    def on(self, event: E, handler: Handler) -> Callable[[], None]:
        """Register a handler.

        Args:
            event: Event to subscribe to
            handler: Callable invoked with the event arguments

        Returns:
            Callable that removes the handler again
        """
        self._check(event)
        self._handlers[event].append(handler)
        return lambda: self.off(event, handler)

    def once(self, event: E, handler: Handler) -> Callable[[], None]:
        """Register a handler that is removed after its first call."""
        unsubscribe = self.on(event, handler)
        self._once.add((event, id(handler)))
        return unsubscribe

    def off(self, event: E, handler: Handler) -> None:
        """Remove a specific handler. Unknown handlers are ignored."""
        self._check(event)
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)
            self._once.discard((event, id(handler)))

    def listener_count(self, event: E) -> int:
        self._check(event)
        return len(self._handlers.get(event, []))

    def emit(self, event: E, *args: Any) -> None:
        """Call every handler registered for ``event`` with ``args``."""
        self._check(event)
        # Snapshot so handlers may unsubscribe while being dispatched
        for handler in list(self._handlers.get(event, [])):
            if (event, id(handler)) in self._once:
                self.off(event, handler)
            try:
                result = handler(*args)
                if asyncio.iscoroutine(result):
                    self._fire_task(result)
            except Exception as e:
                logger.error(
                    "Event handler failed",
                    extra={"event": event.value, "error": str(e)},
                    exc_info=True,
                )

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: "asyncio.Task[Any]") -> None:
        self._background_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Async event handler failed",
                extra={"error": str(task.exception())},
            )
