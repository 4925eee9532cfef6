"""Unit tests for the closed-vocabulary event emitter."""

import asyncio

import pytest

from charisma.events import (
    ConnectionStatus,
    ConversationEvent,
    EventEmitter,
    PlaythroughEvent,
)


@pytest.fixture
def emitter() -> EventEmitter[PlaythroughEvent]:
    return EventEmitter(PlaythroughEvent)


class TestEventEmitter:
    """Test suite for EventEmitter."""

    def test_handlers_run_in_registration_order(
        self, emitter: EventEmitter[PlaythroughEvent]
    ) -> None:
        """Test every handler receives the emitted arguments in order."""
        calls: list[tuple[str, object]] = []
        emitter.on(PlaythroughEvent.CONNECTION_STATUS, lambda s: calls.append(("a", s)))
        emitter.on(PlaythroughEvent.CONNECTION_STATUS, lambda s: calls.append(("b", s)))

        emitter.emit(PlaythroughEvent.CONNECTION_STATUS, ConnectionStatus.CONNECTED)

        assert calls == [("a", ConnectionStatus.CONNECTED), ("b", ConnectionStatus.CONNECTED)]

    def test_unsubscribe_callable(self, emitter: EventEmitter[PlaythroughEvent]) -> None:
        """Test the callable returned by on() removes the handler."""
        calls: list[object] = []
        unsubscribe = emitter.on(PlaythroughEvent.PROBLEM, calls.append)

        emitter.emit(PlaythroughEvent.PROBLEM, "first")
        unsubscribe()
        emitter.emit(PlaythroughEvent.PROBLEM, "second")

        assert calls == ["first"]
        assert emitter.listener_count(PlaythroughEvent.PROBLEM) == 0

    def test_off_unknown_handler_is_ignored(self, emitter: EventEmitter[PlaythroughEvent]) -> None:
        """Test removing a handler that was never registered does nothing."""
        emitter.off(PlaythroughEvent.ERROR, print)
        assert emitter.listener_count(PlaythroughEvent.ERROR) == 0

    def test_once_fires_a_single_time(self, emitter: EventEmitter[PlaythroughEvent]) -> None:
        """Test once() handlers are removed after their first call."""
        calls: list[object] = []
        emitter.once(PlaythroughEvent.ERROR, calls.append)

        emitter.emit(PlaythroughEvent.ERROR, 1)
        emitter.emit(PlaythroughEvent.ERROR, 2)

        assert calls == [1]

    def test_rejects_foreign_event_types(self, emitter: EventEmitter[PlaythroughEvent]) -> None:
        """Test events outside the emitter's enum are refused."""
        with pytest.raises(TypeError):
            emitter.on(ConversationEvent.MESSAGE, print)  # type: ignore[arg-type]
        with pytest.raises(TypeError):
            emitter.emit("connection-status")  # type: ignore[arg-type]

    def test_failing_handler_does_not_block_others(
        self, emitter: EventEmitter[PlaythroughEvent], caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test a handler exception is logged and delivery continues."""
        calls: list[object] = []

        def broken(_: object) -> None:
            raise RuntimeError("handler bug")

        emitter.on(PlaythroughEvent.PROBLEM, broken)
        emitter.on(PlaythroughEvent.PROBLEM, calls.append)
        emitter.emit(PlaythroughEvent.PROBLEM, "payload")

        assert calls == ["payload"]
        assert "Event handler failed" in caplog.text

    def test_handler_may_unsubscribe_during_emit(
        self, emitter: EventEmitter[PlaythroughEvent]
    ) -> None:
        """Test removing handlers mid-dispatch does not skip the others."""
        calls: list[str] = []
        unsubscribe = None

        def first(_: object) -> None:
            calls.append("first")
            assert unsubscribe is not None
            unsubscribe()

        unsubscribe = emitter.on(PlaythroughEvent.ERROR, first)
        emitter.on(PlaythroughEvent.ERROR, lambda _: calls.append("second"))

        emitter.emit(PlaythroughEvent.ERROR, None)
        emitter.emit(PlaythroughEvent.ERROR, None)

        assert calls == ["first", "second", "second"]

    @pytest.mark.asyncio
    async def test_async_handlers_are_scheduled(
        self, emitter: EventEmitter[PlaythroughEvent]
    ) -> None:
        """Test coroutine handlers run as background tasks."""
        done = asyncio.Event()
        received: list[object] = []

        async def handler(value: object) -> None:
            received.append(value)
            done.set()

        emitter.on(PlaythroughEvent.CONNECTION_STATUS, handler)
        emitter.emit(PlaythroughEvent.CONNECTION_STATUS, ConnectionStatus.CONNECTING)

        await asyncio.wait_for(done.wait(), timeout=1.0)
        assert received == [ConnectionStatus.CONNECTING]


def test_connection_status_values() -> None:
    """Test connection status wire values."""
    assert [s.value for s in ConnectionStatus] == ["disconnected", "connecting", "connected"]
