"""Unit tests for outgoing command buffering."""

import pytest

from charisma.commands import CommandName, OutgoingCommand, OutgoingCommandQueue


class Recorder:
    """Send function that records commands and can fail on demand."""

    def __init__(self) -> None:
        self.sent: list[OutgoingCommand] = []
        self.failures = 0

    async def __call__(self, command: OutgoingCommand) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("socket closed")
        self.sent.append(command)


def reply(text: str) -> OutgoingCommand:
    return OutgoingCommand(CommandName.REPLY, {"text": text, "conversationUuid": "c-1"})


class TestOutgoingCommandQueue:
    """Test suite for OutgoingCommandQueue."""

    @pytest.mark.asyncio
    async def test_starts_paused_and_buffers(self) -> None:
        """Test commands are held until the queue is resumed."""
        recorder = Recorder()
        queue = OutgoingCommandQueue(recorder)

        queue.enqueue(reply("hello"))
        queue.enqueue(OutgoingCommand(CommandName.TAP, {"conversationUuid": "c-1"}))
        await queue.join()

        assert queue.is_paused
        assert queue.pending == 2
        assert recorder.sent == []

    @pytest.mark.asyncio
    async def test_resume_flushes_in_order_before_new_commands(self) -> None:
        """Test buffered commands are sent first, in enqueue order."""
        recorder = Recorder()
        queue = OutgoingCommandQueue(recorder)

        queue.enqueue(reply("hello"))
        queue.enqueue(OutgoingCommand(CommandName.TAP, {"conversationUuid": "c-1"}))
        queue.resume()
        queue.enqueue(reply("later"))
        await queue.join()

        assert [c.name for c in recorder.sent] == [
            CommandName.REPLY,
            CommandName.TAP,
            CommandName.REPLY,
        ]
        assert recorder.sent[0].payload == {"text": "hello", "conversationUuid": "c-1"}
        assert recorder.sent[2].payload == {"text": "later", "conversationUuid": "c-1"}
        assert queue.pending == 0

    @pytest.mark.asyncio
    async def test_failed_send_keeps_command_at_head(self) -> None:
        """Test a ConnectionError pauses the queue without losing the command."""
        recorder = Recorder()
        recorder.failures = 1
        queue = OutgoingCommandQueue(recorder)

        queue.enqueue(reply("first"))
        queue.enqueue(reply("second"))
        queue.resume()
        await queue.join()

        assert queue.is_paused
        assert recorder.sent == []
        assert queue.pending == 2

        queue.resume()
        await queue.join()

        assert [c.payload["text"] for c in recorder.sent if c.payload] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_duplicate_commands_are_each_sent(self) -> None:
        """Test identical commands enqueued twice are sent twice."""
        recorder = Recorder()
        queue = OutgoingCommandQueue(recorder)

        queue.enqueue(reply("same"))
        queue.enqueue(reply("same"))
        queue.resume()
        await queue.join()

        assert len(recorder.sent) == 2

    @pytest.mark.asyncio
    async def test_pause_holds_new_commands(self) -> None:
        """Test commands enqueued after pause wait for the next resume."""
        recorder = Recorder()
        queue = OutgoingCommandQueue(recorder)
        queue.resume()

        queue.enqueue(reply("one"))
        await queue.join()
        queue.pause()
        queue.enqueue(reply("two"))
        await queue.join()

        assert len(recorder.sent) == 1
        assert queue.pending == 1


def test_command_name_values() -> None:
    """Test command names match their wire topics."""
    assert CommandName("reply-intermediate") is CommandName.REPLY_INTERMEDIATE
    assert CommandName.PAUSE.value == "pause"
    with pytest.raises(ValueError):
        CommandName("unknown")
