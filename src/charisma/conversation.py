"""Conversation within a playthrough.

A conversation sends commands through its playthrough and receives the
events routed to it in arrival order. It remembers the id of the last
message it delivered so that, after a reconnection, it can replay exactly
the messages missed while the connection was down.
"""

import asyncio
import logging
import weakref
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from charisma.commands import CommandName
from charisma.events import ConversationEvent, EventEmitter, Handler
from charisma.task_queue import TaskQueue
from charisma.types import (
    ActionEvent,
    ConversationOptions,
    MessageEvent,
    ReplyEvent,
    SpeechConfig,
    StartEvent,
    WireModel,
    event_id_value,
    is_newer_event,
)

if TYPE_CHECKING:
    from charisma.playthrough import Playthrough

logger = logging.getLogger(__name__)


class Conversation:
    """One dialogue thread of a playthrough.

    Created by ``Playthrough.join_conversation``. Holds only a weak reference
    to its playthrough, which owns it.

    Attributes:
        uuid: Conversation identifier
        options: Options merged into every outgoing command
        last_event_id: Id of the last delivered message, if any
    """

    def __init__(
        self,
        conversation_uuid: str,
        playthrough: "Playthrough",
        options: ConversationOptions | None = None,
    ) -> None:
        """Initialize conversation.

        Args:
            conversation_uuid: Conversation identifier
            playthrough: Owning playthrough
            options: Options merged into outgoing commands
        """
        self.uuid = conversation_uuid
        self._playthrough_ref = weakref.ref(playthrough)
        self.options = options or ConversationOptions()
        self.last_event_id: str | None = None
        self._events: EventEmitter[ConversationEvent] = EventEmitter(ConversationEvent)
        self._inbound = TaskQueue(f"conversation-{conversation_uuid}-inbound")
        self._replay_lock = asyncio.Lock()

    @property
    def playthrough(self) -> "Playthrough":
        playthrough = self._playthrough_ref()
        if playthrough is None:
            raise RuntimeError(f"Playthrough of conversation {self.uuid} no longer exists")
        return playthrough

    # Subscriptions

    def on(self, event: ConversationEvent, handler: Handler) -> Callable[[], None]:
        return self._events.on(event, handler)

    def once(self, event: ConversationEvent, handler: Handler) -> Callable[[], None]:
        return self._events.once(event, handler)

    def off(self, event: ConversationEvent, handler: Handler) -> None:
        self._events.off(event, handler)

    # Commands

    def start(self, event: StartEvent | None = None) -> None:
        self._send(CommandName.START, event)

    def reply(self, event: ReplyEvent) -> None:
        self._send(CommandName.REPLY, event)

    def reply_intermediate(self, event: ReplyEvent) -> None:
        """Send partial speech-to-text output while the player is still talking."""
        self._send(CommandName.REPLY_INTERMEDIATE, event)

    def tap(self) -> None:
        self._send(CommandName.TAP)

    def action(self, event: ActionEvent) -> None:
        self._send(CommandName.ACTION, event)

    def resume(self) -> None:
        self._send(CommandName.RESUME)

    def set_speech_config(self, speech_config: SpeechConfig | None) -> None:
        self.options.speech_config = speech_config

    def _send(self, name: CommandName, event: WireModel | None = None) -> None:
        payload: dict[str, Any] = self.options.to_wire()
        if event is not None:
            payload.update(event.to_wire())
        payload["conversationUuid"] = self.uuid
        self.playthrough.send_command(name, payload)

    # Inbound dispatch

    def add_incoming_event(self, event_type: ConversationEvent, event: Any = None) -> None:
        """Queue an inbound event for delivery after everything before it."""
        self._inbound.add(lambda: self._deliver(event_type, event))

    async def wait_delivered(self) -> None:
        """Wait until every queued inbound event that may run has been delivered."""
        await self._inbound.join()

    def _deliver(self, event_type: ConversationEvent, event: Any) -> None:
        if event_type is ConversationEvent.MESSAGE:
            message: MessageEvent = event
            if not is_newer_event(message.event_id, self.last_event_id):
                logger.debug(
                    "Dropping already delivered message",
                    extra={
                        "conversation_uuid": self.uuid,
                        "event_id": message.event_id,
                        "last_event_id": self.last_event_id,
                    },
                )
                return
            # Subscribers that re-enter the conversation must see the new id
            self.last_event_id = message.event_id
            self._events.emit(event_type, message)
        elif event is None:
            self._events.emit(event_type)
        else:
            self._events.emit(event_type, event)

    # Catch-up replay

    async def reconnect(self) -> None:
        """Replay messages missed while the playthrough was disconnected.

        Live deliveries are held back for the duration of the replay and
        delivered afterwards in their arrival order. Overlapping calls run
        one after another, each starting from the id the previous one
        reached.

        Raises:
            Exception: Whatever the event history fetch raised
        """
        async with self._replay_lock:
            if self.last_event_id is None:
                return

            playthrough = self.playthrough
            replay = playthrough.config.replay
            min_event_id = self.last_event_id

            self._inbound.pause()
            try:
                events = await playthrough.get_event_history(
                    conversation_uuid=self.uuid,
                    min_event_id=min_event_id,
                    limit=replay.history_limit,
                    event_types=replay.event_types,
                )
                # Live deliveries may have advanced the id during the fetch
                missed = [
                    history_event
                    for history_event in sorted(events, key=lambda e: event_id_value(e.id))
                    if is_newer_event(history_event.id, self.last_event_id)
                ]
                if not missed:
                    return

                logger.info(
                    "Replaying missed messages",
                    extra={
                        "conversation_uuid": self.uuid,
                        "min_event_id": min_event_id,
                        "fetched": len(events),
                        "missed": len(missed),
                    },
                )
                self._events.emit(ConversationEvent.PLAYBACK_START)
                for history_event in missed:
                    self._deliver(
                        ConversationEvent.MESSAGE,
                        history_event.to_message_event(self.uuid),
                    )
                self._events.emit(ConversationEvent.PLAYBACK_STOP)
            finally:
                self._inbound.resume()
