"""Playthrough session management.

A ``Playthrough`` owns the realtime room for one playthrough token. It runs
the connection state machine, buffers outgoing commands while the room is
unavailable, reconnects after abnormal closures and routes inbound topic
messages to the joined conversations.

Example usage:
    >>> playthrough = Playthrough(token, ClientConfig())
    >>> conversation = playthrough.join_conversation(conversation_uuid)
    >>> conversation.on(ConversationEvent.MESSAGE, print)
    >>> await playthrough.connect()
    >>> conversation.start()
    >>> ...
    >>> await playthrough.disconnect()
"""

import asyncio
import logging
import random
from collections.abc import Callable
from typing import Any

from jose import JWTError, jwt
from pydantic import ValidationError

from charisma.api import EventHistorySource, PlayApiClient
from charisma.commands import CommandName, OutgoingCommand, OutgoingCommandQueue
from charisma.config import ClientConfig
from charisma.conversation import Conversation
from charisma.errors import (
    ConversationNotJoinedError,
    InvalidTokenError,
    PlaythroughDisconnectedError,
)
from charisma.events import (
    ConnectionStatus,
    ConversationEvent,
    EventEmitter,
    Handler,
    PlaythroughEvent,
)
from charisma.transport.base import Room, RoomClient, is_room_not_found
from charisma.transport.websocket_room import WebSocketRoomClient
from charisma.types import (
    ConfirmActionEvent,
    ConfirmReplyEvent,
    ConfirmResumeEvent,
    ConfirmStartEvent,
    ConfirmTapEvent,
    ConversationOptions,
    ConversationScopedEvent,
    EpisodeCompleteEvent,
    ForkPlaythroughTokenResult,
    HistoryEvent,
    MemoryToSet,
    MessageEvent,
    PlaythroughInfo,
    ProblemEvent,
    StartTypingEvent,
    StatusMessage,
    StopTypingEvent,
    TransportError,
)

logger = logging.getLogger(__name__)

# Inbound topics routed to a conversation, with their event and payload model
CONVERSATION_TOPICS: dict[str, tuple[ConversationEvent, type[ConversationScopedEvent]]] = {
    "start-typing": (ConversationEvent.START_TYPING, StartTypingEvent),
    "stop-typing": (ConversationEvent.STOP_TYPING, StopTypingEvent),
    "message": (ConversationEvent.MESSAGE, MessageEvent),
    "episode-complete": (ConversationEvent.EPISODE_COMPLETE, EpisodeCompleteEvent),
    "start": (ConversationEvent.START, ConfirmStartEvent),
    "reply": (ConversationEvent.REPLY, ConfirmReplyEvent),
    "action": (ConversationEvent.ACTION, ConfirmActionEvent),
    "resume": (ConversationEvent.RESUME, ConfirmResumeEvent),
    "tap": (ConversationEvent.TAP, ConfirmTapEvent),
}


def decode_playthrough_uuid(token: str) -> str:
    """Read the playthrough uuid from a playthrough token.

    Only the JWT claims are read; verifying the signature is left to the
    server.

    Args:
        token: Playthrough token

    Returns:
        Playthrough uuid claim

    Raises:
        InvalidTokenError: If the token is malformed or has no uuid claim
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError as e:
        raise InvalidTokenError(f"Playthrough token is invalid: {e}") from e

    playthrough_uuid = claims.get("playthrough_uuid")
    if not isinstance(playthrough_uuid, str) or not playthrough_uuid:
        raise InvalidTokenError("Playthrough token has no `playthrough_uuid` claim")
    return playthrough_uuid


class Playthrough:
    """Client session for one playthrough token.

    Connection state machine:
    - DISCONNECTED → CONNECTING on ``connect()``
    - CONNECTING → CONNECTED when a room is opened or rejoined
    - CONNECTED → CONNECTING on abnormal room closure (reconnection starts)
    - * → DISCONNECTED on ``disconnect()`` or when reconnection gives up

    ``disconnect()`` is terminal; construct a new playthrough to reconnect.

    Attributes:
        token: Playthrough token
        playthrough_uuid: Identity decoded from the token
        config: Client configuration
        connection_status: Current connection state
        should_reconnect: Cleared by ``disconnect()`` to stop reconnection
        player_session_id: Seat id reported by the server for this connection
    """

    def __init__(
        self,
        token: str,
        config: ClientConfig | None = None,
        *,
        room_client: RoomClient | None = None,
        api: PlayApiClient | None = None,
        history: EventHistorySource | None = None,
    ) -> None:
        """Initialize playthrough.

        Args:
            token: Playthrough token
            config: Client configuration (defaults apply when omitted)
            room_client: Room factory; a WebSocket client by default
            api: HTTP API client; created from ``config.base_url`` when omitted
            history: Event history source; the API client by default

        Raises:
            InvalidTokenError: If the token cannot be decoded
        """
        self.token = token
        self.playthrough_uuid = decode_playthrough_uuid(token)
        self.config = config or ClientConfig()

        self._room_client = room_client or WebSocketRoomClient.from_config(self.config)
        self._owns_api = api is None
        self._api = api or PlayApiClient(self.config.base_url)
        self._history: EventHistorySource = history or self._api

        self._room: Room | None = None
        self.connection_status = ConnectionStatus.DISCONNECTED
        self.should_reconnect = True
        self.player_session_id: str | None = None
        self._terminated = False

        self._conversations: dict[str, Conversation] = {}
        self._events: EventEmitter[PlaythroughEvent] = EventEmitter(PlaythroughEvent)
        self._commands = OutgoingCommandQueue(
            self._send_to_room, name=f"playthrough-{self.playthrough_uuid}-commands"
        )

        self._reconnect_task: asyncio.Task[None] | None = None
        self._reconnect_wakeup = asyncio.Event()
        self._background_tasks: set[asyncio.Task[Any]] = set()

    # Subscriptions

    def on(self, event: PlaythroughEvent, handler: Handler) -> Callable[[], None]:
        return self._events.on(event, handler)

    def once(self, event: PlaythroughEvent, handler: Handler) -> Callable[[], None]:
        return self._events.once(event, handler)

    def off(self, event: PlaythroughEvent, handler: Handler) -> None:
        self._events.off(event, handler)

    # Conversations

    @property
    def conversations(self) -> dict[str, Conversation]:
        """Snapshot of the joined conversations by uuid."""
        return dict(self._conversations)

    def join_conversation(
        self,
        conversation_uuid: str,
        options: ConversationOptions | None = None,
    ) -> Conversation:
        """Join a conversation, or return it if already joined.

        Args:
            conversation_uuid: Conversation to join
            options: Options merged into the conversation's commands; ignored
                when the conversation is already joined

        Returns:
            The registered conversation
        """
        existing = self._conversations.get(conversation_uuid)
        if existing is not None:
            logger.debug(
                "Conversation already joined",
                extra={"conversation_uuid": conversation_uuid},
            )
            return existing

        conversation = Conversation(conversation_uuid, self, options)
        self._conversations[conversation_uuid] = conversation
        return conversation

    def leave_conversation(self, conversation_uuid: str) -> None:
        """Stop routing events to a conversation.

        Raises:
            ConversationNotJoinedError: If the conversation was never joined
        """
        if conversation_uuid not in self._conversations:
            raise ConversationNotJoinedError(conversation_uuid)
        del self._conversations[conversation_uuid]

    def get_conversation(self, conversation_uuid: str) -> Conversation | None:
        return self._conversations.get(conversation_uuid)

    # Outgoing commands

    def send_command(
        self, name: CommandName | str, payload: dict[str, Any] | None = None
    ) -> None:
        """Queue a command; it is sent as soon as the room is connected.

        Raises:
            ValueError: If ``name`` is not a known command
        """
        command = OutgoingCommand(CommandName(name), payload)
        self._commands.enqueue(command)

    def pause(self) -> None:
        self.send_command(CommandName.PAUSE)

    def play(self) -> None:
        self.send_command(CommandName.PLAY)

    async def flush(self) -> None:
        """Wait until every command that can currently be sent was sent."""
        await self._commands.join()

    async def _send_to_room(self, command: OutgoingCommand) -> None:
        """Send one command on the current room.

        A send that fails because its room was replaced while it was in
        flight is retried on the replacement room.

        Raises:
            ConnectionError: If no room is connected or the current room failed
        """
        while True:
            room = self._room
            if room is None or self.connection_status is not ConnectionStatus.CONNECTED:
                raise ConnectionError("Room is not connected")
            try:
                await room.send(command.name.value, command.payload)
                return
            except ConnectionError as e:
                if self._room is room or self._room is None:
                    raise
                logger.info(
                    "Send failed on a replaced room, retrying",
                    extra={
                        "playthrough_uuid": self.playthrough_uuid,
                        "command": command.name.value,
                        "room_id": room.id,
                        "error": str(e),
                    },
                )

    # Connection lifecycle

    async def connect(self) -> None:
        """Open the room and start delivering queued commands.

        Raises:
            PlaythroughDisconnectedError: If ``disconnect()`` was called before
            ConnectionError: If the room could not be opened
        """
        if self._terminated:
            raise PlaythroughDisconnectedError(
                "This playthrough was disconnected; create a new one to reconnect"
            )
        if self.connection_status is not ConnectionStatus.DISCONNECTED:
            logger.warning(
                "Connect called while not disconnected",
                extra={
                    "playthrough_uuid": self.playthrough_uuid,
                    "status": self.connection_status.value,
                },
            )
            return

        self.should_reconnect = True
        self._change_status(ConnectionStatus.CONNECTING)
        try:
            room = await self._room_client.join_or_create(
                self.config.transport.room_name, self._join_options()
            )
        except Exception:
            self._change_status(ConnectionStatus.DISCONNECTED)
            raise

        if not self.should_reconnect:
            # disconnect() ran while the room was opening
            await self._discard_room(room)
            return

        self._attach_room(room)
        self._on_connected()

    async def disconnect(self) -> None:
        """Leave the room and stop any reconnection. Terminal."""
        logger.info(
            "Disconnecting playthrough",
            extra={"playthrough_uuid": self.playthrough_uuid},
        )
        self.should_reconnect = False
        self._terminated = True
        self._reconnect_wakeup.set()
        self._commands.pause()

        room = self._room
        if room is not None:
            self._room = None
            await self._discard_room(room)

        if self._reconnect_task is not None and not self._reconnect_task.done():
            await asyncio.wait({self._reconnect_task})

        self._change_status(ConnectionStatus.DISCONNECTED)
        self._conversations.clear()

        if self._owns_api:
            await self._api.close()

    async def _discard_room(self, room: Room) -> None:
        room.remove_all_listeners()
        try:
            await room.leave(self.config.transport.explicit_disconnect_code)
        except Exception as e:
            logger.warning(
                "Error leaving room",
                extra={"playthrough_uuid": self.playthrough_uuid, "error": str(e)},
            )

    def _join_options(self) -> dict[str, Any]:
        return {"playthroughUuid": self.playthrough_uuid, "token": self.token}

    def _change_status(self, new_status: ConnectionStatus) -> None:
        if new_status is self.connection_status:
            return

        old_status = self.connection_status
        self.connection_status = new_status
        logger.info(
            "Connection status changed",
            extra={
                "playthrough_uuid": self.playthrough_uuid,
                "from_status": old_status.value,
                "to_status": new_status.value,
            },
        )
        self._events.emit(PlaythroughEvent.CONNECTION_STATUS, new_status)

    def _on_connected(self) -> None:
        self._change_status(ConnectionStatus.CONNECTED)
        self._commands.resume()

    def _attach_room(self, room: Room) -> None:
        self._room = room
        self.player_session_id = None

        room.on_message("status", self._on_status)
        room.on_message("problem", self._on_problem)
        for topic in CONVERSATION_TOPICS:
            room.on_message(topic, self._make_topic_handler(topic))
        room.on_error(self._on_error)
        room.on_leave(lambda code: self._on_leave(room, code))

    # Reconnection

    def _on_leave(self, room: Room, code: int) -> None:
        room.remove_all_listeners()
        if self._room is not room:
            return
        self._room = None
        self._commands.pause()

        if code == self.config.transport.explicit_disconnect_code or not self.should_reconnect:
            self._change_status(ConnectionStatus.DISCONNECTED)
            return

        logger.warning(
            "Room closed unexpectedly, reconnecting",
            extra={"playthrough_uuid": self.playthrough_uuid, "code": code, "room_id": room.id},
        )
        self._change_status(ConnectionStatus.CONNECTING)

        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect(room.id, room.session_id),
            name=f"playthrough-{self.playthrough_uuid}-reconnect",
        )

    async def _reconnect(self, room_id: str, session_id: str) -> None:
        """Restore the room after an abnormal closure.

        Rejoins the same room until the server reports it expired, then
        opens a new room for the same playthrough. Gives up after the
        configured attempt budget or when ``should_reconnect`` is cleared.
        """
        reconnect = self.config.reconnect
        room_expired = False

        for attempt in range(1, reconnect.max_attempts + 1):
            if not self.should_reconnect:
                break

            self._change_status(ConnectionStatus.CONNECTING)
            room: Room | None = None

            if not room_expired:
                try:
                    room = await self._room_client.reconnect(room_id, session_id)
                except Exception as e:
                    if is_room_not_found(e):
                        room_expired = True
                        logger.info(
                            "Room expired, opening a new room",
                            extra={"playthrough_uuid": self.playthrough_uuid, "room_id": room_id},
                        )
                    else:
                        logger.warning(
                            "Rejoin attempt failed",
                            extra={
                                "playthrough_uuid": self.playthrough_uuid,
                                "attempt": attempt,
                                "error": str(e),
                            },
                        )

            if room is None and room_expired and self.should_reconnect:
                try:
                    room = await self._room_client.join_or_create(
                        self.config.transport.room_name, self._join_options()
                    )
                except Exception as e:
                    logger.error(
                        "Could not open a new room",
                        extra={
                            "playthrough_uuid": self.playthrough_uuid,
                            "attempt": attempt,
                            "error": str(e),
                        },
                    )

            if room is not None:
                if not self.should_reconnect:
                    await self._discard_room(room)
                    break
                logger.info(
                    "Reconnected",
                    extra={
                        "playthrough_uuid": self.playthrough_uuid,
                        "attempt": attempt,
                        "room_id": room.id,
                    },
                )
                self._attach_room(room)
                self._on_connected()
                self._replay_conversations()
                return

            if attempt < reconnect.max_attempts:
                await self._wait_before_retry(
                    reconnect.base_delay_s + random.uniform(0, reconnect.jitter_s)
                )

        logger.error(
            "Giving up reconnecting",
            extra={
                "playthrough_uuid": self.playthrough_uuid,
                "should_reconnect": self.should_reconnect,
            },
        )
        self._change_status(ConnectionStatus.DISCONNECTED)

    async def _wait_before_retry(self, delay_s: float) -> None:
        """Sleep ``delay_s`` unless ``disconnect()`` wakes the loop first."""
        try:
            await asyncio.wait_for(self._reconnect_wakeup.wait(), timeout=delay_s)
        except TimeoutError:
            pass

    def _replay_conversations(self) -> None:
        for conversation in list(self._conversations.values()):
            task = asyncio.get_running_loop().create_task(
                conversation.reconnect(),
                name=f"conversation-{conversation.uuid}-replay",
            )
            self._background_tasks.add(task)
            task.add_done_callback(
                lambda t, uuid=conversation.uuid: self._on_replay_done(t, uuid)
            )

    def _on_replay_done(self, task: "asyncio.Task[None]", conversation_uuid: str) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Something went wrong reconnecting to conversation",
                extra={
                    "playthrough_uuid": self.playthrough_uuid,
                    "conversation_uuid": conversation_uuid,
                    "error": str(error),
                },
            )

    async def wait_replayed(self) -> None:
        """Wait for catch-up replays started by the last reconnection."""
        if self._background_tasks:
            await asyncio.wait(set(self._background_tasks))

    # Inbound topics

    def _on_status(self, data: Any) -> None:
        try:
            status = StatusMessage.model_validate(data or {})
        except ValidationError as e:
            logger.warning("Invalid status payload", extra={"error": str(e)})
            status = StatusMessage()

        if status.player_session_id is not None:
            if self.player_session_id is None:
                self.player_session_id = status.player_session_id
            elif self.player_session_id != status.player_session_id:
                logger.warning(
                    "Ignoring second player session id for this connection",
                    extra={"playthrough_uuid": self.playthrough_uuid},
                )
        self._on_connected()

    def _on_problem(self, data: Any) -> None:
        try:
            problem = ProblemEvent.model_validate(data)
        except ValidationError as e:
            logger.warning("Invalid problem payload", extra={"error": str(e)})
            return

        logger.warning(
            "Problem reported",
            extra={
                "playthrough_uuid": self.playthrough_uuid,
                "conversation_uuid": problem.conversation_uuid,
                "problem_type": problem.type,
                "error": problem.error,
            },
        )
        if problem.conversation_uuid is not None:
            conversation = self._conversations.get(problem.conversation_uuid)
            if conversation is not None:
                conversation.add_incoming_event(ConversationEvent.PROBLEM, problem)
        self._events.emit(PlaythroughEvent.PROBLEM, problem)

    def _on_error(self, code: int, message: str | None) -> None:
        logger.warning(
            "Transport error",
            extra={"playthrough_uuid": self.playthrough_uuid, "code": code, "error": message},
        )
        self._events.emit(PlaythroughEvent.ERROR, TransportError(code=code, message=message))

    def _make_topic_handler(self, topic: str) -> Callable[[Any], None]:
        event_type, model = CONVERSATION_TOPICS[topic]

        def handle(data: Any) -> None:
            try:
                event = model.model_validate(data)
            except ValidationError as e:
                logger.warning(
                    "Invalid inbound payload, skipping",
                    extra={"topic": topic, "error": str(e)},
                )
                return

            conversation_uuid = event.conversation_uuid
            conversation = self._conversations.get(conversation_uuid)
            if conversation is None:
                logger.debug(
                    "Event for a conversation that is not joined",
                    extra={"topic": topic, "conversation_uuid": conversation_uuid},
                )
                return
            conversation.add_incoming_event(event_type, event)

        return handle

    # HTTP helpers

    async def get_event_history(
        self,
        *,
        conversation_uuid: str | None = None,
        min_event_id: str | None = None,
        limit: int | None = None,
        event_types: list[str] | None = None,
    ) -> list[HistoryEvent]:
        return await self._history.get_event_history(
            self.token,
            conversation_uuid=conversation_uuid,
            min_event_id=min_event_id,
            limit=limit,
            event_types=event_types,
        )

    async def create_conversation(self) -> str:
        return await self._api.create_conversation(self.token)

    async def create_character_conversation(self, character_id: int) -> str:
        return await self._api.create_character_conversation(self.token, character_id)

    async def get_playthrough_info(self) -> PlaythroughInfo:
        return await self._api.get_playthrough_info(self.token)

    async def set_memory(self, recall_value: str, save_value: str | None) -> None:
        await self._api.set_memory(
            self.token, [MemoryToSet(recall_value=recall_value, save_value=save_value)]
        )

    async def restart_from_episode_id(self, episode_id: int) -> None:
        await self._api.restart_from_episode_id(self.token, episode_id)

    async def restart_from_episode_index(self, episode_index: int) -> None:
        await self._api.restart_from_episode_index(self.token, episode_index)

    async def restart_from_event_id(self, event_id: str) -> None:
        await self._api.restart_from_event_id(self.token, event_id)

    async def fork_playthrough_token(self) -> ForkPlaythroughTokenResult:
        return await self._api.fork_playthrough_token(self.token)
