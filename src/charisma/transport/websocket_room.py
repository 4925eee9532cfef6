"""WebSocket room implementation.

Provides rooms over a plain WebSocket connection using the JSON envelope
protocol in ``websocket_protocol``.
"""

import asyncio
import json
import logging
from typing import Any

import websockets
from pydantic import BaseModel, ValidationError
from websockets.asyncio.client import ClientConnection, connect

from charisma.config import ClientConfig
from charisma.errors import RoomNotFoundError
from charisma.transport.base import (
    CLOSE_CODE_ABNORMAL,
    CLOSE_CODE_CONSENTED,
    BaseRoom,
    Room,
    RoomClient,
)
from charisma.transport.websocket_protocol import (
    ERROR_ROOM_NOT_FOUND,
    ErrorMessage,
    JoinedMessage,
    JoinRequest,
    RejoinRequest,
    TopicMessage,
)

logger = logging.getLogger(__name__)


class WebSocketRoom(BaseRoom):
    """Room backed by a single WebSocket connection.

    A reader task dispatches inbound topic messages until the connection
    closes, then fires the leave handlers with the close code.
    """

    def __init__(self, websocket: ClientConnection, room_id: str, session_id: str) -> None:
        """Initialize WebSocket room.

        Args:
            websocket: Open client connection that completed the join handshake
            room_id: Server-assigned room identifier
            session_id: Seat identifier within the room
        """
        super().__init__(room_id, session_id)
        self._websocket = websocket
        self._leave_code: int | None = None
        self._reader: asyncio.Task[None] | None = None

    def start(self) -> None:
        """Start dispatching inbound messages."""
        if self._reader is None:
            self._reader = asyncio.get_running_loop().create_task(
                self._read_loop(), name=f"room-{self.id}-reader"
            )

    async def send(self, topic: str, payload: Any = None) -> None:
        """Send a message on a topic.

        Args:
            topic: Command name
            payload: JSON-serializable payload

        Raises:
            ConnectionError: If the connection is closed or broken
        """
        if self.has_left:
            raise ConnectionError("Room connection is closed")

        message = TopicMessage(topic=topic, data=payload)
        try:
            await self._websocket.send(message.model_dump_json())
        except websockets.exceptions.ConnectionClosed as e:
            raise ConnectionError(f"Room connection closed: {e}") from e

        logger.debug("Message sent", extra={"room_id": self.id, "topic": topic})

    async def leave(self, code: int = CLOSE_CODE_CONSENTED) -> None:
        """Close the connection with ``code`` and wait for the reader to stop."""
        if self.has_left:
            return

        self._leave_code = code
        try:
            await self._websocket.close(code=code)
        except Exception as e:
            logger.warning(
                "Error during room close",
                extra={"room_id": self.id, "error": str(e)},
            )

        if self._reader is not None:
            await asyncio.wait({self._reader})
        else:
            self._emit_leave(code)

    async def _read_loop(self) -> None:
        try:
            async for raw_message in self._websocket:
                if isinstance(raw_message, bytes):
                    raw_message = raw_message.decode("utf-8")
                self._handle_frame(raw_message)
        except websockets.exceptions.ConnectionClosed:
            pass
        except Exception as e:
            logger.error(
                "Error in room reader",
                extra={"room_id": self.id, "error": str(e)},
            )
        finally:
            code = self._leave_code or self._websocket.close_code or CLOSE_CODE_ABNORMAL
            self._emit_leave(code)

    def _handle_frame(self, raw_message: str) -> None:
        try:
            data = json.loads(raw_message)
            message_type = data.get("type")

            if message_type == "message":
                topic_msg = TopicMessage.model_validate(data)
                self._dispatch(topic_msg.topic, topic_msg.data)

            elif message_type == "error":
                error_msg = ErrorMessage.model_validate(data)
                self._emit_error(error_msg.code, error_msg.message)

            else:
                logger.warning(
                    "Unknown message type",
                    extra={"room_id": self.id, "type": message_type},
                )

        except (json.JSONDecodeError, AttributeError, ValidationError) as e:
            logger.error(
                "Invalid room frame",
                extra={"room_id": self.id, "error": str(e)},
            )


class WebSocketRoomClient(RoomClient):
    """Opens ``WebSocketRoom`` instances against one room server."""

    def __init__(
        self,
        url: str,
        open_timeout_s: float = 10.0,
        max_message_size: int = 2**20,
    ) -> None:
        """Initialize room client.

        Args:
            url: WebSocket endpoint of the room server (ws:// or wss://)
            open_timeout_s: Timeout for connecting and the join handshake
            max_message_size: Maximum inbound message size in bytes
        """
        self._url = url
        self._open_timeout_s = open_timeout_s
        self._max_message_size = max_message_size

    @classmethod
    def from_config(cls, config: ClientConfig) -> "WebSocketRoomClient":
        return cls(
            f"{config.ws_url}/rooms",
            open_timeout_s=config.transport.open_timeout_s,
            max_message_size=config.transport.max_message_size,
        )

    async def join_or_create(self, room_name: str, options: dict[str, Any]) -> Room:
        return await self._open(JoinRequest(room=room_name, options=options))

    async def reconnect(self, room_id: str, session_id: str) -> Room:
        return await self._open(RejoinRequest(room_id=room_id, session_id=session_id))

    async def _open(self, request: JoinRequest | RejoinRequest) -> WebSocketRoom:
        try:
            websocket = await connect(
                self._url,
                open_timeout=self._open_timeout_s,
                max_size=self._max_message_size,
            )
        except (OSError, TimeoutError, websockets.exceptions.WebSocketException) as e:
            raise ConnectionError(f"Could not connect to {self._url}: {e}") from e

        try:
            await websocket.send(request.model_dump_json())
            raw_reply = await asyncio.wait_for(websocket.recv(), timeout=self._open_timeout_s)
            reply = self._parse_reply(raw_reply)
        except (TimeoutError, websockets.exceptions.ConnectionClosed) as e:
            await websocket.close()
            raise ConnectionError(f"Room handshake failed: {e}") from e
        except BaseException:
            await websocket.close()
            raise

        if isinstance(reply, ErrorMessage):
            await websocket.close()
            if reply.code == ERROR_ROOM_NOT_FOUND and isinstance(request, RejoinRequest):
                raise RoomNotFoundError(request.room_id)
            raise ConnectionError(f"Room request rejected [{reply.code}]: {reply.message}")

        room = WebSocketRoom(websocket, reply.room_id, reply.session_id)
        room.start()

        logger.info(
            "Room joined",
            extra={"room_id": room.id, "request": request.type},
        )
        return room

    @staticmethod
    def _parse_reply(raw_reply: str | bytes) -> JoinedMessage | ErrorMessage:
        try:
            data = json.loads(raw_reply)
            model: type[BaseModel] = (
                ErrorMessage if data.get("type") == "error" else JoinedMessage
            )
            return model.model_validate(data)  # type: ignore[return-value]
        except (json.JSONDecodeError, AttributeError, ValidationError) as e:
            raise ConnectionError(f"Invalid join reply: {e}") from e
