"""Exception types raised by the playthrough client."""


class CharismaError(Exception):
    """Base class for all client errors."""


class InvalidTokenError(CharismaError, ValueError):
    """Playthrough token could not be decoded."""


class PlaythroughDisconnectedError(CharismaError):
    """Operation attempted on a playthrough that was explicitly disconnected."""


class ConversationNotJoinedError(CharismaError, KeyError):
    """Conversation uuid is not registered on the playthrough."""

    def __init__(self, conversation_uuid: str) -> None:
        super().__init__(
            f"The conversation with uuid `{conversation_uuid}` has not been joined, "
            "so cannot be left."
        )
        self.conversation_uuid = conversation_uuid

    def __str__(self) -> str:
        # KeyError quotes its argument by default
        return str(self.args[0])


class RoomNotFoundError(CharismaError, ConnectionError):
    """Remote room no longer exists (expired) and cannot be rejoined."""

    def __init__(self, room_id: str) -> None:
        super().__init__(f'room "{room_id}" not found')
        self.room_id = room_id


class ApiError(CharismaError):
    """HTTP API call returned a non-success status."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
