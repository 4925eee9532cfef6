"""HTTP client for the play API.

Wraps the REST endpoints used alongside the realtime connection: token
and conversation creation, event history, memories and restarts. Every
call takes the base URL from the client instance; there is no global
endpoint.

Example usage:
    >>> async with PlayApiClient("https://play.charisma.ai") as api:
    ...     token = await api.create_playthrough_token(story_id=42)
    ...     conversation_uuid = await api.create_conversation(token)
"""

import logging
from typing import Any, Protocol

import aiohttp

from charisma.errors import ApiError
from charisma.types import (
    ForkPlaythroughTokenResult,
    HistoryEvent,
    MemoryToSet,
    PlaythroughInfo,
)

logger = logging.getLogger(__name__)


class EventHistorySource(Protocol):
    """Anything that can fetch a conversation's event history."""

    async def get_event_history(
        self,
        token: str,
        *,
        conversation_uuid: str | None = None,
        min_event_id: str | None = None,
        limit: int | None = None,
        event_types: list[str] | None = None,
    ) -> list[HistoryEvent]: ...


class PlayApiClient:
    """Async client for the play REST API.

    Attributes:
        base_url: HTTP(S) base URL of the backend
    """

    def __init__(
        self,
        base_url: str,
        session: aiohttp.ClientSession | None = None,
        timeout_s: float = 30.0,
    ) -> None:
        """Initialize API client.

        Args:
            base_url: HTTP(S) base URL of the backend
            session: Optional externally owned aiohttp session
            timeout_s: Total timeout per request in seconds
        """
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)

    async def __aenter__(self) -> "PlayApiClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session if this client created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        auth_header: str | None = None,
        json_body: dict[str, Any] | None = None,
        params: list[tuple[str, str]] | None = None,
    ) -> Any:
        """Call an endpoint and decode its JSON body.

        Args:
            method: HTTP method
            path: Path below the base URL
            token: Playthrough token sent as a bearer token
            auth_header: Explicit Authorization header (overrides ``token``)
            json_body: JSON body for POST requests
            params: Query string parameters

        Returns:
            Decoded JSON body, or an empty dict when there is none

        Raises:
            ApiError: If the response status is not 2xx or the request fails
        """
        url = f"{self.base_url}{path}"
        headers = {"Accept": "application/json"}
        if auth_header is not None:
            headers["Authorization"] = auth_header
        elif token is not None:
            headers["Authorization"] = f"Bearer {token}"

        session = self._ensure_session()
        try:
            async with session.request(
                method, url, headers=headers, json=json_body, params=params
            ) as response:
                data: Any = {}
                try:
                    data = await response.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError):
                    # Some endpoints return only a status code
                    pass

                if response.status >= 400:
                    error = data.get("error") if isinstance(data, dict) else None
                    logger.warning(
                        "API call failed",
                        extra={"url": url, "status": response.status, "error": error},
                    )
                    raise ApiError(
                        error or f"Something went wrong calling `{url}`",
                        status=response.status,
                    )

                return data if data is not None else {}
        except aiohttp.ClientError as e:
            raise ApiError(f"Request to `{url}` failed: {e}") from e

    async def create_playthrough_token(
        self,
        story_id: int,
        version: int | None = None,
        api_key: str | None = None,
        user_token: str | None = None,
        language_code: str | None = None,
    ) -> str:
        """Create a playthrough token for a story.

        Args:
            story_id: Story to play
            version: Story version; -1 is the draft and needs credentials
            api_key: Story API key (preferred over ``user_token``)
            user_token: User token of the story owner
            language_code: BCP-47 language code, defaults to English server-side

        Returns:
            Playthrough token

        Raises:
            ValueError: If the draft version is requested without credentials
            ApiError: If the token could not be generated
        """
        if version == -1 and api_key is None and user_token is None:
            raise ValueError(
                "To play the draft version (-1) of a story, an `api_key` or "
                "`user_token` must also be passed."
            )

        auth_header: str | None = None
        if api_key:
            auth_header = f"API-Key {api_key}"
        elif user_token:
            auth_header = f"Bearer {user_token}"

        body: dict[str, Any] = {"storyId": story_id}
        if version is not None:
            body["version"] = version
        if language_code is not None:
            body["languageCode"] = language_code

        try:
            data = await self._request(
                "POST", "/play/token", auth_header=auth_header, json_body=body
            )
        except ApiError as e:
            raise ApiError(
                f"A playthrough token could not be generated: {e}", status=e.status
            ) from e
        return str(data["token"])

    async def create_conversation(self, token: str) -> str:
        """Create a conversation and return its uuid."""
        data = await self._request("POST", "/play/conversation", token=token, json_body={})
        return str(data["conversationUuid"])

    async def create_character_conversation(self, token: str, character_id: int) -> str:
        """Create a conversation with a single character and return its uuid."""
        data = await self._request(
            "POST",
            "/play/conversation/character",
            token=token,
            json_body={"characterId": character_id},
        )
        return str(data["conversationUuid"])

    async def get_event_history(
        self,
        token: str,
        *,
        conversation_uuid: str | None = None,
        min_event_id: str | None = None,
        limit: int | None = None,
        event_types: list[str] | None = None,
    ) -> list[HistoryEvent]:
        """Fetch ordered historical events of the playthrough.

        Args:
            token: Playthrough token
            conversation_uuid: Restrict to one conversation
            min_event_id: Lowest event id to return (inclusive)
            limit: Maximum number of events
            event_types: Event kinds to include, e.g. ``message_character``

        Returns:
            Events in ascending id order as returned by the server
        """
        params: list[tuple[str, str]] = []
        if conversation_uuid is not None:
            params.append(("conversationUuid", conversation_uuid))
        if min_event_id is not None:
            params.append(("minEventId", min_event_id))
        if limit is not None:
            params.append(("limit", str(limit)))
        for event_type in event_types or []:
            params.append(("eventTypes", event_type))

        data = await self._request("GET", "/play/event-history", token=token, params=params)
        return [HistoryEvent.model_validate(event) for event in data.get("events", [])]

    async def get_playthrough_info(self, token: str) -> PlaythroughInfo:
        data = await self._request("GET", "/play/playthrough-info", token=token)
        return PlaythroughInfo.model_validate(data)

    async def set_memory(self, token: str, memories: list[MemoryToSet]) -> None:
        """Save one or more memories by recall value."""
        await self._request(
            "POST",
            "/play/set-memory",
            token=token,
            json_body={"memories": [memory.to_wire() for memory in memories]},
        )

    async def restart_from_episode_id(self, token: str, episode_id: int) -> None:
        await self._request(
            "POST",
            "/play/restart-from-episode",
            token=token,
            json_body={"episodeId": episode_id},
        )

    async def restart_from_episode_index(self, token: str, episode_index: int) -> None:
        await self._request(
            "POST",
            "/play/restart-from-episode",
            token=token,
            json_body={"episodeIndex": episode_index},
        )

    async def restart_from_event_id(self, token: str, event_id: str) -> None:
        await self._request(
            "POST",
            "/play/restart-from-event",
            token=token,
            json_body={"eventId": event_id},
        )

    async def fork_playthrough_token(self, token: str) -> ForkPlaythroughTokenResult:
        """Copy the playthrough into a new one and return its token."""
        data = await self._request("POST", "/play/fork-playthrough", token=token, json_body={})
        return ForkPlaythroughTokenResult.model_validate(data)
