"""Async Microsoft Graph client for online meetings, transcripts and chats.

Each method performs exactly one HTTP request and translates failures into
the call-failure taxonomy: 4xx (other than 408/429) become
NonRetriableCallFailure, everything else RetriableCallFailure. Retrying is
left to the caller's BackoffRetrier.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from src.minutes_bot.errors import NonRetriableCallFailure, RetriableCallFailure
from src.minutes_bot.meetings.schemas import TranscriptInfo

logger = structlog.get_logger(__name__)


def _raise_for_status(response: httpx.Response, operation: str) -> None:
    """Raise the matching CallFailure for an error response."""
    if response.is_success:
        return
    status = response.status_code
    message = f"Graph {operation} failed with HTTP {status}: {response.text[:300]}"
    if 400 <= status < 500 and status not in (408, 429):
        raise NonRetriableCallFailure(message, status_code=status)
    raise RetriableCallFailure(message, status_code=status)


class GraphClient:
    """Thin async wrapper over the Graph REST endpoints the pipeline uses.

    Args:
        base_url: Graph API root, e.g. ``https://graph.microsoft.com/v1.0``.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport, used in tests.
    """

    def __init__(
        self,
        base_url: str = "https://graph.microsoft.com/v1.0",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _client(self, token: str) -> httpx.AsyncClient:
        """Create a new httpx client authorized with ``token``."""
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _request(
        self,
        token: str,
        method: str,
        path: str,
        operation: str,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            async with self._client(token) as client:
                response = await client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise RetriableCallFailure(f"Graph {operation} failed: {exc!r}") from exc
        _raise_for_status(response, operation)
        return response

    async def get_meeting(self, token: str, user_id: str, meeting_id: str) -> dict[str, Any]:
        """GET /users/{user}/onlineMeetings/{meeting}."""
        response = await self._request(
            token, "GET",
            f"/users/{user_id}/onlineMeetings/{meeting_id}",
            "get_meeting",
        )
        return response.json()

    async def list_transcripts(
        self, token: str, user_id: str, meeting_id: str,
    ) -> list[TranscriptInfo]:
        """GET /users/{user}/onlineMeetings/{meeting}/transcripts.

        Returns an empty list while Teams is still producing the transcript.
        """
        response = await self._request(
            token, "GET",
            f"/users/{user_id}/onlineMeetings/{meeting_id}/transcripts",
            "list_transcripts",
        )
        items = response.json().get("value") or []
        logger.debug("graph.transcripts_listed", meeting_id=meeting_id, count=len(items))
        return [TranscriptInfo.model_validate(item) for item in items]

    async def get_transcript_content(
        self, token: str, user_id: str, meeting_id: str, transcript_id: str,
    ) -> str:
        """GET the transcript content as WebVTT text."""
        response = await self._request(
            token, "GET",
            f"/users/{user_id}/onlineMeetings/{meeting_id}/transcripts/{transcript_id}/content",
            "get_transcript_content",
            params={"$format": "text/vtt"},
        )
        return response.text

    async def post_chat_message(self, token: str, chat_id: str, html: str) -> dict[str, Any]:
        """POST an HTML message to /chats/{chat}/messages."""
        response = await self._request(
            token, "POST",
            f"/chats/{chat_id}/messages",
            "post_chat_message",
            json={"body": {"contentType": "html", "content": html}},
        )
        return response.json() if response.content else {}

    async def create_subscription(self, token: str, subscription: dict[str, Any]) -> dict[str, Any]:
        """POST /subscriptions to register a change-notification webhook."""
        response = await self._request(
            token, "POST", "/subscriptions", "create_subscription", json=subscription,
        )
        return response.json()
