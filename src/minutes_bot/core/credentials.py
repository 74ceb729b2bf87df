"""Short-lived access credential cache with single-flight refresh.

Holds one process-wide credential. A cached value is handed out only while
it is outside the safety margin of its issued expiry. Concurrent callers
that observe a miss await the same in-flight refresh instead of issuing
their own.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Protocol

import structlog
from pydantic import BaseModel

from src.minutes_bot.errors import AuthFailure

logger = structlog.get_logger(__name__)

DEFAULT_SAFETY_MARGIN_S = 300


class TokenGrant(BaseModel):
    """Raw result of a token refresh."""

    token: str
    expires_in: int = 3600


class Credential(BaseModel):
    """Cached access token.

    ``expires_at`` is already reduced by the safety margin and uses the
    cache's clock (monotonic seconds by default).
    """

    token: str
    expires_at: float


class CredentialProvider(Protocol):
    async def refresh(self) -> TokenGrant: ...


class CredentialCache:
    """Caches a single access credential and refreshes it lazily.

    Args:
        provider: Issues new tokens. Must raise AuthFailure on failure.
        safety_margin_s: Seconds before issued expiry at which the cached
            credential stops being handed out.
        clock: Monotonic time source in seconds.
    """

    def __init__(
        self,
        provider: CredentialProvider,
        safety_margin_s: float = DEFAULT_SAFETY_MARGIN_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._safety_margin_s = safety_margin_s
        self._clock = clock
        self._credential: Credential | None = None
        self._inflight: asyncio.Future[Credential] | None = None
        self.refresh_count = 0

    def _is_fresh(self, credential: Credential | None) -> bool:
        return credential is not None and self._clock() < credential.expires_at

    async def get(self, correlation_id: str) -> Credential:
        """Return a usable credential, refreshing it if needed.

        Args:
            correlation_id: Correlation id for log attribution.

        Returns:
            Credential that is valid for at least the safety margin.

        Raises:
            AuthFailure: If the refresh failed. Every caller waiting on
                that refresh receives the same failure.
        """
        credential = self._credential
        if self._is_fresh(credential):
            logger.debug("credentials.cache_hit", correlation_id=correlation_id)
            return credential

        # No await between the check and the assignment, so only one
        # coroutine can start the refresh.
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._refresh(correlation_id))
        return await asyncio.shield(self._inflight)

    async def _refresh(self, correlation_id: str) -> Credential:
        try:
            logger.info("credentials.refresh_started", correlation_id=correlation_id)
            self.refresh_count += 1
            try:
                grant = await self._provider.refresh()
            except AuthFailure:
                raise
            except Exception as exc:
                raise AuthFailure(f"Failed to get access token: {exc}") from exc

            usable_for = max(grant.expires_in - self._safety_margin_s, 0)
            credential = Credential(
                token=grant.token,
                expires_at=self._clock() + usable_for,
            )
            self._credential = credential
            logger.info(
                "credentials.refreshed",
                correlation_id=correlation_id,
                expires_in=grant.expires_in,
            )
            return credential
        except AuthFailure as exc:
            logger.error(
                "credentials.refresh_failed",
                correlation_id=correlation_id,
                error=str(exc),
            )
            raise
        finally:
            self._inflight = None

    def invalidate(self) -> None:
        """Drop the cached credential so the next get() refreshes."""
        self._credential = None
