"""Bounded polling for resources that become available on their own schedule.

Used for meeting transcripts, which appear some minutes after the meeting
ends. An empty listing is the normal "not yet" answer, not an error, so it
gets a linear, capped wait instead of the exponential call-level backoff.
Errors raised by the check itself propagate unchanged.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_result,
    stop_after_attempt,
    wait_incrementing,
)

from src.minutes_bot.core.retry import SleepFn
from src.minutes_bot.errors import ResourceNotReady

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _is_empty(result: Sequence | None) -> bool:
    return not result


class AvailabilityPoller:
    """Repeats a listing call until it returns something.

    The n-th wait lasts ``min(unit_wait_ms * n, max_wait_ms)``. After each
    wait the resource is checked again, so a poller with ``max_attempts``
    performs at most ``max_attempts + 1`` checks and ``max_attempts`` waits.

    Args:
        max_attempts: Number of waits allowed before giving up.
        unit_wait_ms: Linear wait increment.
        max_wait_ms: Cap for a single wait.
        resource: Resource name used in logs and errors.
        sleep: Awaitable sleep, asyncio.sleep by default.
    """

    def __init__(
        self,
        max_attempts: int = 10,
        unit_wait_ms: int = 30_000,
        max_wait_ms: int = 300_000,
        resource: str = "resource",
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if max_attempts < 0:
            msg = "max_attempts must be >= 0"
            raise ValueError(msg)
        self.max_attempts = max_attempts
        self.unit_wait_ms = unit_wait_ms
        self.max_wait_ms = max_wait_ms
        self.resource = resource
        self._sleep = sleep

    def wait_for(self, attempt: int) -> float:
        """Seconds to wait after the ``attempt``-th empty check (1-based)."""
        return min(self.unit_wait_ms * attempt, self.max_wait_ms) / 1000.0

    async def wait_until_ready(
        self,
        check_fn: Callable[[], Awaitable[list[T]]],
        correlation_id: str,
    ) -> list[T]:
        """Poll ``check_fn`` until it returns a non-empty list.

        Args:
            check_fn: Lists the currently available items.
            correlation_id: Correlation id for log attribution.

        Returns:
            The first non-empty list observed.

        Raises:
            ResourceNotReady: If every check came back empty.
        """

        def _log_wait(retry_state: RetryCallState) -> None:
            logger.info(
                "poller.not_ready_waiting",
                correlation_id=correlation_id,
                resource=self.resource,
                retry_count=retry_state.attempt_number,
                wait_s=retry_state.next_action.sleep if retry_state.next_action else 0,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts + 1),
            wait=wait_incrementing(
                start=self.unit_wait_ms / 1000.0,
                increment=self.unit_wait_ms / 1000.0,
                max=self.max_wait_ms / 1000.0,
            ),
            retry=retry_if_result(_is_empty),
            before_sleep=_log_wait,
            sleep=self._sleep,
        )

        try:
            items = await retrying(check_fn)
        except RetryError as exc:
            logger.error(
                "poller.gave_up",
                correlation_id=correlation_id,
                resource=self.resource,
                checks=exc.last_attempt.attempt_number,
            )
            raise ResourceNotReady(self.resource, exc.last_attempt.attempt_number) from None

        logger.info(
            "poller.ready",
            correlation_id=correlation_id,
            resource=self.resource,
            count=len(items),
        )
        return items
