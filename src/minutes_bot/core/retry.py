"""Generic retry wrapper for external calls.

Wraps a single awaitable operation with tenacity: transient failures
(network errors, timeouts, 429, 5xx) are retried with exponential backoff,
client errors (other 4xx) abort immediately. Exhausting the policy raises
RetriesExhausted carrying the last error.

This is the call-level policy only. Job-level redelivery is handled by the
job queue with its own RetryPolicy instance.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, TypeVar

import httpx
import structlog
from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_incrementing,
)

from src.minutes_bot.errors import (
    NonRetriableCallFailure,
    RetriableCallFailure,
    RetriesExhausted,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]


class BackoffKind(str, Enum):
    exponential = "exponential"
    linear = "linear"


class RetryPolicy(BaseModel):
    """How many times to try and how long to wait between tries.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay_ms: Delay before the first retry.
        backoff: Growth of the delay for later retries.
    """

    max_attempts: int = Field(ge=1)
    base_delay_ms: int = Field(ge=0)
    backoff: BackoffKind = BackoffKind.exponential

    def delay_s(self, failures: int) -> float:
        """Seconds to wait after the ``failures``-th failed attempt (1-based)."""
        base = self.base_delay_ms / 1000.0
        if self.backoff == BackoffKind.linear:
            return base * failures
        return base * (2 ** (failures - 1))

    def tenacity_wait(self):
        """Equivalent tenacity wait strategy for this policy."""
        base = self.base_delay_ms / 1000.0
        if self.backoff == BackoffKind.linear:
            return wait_incrementing(start=base, increment=base)
        return wait_exponential(multiplier=base, exp_base=2)


# ── Failure classification ───────────────────────────────────────────────────


def status_code_of(exc: BaseException) -> int | None:
    """Extract an HTTP-equivalent status code from an exception, if any."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    return None


def is_retriable(exc: BaseException) -> bool:
    """Return True if repeating the failed call could succeed.

    4xx responses are client errors and are not retried, except 429 (rate
    limited) and 408 (request timeout). Everything else, including errors
    with no status, is treated as transient. Cancellation is never retried.
    """
    if not isinstance(exc, Exception) or isinstance(exc, NonRetriableCallFailure):
        return False
    if isinstance(exc, (RetriableCallFailure, httpx.TransportError)):
        return True
    status = status_code_of(exc)
    if status is None or status in (408, 429):
        return True
    return not 400 <= status < 500


# ── Retrier ──────────────────────────────────────────────────────────────────


class BackoffRetrier:
    """Runs an operation under a RetryPolicy.

    Args:
        sleep: Awaitable sleep used between attempts. Defaults to
            asyncio.sleep so waiting never blocks the event loop.
    """

    def __init__(self, sleep: SleepFn = asyncio.sleep) -> None:
        self._sleep = sleep

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
        correlation_id: str,
        name: str = "call",
    ) -> T:
        """Execute ``operation`` with retries.

        Args:
            operation: Zero-argument coroutine function to execute.
            policy: Attempt budget and backoff schedule.
            correlation_id: Correlation id for log attribution.
            name: Short operation name for logs.

        Returns:
            The operation's result.

        Raises:
            NonRetriableCallFailure: On a client-error failure (no retry).
            RetriesExhausted: When every allowed attempt failed.
        """

        def _log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "retry.attempt_failed",
                correlation_id=correlation_id,
                operation=name,
                attempt=retry_state.attempt_number,
                max_attempts=policy.max_attempts,
                wait_s=retry_state.next_action.sleep if retry_state.next_action else 0,
                status=status_code_of(exc) if exc else None,
                error=str(exc),
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=policy.tenacity_wait(),
            retry=retry_if_exception(is_retriable),
            before_sleep=_log_retry,
            sleep=self._sleep,
        )

        try:
            return await retrying(operation)
        except RetryError as exc:
            last_error = exc.last_attempt.exception()
            logger.error(
                "retry.exhausted",
                correlation_id=correlation_id,
                operation=name,
                attempts=policy.max_attempts,
                error=str(last_error),
            )
            raise RetriesExhausted(policy.max_attempts, last_error) from last_error
        except NonRetriableCallFailure:
            logger.warning(
                "retry.non_retriable",
                correlation_id=correlation_id,
                operation=name,
            )
            raise
        except Exception as exc:
            # Only non-retriable failures escape tenacity without a RetryError
            logger.warning(
                "retry.non_retriable",
                correlation_id=correlation_id,
                operation=name,
                status=status_code_of(exc),
                error=str(exc),
            )
            raise NonRetriableCallFailure(str(exc), status_code=status_code_of(exc)) from exc
