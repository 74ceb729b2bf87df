"""Tests for retry classification and the BackoffRetrier."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from src.minutes_bot.core.retry import (
    BackoffKind,
    BackoffRetrier,
    RetryPolicy,
    is_retriable,
    status_code_of,
)
from src.minutes_bot.errors import (
    NonRetriableCallFailure,
    RetriableCallFailure,
    RetriesExhausted,
)


class StatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"status {status_code}")
        self.status_code = status_code


def _http_status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://graph.example/x")
    response = httpx.Response(code, request=request)
    return httpx.HTTPStatusError("boom", request=request, response=response)


class FlakyOperation:
    """Fails with the queued errors, then returns ``result``."""

    def __init__(self, *errors: Exception, result: str = "ok") -> None:
        self.errors = list(errors)
        self.calls = 0
        self.result = result

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


# ── Classification ───────────────────────────────────────────────────────────


class TestClassification:
    @pytest.mark.parametrize("code", [400, 401, 403, 404, 422])
    def test_client_errors_are_not_retriable(self, code):
        assert is_retriable(StatusError(code)) is False

    @pytest.mark.parametrize("code", [408, 429, 500, 502, 503])
    def test_rate_limit_timeout_and_server_errors_are_retriable(self, code):
        assert is_retriable(StatusError(code)) is True

    def test_error_without_status_is_retriable(self):
        assert is_retriable(RuntimeError("socket closed")) is True

    def test_transport_error_is_retriable(self):
        assert is_retriable(httpx.ConnectTimeout("timed out")) is True

    def test_explicit_failure_classes_win(self):
        assert is_retriable(NonRetriableCallFailure("no", status_code=500)) is False
        assert is_retriable(RetriableCallFailure("yes", status_code=404)) is True

    def test_cancellation_is_never_retried(self):
        assert is_retriable(asyncio.CancelledError()) is False

    def test_status_code_from_httpx_error(self):
        assert status_code_of(_http_status_error(503)) == 503
        assert status_code_of(ValueError("x")) is None


class TestRetryPolicy:
    def test_exponential_delays(self):
        policy = RetryPolicy(max_attempts=5, base_delay_ms=2000)
        assert [policy.delay_s(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 16.0]

    def test_linear_delays(self):
        policy = RetryPolicy(max_attempts=5, base_delay_ms=1000, backoff=BackoffKind.linear)
        assert [policy.delay_s(n) for n in (1, 2, 3)] == [1.0, 2.0, 3.0]

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0, base_delay_ms=1000)


# ── Retrier ──────────────────────────────────────────────────────────────────


class TestBackoffRetrier:
    @pytest.mark.asyncio
    async def test_retries_transient_failures_with_exponential_waits(self, sleeper):
        retrier = BackoffRetrier(sleep=sleeper)
        policy = RetryPolicy(max_attempts=3, base_delay_ms=1000)
        operation = FlakyOperation(StatusError(503), StatusError(503))

        result = await retrier.run(operation, policy, "cid")

        assert result == "ok"
        assert operation.calls == 3
        assert sleeper.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_client_error_fails_immediately(self, sleeper):
        retrier = BackoffRetrier(sleep=sleeper)
        policy = RetryPolicy(max_attempts=5, base_delay_ms=1000)
        operation = FlakyOperation(StatusError(404))

        with pytest.raises(NonRetriableCallFailure) as exc_info:
            await retrier.run(operation, policy, "cid")

        assert exc_info.value.status_code == 404
        assert operation.calls == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_non_retriable_failure_passes_through(self, sleeper):
        retrier = BackoffRetrier(sleep=sleeper)
        policy = RetryPolicy(max_attempts=5, base_delay_ms=1000)
        original = NonRetriableCallFailure("bad request", status_code=400)

        with pytest.raises(NonRetriableCallFailure) as exc_info:
            await retrier.run(FlakyOperation(original), policy, "cid")

        assert exc_info.value is original

    @pytest.mark.asyncio
    async def test_exhaustion_carries_last_error(self, sleeper):
        retrier = BackoffRetrier(sleep=sleeper)
        policy = RetryPolicy(max_attempts=3, base_delay_ms=500)
        last = StatusError(429)
        operation = FlakyOperation(StatusError(503), StatusError(502), last)

        with pytest.raises(RetriesExhausted) as exc_info:
            await retrier.run(operation, policy, "cid")

        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is last
        assert operation.calls == 3
        assert sleeper.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_single_attempt_policy_never_sleeps(self, sleeper):
        retrier = BackoffRetrier(sleep=sleeper)
        policy = RetryPolicy(max_attempts=1, base_delay_ms=1000)

        with pytest.raises(RetriesExhausted):
            await retrier.run(FlakyOperation(StatusError(500)), policy, "cid")

        assert sleeper.delays == []
