"""Error taxonomy for the meeting-minutes pipeline.

Call-level failures are classified as retriable or non-retriable and are
consumed by the BackoffRetrier. Everything that escapes a processing stage
is wrapped in ProcessingError and handled by the job queue.

Exports:
    MinutesServiceError: Base class for all service errors.
    ConfigurationError: Required settings missing at start-up.
    AuthFailure: Credential refresh failed.
    CallFailure: An external call failed; carries an optional status code.
    NonRetriableCallFailure: 4xx-class failure other than 429.
    RetriableCallFailure: Network, timeout, 429 or 5xx failure.
    RetriesExhausted: The retrier ran out of attempts.
    ResourceNotReady: The availability poller ran out of attempts.
    ProcessingError: A processing stage failed.
"""

from __future__ import annotations


class MinutesServiceError(Exception):
    """Base class for all meeting-minutes service errors."""


class ConfigurationError(MinutesServiceError):
    """Required configuration is missing or invalid."""

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = missing or []


class AuthFailure(MinutesServiceError):
    """The credential provider could not issue an access token."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CallFailure(MinutesServiceError):
    """An external service call failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NonRetriableCallFailure(CallFailure):
    """Client-error failure (4xx other than 429); repeating it cannot help."""


class RetriableCallFailure(CallFailure):
    """Transient failure (network, timeout, 429, 5xx)."""


class RetriesExhausted(MinutesServiceError):
    """Every attempt allowed by the retry policy failed."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Retries exhausted after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class ResourceNotReady(MinutesServiceError):
    """The polled resource did not become available in time."""

    def __init__(self, resource: str, attempts: int) -> None:
        super().__init__(f"{resource} not available after {attempts} checks")
        self.resource = resource
        self.attempts = attempts


class ProcessingError(MinutesServiceError):
    """A stage of the meeting processor failed.

    The original exception is available as ``cause`` and as ``__cause__``.
    """

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"{stage} failed: {cause}")
        self.stage = stage
        self.cause = cause
