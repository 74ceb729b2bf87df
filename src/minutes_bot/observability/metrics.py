"""Process-wide processing metrics.

ProcessingMetrics is the single owner of the job outcome counters. It is
created once at start-up, injected into the MeetingProcessor, and read by
the /metrics and /health endpoints. Updates and snapshots are serialized
through an asyncio.Lock.
"""

from __future__ import annotations

import asyncio

from pydantic import BaseModel

from src.minutes_bot.core.monitoring import (
    job_processing_duration_seconds,
    jobs_processed_total,
)


class MetricsSnapshot(BaseModel):
    """Consistent point-in-time copy of the processing metrics."""

    total_processed: int = 0
    total_succeeded: int = 0
    total_failed: int = 0
    average_processing_time_ms: float = 0.0

    @property
    def success_rate(self) -> str:
        if self.total_processed == 0:
            return "N/A"
        return f"{self.total_succeeded / self.total_processed * 100:.2f}%"


class ProcessingMetrics:
    """Counters for job attempt outcomes and a running mean of durations.

    Only successful attempts feed the mean; failed attempts end at
    arbitrary points and their durations are not representative.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._total_processed = 0
        self._total_succeeded = 0
        self._total_failed = 0
        self._average_ms = 0.0

    async def record_outcome(self, success: bool, elapsed_ms: float) -> None:
        """Record the terminal outcome of one job attempt."""
        async with self._lock:
            self._total_processed += 1
            if success:
                self._total_succeeded += 1
                n = self._total_succeeded
                self._average_ms = (self._average_ms * (n - 1) + elapsed_ms) / n
            else:
                self._total_failed += 1

        outcome = "success" if success else "failure"
        jobs_processed_total.labels(outcome=outcome).inc()
        if success:
            job_processing_duration_seconds.observe(elapsed_ms / 1000.0)

    async def snapshot(self) -> MetricsSnapshot:
        """Return a consistent copy of all counters."""
        async with self._lock:
            return MetricsSnapshot(
                total_processed=self._total_processed,
                total_succeeded=self._total_succeeded,
                total_failed=self._total_failed,
                average_processing_time_ms=self._average_ms,
            )
