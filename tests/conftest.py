"""Shared fixtures and in-memory test doubles.

Provides:
- FakeClock / RecordingSleep: deterministic time, so no test sleeps
- InMemoryJobStore: JobStore with ready list, pending map and delayed set
- InMemoryDeadLetterQueue / InMemoryDeliveryLedger
- A JobQueue wired to the doubles with a three-attempt job policy
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any

import pytest
import structlog
from structlog.testing import LogCapture

from src.minutes_bot.core.retry import RetryPolicy
from src.minutes_bot.jobs.queue import JobQueue
from src.minutes_bot.jobs.schemas import Delivery, Job, JobCounts, JobState


class FakeClock:
    """Manually advanced time source (seconds)."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records delays and advances a clock."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.delays: list[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)


class InMemoryJobStore:
    """In-memory JobStore for testing without Redis."""

    def __init__(self, clock: FakeClock) -> None:
        self.jobs: dict[str, Job] = {}
        self.ready: list[tuple[str, str]] = []
        self.pending: dict[str, tuple[str, str, float]] = {}
        self.delayed: dict[str, float] = {}
        self.acked: list[str] = []
        self.stats = {"completed": 0, "failed": 0}
        self.available = True
        self.fail_add_at: int | None = None
        self.touches: list[str] = []
        self._clock = clock
        self._job_seq = itertools.count(1)
        self._entry_seq = itertools.count(1)

    async def next_id(self) -> str:
        return str(next(self._job_seq))

    async def save(self, job: Job) -> None:
        self.jobs[job.id] = job

    async def load(self, job_id: str) -> Job | None:
        return self.jobs.get(job_id)

    async def push_ready(self, job_id: str) -> str:
        message_id = f"{next(self._entry_seq)}-0"
        self.ready.append((message_id, job_id))
        return message_id

    async def add_jobs(self, jobs: list[Job]) -> list[str]:
        """Atomic batch insert; ``fail_add_at`` makes the n-th job (1-based) fail."""
        if self.fail_add_at is not None and len(jobs) >= self.fail_add_at:
            msg = f"connection lost while adding job {self.fail_add_at}"
            raise ConnectionError(msg)
        for job in jobs:
            self.jobs[job.id] = job
        return [await self.push_ready(job.id) for job in jobs]

    async def reserve(self, consumer: str, block_ms: int = 5000) -> Delivery | None:
        while self.ready:
            message_id, job_id = self.ready.pop(0)
            self.pending[message_id] = (job_id, consumer, self._clock())
            job = self.jobs.get(job_id)
            if job is None:
                await self.ack(message_id)
                continue
            return Delivery(message_id=message_id, job=job, consumer=consumer)
        # Never blocks; yield so polling loops stay cooperative.
        await asyncio.sleep(0)
        return None

    async def ack(self, message_id: str) -> None:
        self.pending.pop(message_id, None)
        self.acked.append(message_id)

    async def reclaim_stalled(self, consumer: str, idle_ms: int, count: int = 10) -> list[Delivery]:
        deliveries = []
        for message_id, (job_id, _owner, since) in list(self.pending.items()):
            if len(deliveries) >= count:
                break
            if (self._clock() - since) * 1000 < idle_ms:
                continue
            self.pending[message_id] = (job_id, consumer, self._clock())
            deliveries.append(
                Delivery(message_id=message_id, job=self.jobs[job_id], consumer=consumer)
            )
        return deliveries

    async def touch(self, consumer: str, message_id: str) -> bool:
        if message_id not in self.pending:
            return False
        job_id, _owner, _since = self.pending[message_id]
        self.pending[message_id] = (job_id, consumer, self._clock())
        self.touches.append(message_id)
        return True

    async def schedule(self, job_id: str, ready_at: float) -> None:
        self.delayed[job_id] = ready_at

    async def promote_due(self, now: float, limit: int = 100) -> int:
        due = sorted(
            (ready_at, job_id) for job_id, ready_at in self.delayed.items() if ready_at <= now
        )[:limit]
        for _ready_at, job_id in due:
            del self.delayed[job_id]
            await self.push_ready(job_id)
        return len(due)

    async def record_terminal(self, state: JobState) -> None:
        key = "completed" if state == JobState.SUCCEEDED else "failed"
        self.stats[key] += 1

    async def counts(self) -> JobCounts:
        return JobCounts(
            waiting=len(self.ready),
            active=len(self.pending),
            delayed=len(self.delayed),
            completed=self.stats["completed"],
            failed=self.stats["failed"],
        )

    async def ping(self) -> bool:
        return self.available


class InMemoryDeadLetterQueue:
    """In-memory dead letter sink."""

    def __init__(self) -> None:
        self.entries: list[tuple[str, dict[str, Any]]] = []
        self._seq = itertools.count(1)

    async def send_to_dlq(self, job: Job, error: str) -> str:
        entry_id = f"{next(self._seq)}-0"
        self.entries.append(
            (
                entry_id,
                {
                    "job_id": job.id,
                    "correlation_id": job.correlation_id,
                    "meeting_id": job.meeting_id,
                    "_dlq_error": error,
                    "_dlq_attempts": str(job.attempts_made),
                },
            )
        )
        return entry_id

    async def list_dlq_messages(self, count: int = 50) -> list[tuple[str, dict[str, Any]]]:
        return self.entries[:count]

    async def pop_entry(self, entry_id: str) -> dict[str, Any]:
        for index, (existing_id, data) in enumerate(self.entries):
            if existing_id == entry_id:
                del self.entries[index]
                return data
        msg = f"DLQ entry '{entry_id}' not found"
        raise KeyError(msg)


class InMemoryDeliveryLedger:
    def __init__(self) -> None:
        self.delivered: set[str] = set()

    async def was_delivered(self, job_id: str) -> bool:
        return job_id in self.delivered

    async def mark_delivered(self, job_id: str) -> None:
        self.delivered.add(job_id)


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper(clock) -> RecordingSleep:
    return RecordingSleep(clock)


@pytest.fixture
def store(clock) -> InMemoryJobStore:
    return InMemoryJobStore(clock)


@pytest.fixture
def dlq() -> InMemoryDeadLetterQueue:
    return InMemoryDeadLetterQueue()


@pytest.fixture
def ledger() -> InMemoryDeliveryLedger:
    return InMemoryDeliveryLedger()


@pytest.fixture
def job_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay_ms=60_000)


@pytest.fixture
def job_queue(store, dlq, job_policy, clock) -> JobQueue:
    return JobQueue(store, dlq, job_policy, clock=clock)


@pytest.fixture
def log_output() -> LogCapture:
    """Capture structlog events, including bound context variables."""
    capture = LogCapture()
    structlog.configure(processors=[structlog.contextvars.merge_contextvars, capture])
    yield capture
    structlog.reset_defaults()
