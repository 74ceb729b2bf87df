"""Durable, at-least-once job queue with job-level exponential backoff.

JobQueue owns job state. Ingestion calls ``enqueue`` and returns at once;
workers ``reserve`` deliveries and settle each one with ``complete`` or
``fail``. A failed attempt is redelivered after
``policy.delay_s(attempts_made)`` until the job has used
``policy.max_attempts`` deliveries, then the job is marked FAILED and
written to the dead letter queue. Nothing redelivers a FAILED job except
an explicit replay.

The job-level policy restarts the whole processor; it is independent of
the call-level policy used by the BackoffRetrier inside one attempt.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from typing import Any, Protocol

import structlog

from src.minutes_bot.core.monitoring import (
    jobs_dead_lettered_total,
    jobs_enqueued_total,
    jobs_retried_total,
)
from src.minutes_bot.core.retry import RetryPolicy
from src.minutes_bot.jobs.schemas import (
    Delivery,
    Job,
    JobCounts,
    JobState,
    MeetingJobPayload,
)

logger = structlog.get_logger(__name__)


class JobStore(Protocol):
    async def next_id(self) -> str: ...
    async def save(self, job: Job) -> None: ...
    async def load(self, job_id: str) -> Job | None: ...
    async def push_ready(self, job_id: str) -> str: ...
    async def add_jobs(self, jobs: list[Job]) -> list[str]: ...
    async def reserve(self, consumer: str, block_ms: int = 5000) -> Delivery | None: ...
    async def ack(self, message_id: str) -> None: ...
    async def reclaim_stalled(self, consumer: str, idle_ms: int, count: int = 10) -> list[Delivery]: ...
    async def touch(self, consumer: str, message_id: str) -> bool: ...
    async def schedule(self, job_id: str, ready_at: float) -> None: ...
    async def promote_due(self, now: float, limit: int = 100) -> int: ...
    async def record_terminal(self, state: JobState) -> None: ...
    async def counts(self) -> JobCounts: ...
    async def ping(self) -> bool: ...


class FailedJobSink(Protocol):
    async def send_to_dlq(self, job: Job, error: str) -> str: ...
    async def list_dlq_messages(self, count: int = 50) -> list[tuple[str, dict[str, Any]]]: ...
    async def pop_entry(self, entry_id: str) -> dict[str, Any]: ...


class JobQueue:
    """Queue front-end: enqueue, reserve, and settle job deliveries.

    Args:
        store: Durable job storage.
        dlq: Sink for terminally failed jobs.
        policy: Job-level retry policy (attempt cap and redelivery delay).
        clock: Wall-clock time source in epoch seconds.
    """

    def __init__(
        self,
        store: JobStore,
        dlq: FailedJobSink,
        policy: RetryPolicy,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._dlq = dlq
        self.policy = policy
        self._clock = clock

    async def enqueue(
        self,
        payload: MeetingJobPayload,
        correlation_id: str | None = None,
    ) -> Job:
        """Persist a new job and make it ready for workers.

        Args:
            payload: Validated meeting identifiers.
            correlation_id: Correlation id supplied by ingestion; a new
                UUID is assigned when omitted.

        Returns:
            The stored job in state QUEUED.
        """
        jobs = await self.enqueue_many([payload], correlation_id=correlation_id)
        return jobs[0]

    async def enqueue_many(
        self,
        payloads: list[MeetingJobPayload],
        correlation_id: str | None = None,
    ) -> list[Job]:
        """Persist a batch of jobs atomically: all are queued or none.

        Ids allocated for a batch that fails to commit are not reused.
        """
        if not payloads:
            return []
        correlation_id = correlation_id or str(uuid.uuid4())
        jobs = [
            Job(
                id=await self._store.next_id(),
                correlation_id=correlation_id,
                meeting_id=payload.meeting_id,
                chat_id=payload.chat_id,
                user_id=payload.user_id,
            )
            for payload in payloads
        ]
        await self._store.add_jobs(jobs)
        jobs_enqueued_total.inc(len(jobs))

        for job in jobs:
            logger.info(
                "queue.job_enqueued",
                job_id=job.id,
                correlation_id=job.correlation_id,
                meeting_id=job.meeting_id,
            )
        return jobs

    async def reserve(self, consumer: str, block_ms: int = 5000) -> Delivery | None:
        """Take the next ready job and mark it IN_PROGRESS."""
        delivery = await self._store.reserve(consumer, block_ms=block_ms)
        if delivery is None:
            return None
        return await self._start(delivery)

    async def _start(self, delivery: Delivery) -> Delivery | None:
        job = delivery.job
        if job.state.is_terminal:
            # Settled before the previous holder could ack; nothing to do.
            await self._store.ack(delivery.message_id)
            logger.info(
                "queue.settled_job_skipped",
                job_id=job.id,
                correlation_id=job.correlation_id,
                state=job.state.value,
            )
            return None
        job = job.transition(JobState.IN_PROGRESS)
        await self._store.save(job)
        return delivery.model_copy(update={"job": job})

    async def complete(self, delivery: Delivery) -> Job:
        """Mark a delivered job SUCCEEDED and acknowledge it."""
        job = delivery.job.transition(JobState.SUCCEEDED, last_error=None)
        await self._store.save(job)
        await self._store.ack(delivery.message_id)
        await self._store.record_terminal(JobState.SUCCEEDED)

        logger.info(
            "queue.job_completed",
            job_id=job.id,
            correlation_id=job.correlation_id,
            attempts=job.attempts_made + 1,
        )
        return job

    async def fail(self, delivery: Delivery, error: BaseException | str) -> Job:
        """Settle a failed delivery: schedule a retry or fail terminally.

        Args:
            delivery: The delivery whose attempt failed.
            error: The failure raised by the processor.

        Returns:
            The updated job: QUEUED with a scheduled retry, or FAILED.
        """
        previous_attempts = delivery.job.attempts_made
        attempts_made = previous_attempts + 1
        message = str(error)

        if attempts_made < self.policy.max_attempts:
            delay_s = self.policy.delay_s(attempts_made)
            job = delivery.job.transition(
                JobState.QUEUED,
                attempts_made=attempts_made,
                last_error=message,
            )
            await self._store.save(job)
            await self._store.schedule(job.id, self._clock() + delay_s)
            await self._store.ack(delivery.message_id)
            jobs_retried_total.inc()

            logger.warning(
                "queue.job_retry_scheduled",
                job_id=job.id,
                correlation_id=job.correlation_id,
                attempts=attempts_made,
                max_attempts=self.policy.max_attempts,
                delay_s=delay_s,
                error=message,
            )
            return job

        job = delivery.job.transition(
            JobState.FAILED,
            attempts_made=attempts_made,
            last_error=message,
        )
        await self._store.save(job)
        await self._dlq.send_to_dlq(job, message)
        await self._store.ack(delivery.message_id)
        await self._store.record_terminal(JobState.FAILED)
        jobs_dead_lettered_total.inc()

        logger.error(
            "queue.job_failed_permanently",
            job_id=job.id,
            correlation_id=job.correlation_id,
            attempts=attempts_made,
            error=message,
        )
        return job

    async def promote_due(self) -> int:
        """Release delayed jobs whose retry time has passed."""
        promoted = await self._store.promote_due(self._clock())
        if promoted:
            logger.debug("queue.jobs_promoted", count=promoted)
        return promoted

    async def reclaim_stalled(self, consumer: str, idle_ms: int) -> list[Delivery]:
        """Take over deliveries abandoned by a crashed or stuck worker."""
        reclaimed: list[Delivery] = []
        for delivery in await self._store.reclaim_stalled(consumer, idle_ms):
            logger.warning(
                "queue.job_reclaimed",
                job_id=delivery.job.id,
                correlation_id=delivery.job.correlation_id,
                consumer=consumer,
            )
            started = await self._start(delivery)
            if started is not None:
                reclaimed.append(started)
        return reclaimed

    async def heartbeat(self, delivery: Delivery) -> bool:
        """Mark an in-flight delivery as alive so it is not reclaimed."""
        return await self._store.touch(delivery.consumer, delivery.message_id)

    async def get(self, job_id: str) -> Job | None:
        return await self._store.load(job_id)

    async def counts(self) -> JobCounts:
        return await self._store.counts()

    async def is_ready(self) -> bool:
        """Check connectivity to the queue storage."""
        return await self._store.ping()

    async def list_failed(self, count: int = 50) -> list[tuple[str, dict[str, Any]]]:
        return await self._dlq.list_dlq_messages(count=count)

    async def replay_failed(self, entry_id: str) -> Job:
        """Put a dead-lettered job back on the queue with a fresh budget.

        Raises:
            KeyError: If the DLQ entry or its job record does not exist.
        """
        data = await self._dlq.pop_entry(entry_id)
        job = await self._store.load(data["job_id"])
        if job is None:
            msg = f"Job '{data['job_id']}' not found"
            raise KeyError(msg)

        job = job.transition(JobState.QUEUED, attempts_made=0, last_error=None)
        await self._store.save(job)
        await self._store.push_ready(job.id)

        logger.info(
            "queue.job_replayed",
            job_id=job.id,
            correlation_id=job.correlation_id,
            dlq_entry_id=entry_id,
        )
        return job
