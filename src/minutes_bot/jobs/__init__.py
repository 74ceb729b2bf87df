"""Durable job queue for meeting processing.

Provides Redis-backed job storage with consumer group delivery, job-level
exponential-backoff redelivery, a dead letter queue for terminal failures,
and a worker pool that runs the meeting processor.

Exports:
    Job: Queued unit of work with immutable meeting payload.
    JobState: Lifecycle states (queued, in_progress, succeeded, failed).
    MeetingJobPayload: Validated meeting identifiers to enqueue.
    JobQueue: Enqueue, reserve and settle deliveries.
    JobWorker: Concurrent consumer loops with promote/reclaim maintenance.
    RedisJobStore: Redis storage for job records and delivery streams.
    DeadLetterQueue: Review and replay of terminally failed jobs.
"""

from __future__ import annotations

from src.minutes_bot.jobs.schemas import Job, JobState, MeetingJobPayload

__all__ = [
    "DeadLetterQueue",
    "Job",
    "JobQueue",
    "JobState",
    "JobWorker",
    "MeetingJobPayload",
    "RedisJobStore",
]


def __getattr__(name: str):  # noqa: N807
    """Lazy-load queue, worker, store and DLQ to avoid circular imports."""
    if name == "JobQueue":
        from src.minutes_bot.jobs.queue import JobQueue

        return JobQueue
    if name == "JobWorker":
        from src.minutes_bot.jobs.worker import JobWorker

        return JobWorker
    if name == "RedisJobStore":
        from src.minutes_bot.jobs.store import RedisJobStore

        return RedisJobStore
    if name == "DeadLetterQueue":
        from src.minutes_bot.jobs.dlq import DeadLetterQueue

        return DeadLetterQueue
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
