"""Dead letter queue for jobs that exhausted their attempts.

Terminally failed jobs are recorded here for review. Nothing is replayed
automatically; an operator can replay an entry, which puts the job back on
the queue with a fresh attempt budget.

DLQ key pattern: q:{queue_name}:dlq
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis
import structlog

from src.minutes_bot.jobs.schemas import Job

logger = structlog.get_logger(__name__)


class DeadLetterQueue:
    """Dead letter queue backed by a Redis Stream.

    Args:
        redis: Raw async Redis client.
        queue_name: Queue whose failures this DLQ holds.
    """

    def __init__(self, redis: aioredis.Redis, queue_name: str) -> None:
        self._redis = redis
        self._queue_name = queue_name

    def _dlq_key(self) -> str:
        """Build the DLQ stream key ``q:{queue_name}:dlq``."""
        return f"q:{self._queue_name}:dlq"

    async def send_to_dlq(self, job: Job, error: str) -> str:
        """Record a terminally failed job.

        Stores the job id and correlation id along with failure metadata
        (error message, attempts made, DLQ timestamp).

        Args:
            job: The failed job, with ``attempts_made`` already updated.
            error: Error message from the last attempt.

        Returns:
            DLQ entry id assigned by XADD.
        """
        dlq_data: dict[str, str] = {
            "job_id": job.id,
            "correlation_id": job.correlation_id,
            "meeting_id": job.meeting_id,
            "_dlq_error": error,
            "_dlq_attempts": str(job.attempts_made),
            "_dlq_timestamp": datetime.now(timezone.utc).isoformat(),
        }

        entry_id = await self._redis.xadd(self._dlq_key(), dlq_data)

        logger.warning(
            "queue.job_dead_lettered",
            dlq_key=self._dlq_key(),
            job_id=job.id,
            correlation_id=job.correlation_id,
            error=error,
            attempts=job.attempts_made,
        )
        return entry_id

    async def list_dlq_messages(self, count: int = 50) -> list[tuple[str, dict[str, Any]]]:
        """List DLQ entries for review, oldest first.

        Args:
            count: Maximum entries to return (default 50).

        Returns:
            List of ``(entry_id, data)`` tuples.
        """
        return await self._redis.xrange(self._dlq_key(), count=count)

    async def pop_entry(self, entry_id: str) -> dict[str, Any]:
        """Read and delete one DLQ entry.

        Args:
            entry_id: Entry id in the DLQ stream.

        Returns:
            The entry's data.

        Raises:
            KeyError: If the entry does not exist.
        """
        messages = await self._redis.xrange(
            self._dlq_key(),
            min=entry_id,
            max=entry_id,
            count=1,
        )
        if not messages:
            msg = f"DLQ entry '{entry_id}' not found in {self._dlq_key()}"
            raise KeyError(msg)

        _entry_id, data = messages[0]
        await self._redis.xdel(self._dlq_key(), entry_id)
        return data
