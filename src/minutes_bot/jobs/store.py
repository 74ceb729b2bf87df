"""Redis-backed durable storage for meeting jobs.

Jobs live in Redis hashes; ready jobs are entries in a Redis Stream read
through a consumer group; jobs waiting out a retry delay sit in a sorted
set scored by their ready time. Unacknowledged stream entries stay in the
group's pending list, so a worker that dies mid-job leaves the job
reclaimable by another consumer (at-least-once delivery).

Key pattern: q:{queue_name}:{kind}

Note: Stream entries carry only the job id. The job hash is the source of
truth for payload, state and attempt count.
"""

from __future__ import annotations

from typing import Any

import redis.asyncio as aioredis
import structlog

from src.minutes_bot.jobs.schemas import Delivery, Job, JobCounts, JobState

logger = structlog.get_logger(__name__)

CONSUMER_GROUP = "workers"

# Moves due ids from the delayed set to the ready stream atomically, so two
# promoters can never publish the same job twice.
_PROMOTE_SCRIPT = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, ARGV[2])
for _, id in ipairs(ids) do
  redis.call('ZREM', KEYS[1], id)
  redis.call('XADD', KEYS[2], 'MAXLEN', '~', ARGV[3], '*', 'job_id', id)
end
return #ids
"""


class RedisJobStore:
    """Durable job storage on Redis hashes, a stream and a sorted set.

    Args:
        redis: Raw async Redis client (decode_responses=True).
        queue_name: Queue name used to scope all keys.
        maxlen: Approximate cap on the ready stream length.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        queue_name: str,
        maxlen: int = 10_000,
    ) -> None:
        self._redis = redis
        self._queue_name = queue_name
        self._maxlen = maxlen
        self._group_ready = False
        self._promote = redis.register_script(_PROMOTE_SCRIPT)

    def _key(self, kind: str) -> str:
        """Build a queue-scoped key like ``q:{queue_name}:{kind}``."""
        return f"q:{self._queue_name}:{kind}"

    def _job_key(self, job_id: str) -> str:
        return self._key(f"job:{job_id}")

    async def _ensure_group(self) -> None:
        """Create the consumer group if it does not already exist."""
        if self._group_ready:
            return
        try:
            await self._redis.xgroup_create(
                self._key("ready"), CONSUMER_GROUP, id="0", mkstream=True,
            )
        except aioredis.ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise
        self._group_ready = True

    # ── Job records ─────────────────────────────────────────────────────

    async def next_id(self) -> str:
        """Allocate a new job id from the queue's counter."""
        return str(await self._redis.incr(self._key("seq")))

    async def save(self, job: Job) -> None:
        """Persist the full job record."""
        await self._redis.hset(self._job_key(job.id), mapping=job.to_hash())

    async def load(self, job_id: str) -> Job | None:
        """Load a job record, or None if it does not exist."""
        raw = await self._redis.hgetall(self._job_key(job_id))
        if not raw:
            return None
        return Job.from_hash(raw)

    # ── Ready stream ────────────────────────────────────────────────────

    async def push_ready(self, job_id: str) -> str:
        """Make a job available to workers immediately."""
        return await self._redis.xadd(
            self._key("ready"),
            {"job_id": job_id},
            maxlen=self._maxlen,
            approximate=True,
        )

    async def add_jobs(self, jobs: list[Job]) -> list[str]:
        """Persist new jobs and make them ready in one MULTI/EXEC.

        Either every job of the batch is queued or none is.

        Returns:
            The ready-stream message ids, in job order.
        """
        async with self._redis.pipeline(transaction=True) as pipe:
            for job in jobs:
                pipe.hset(self._job_key(job.id), mapping=job.to_hash())
                pipe.xadd(
                    self._key("ready"),
                    {"job_id": job.id},
                    maxlen=self._maxlen,
                    approximate=True,
                )
            results = await pipe.execute()
        return [str(message_id) for message_id in results[1::2]]

    async def _to_deliveries(
        self, entries: list[tuple[str, dict[str, str]]], consumer: str,
    ) -> list[Delivery]:
        deliveries: list[Delivery] = []
        for message_id, fields in entries:
            job = await self.load(fields.get("job_id", ""))
            if job is None:
                # Record vanished (manual cleanup); drop the orphan entry.
                logger.warning("queue.orphan_entry_dropped", message_id=message_id)
                await self.ack(message_id)
                continue
            deliveries.append(Delivery(message_id=message_id, job=job, consumer=consumer))
        return deliveries

    async def reserve(self, consumer: str, block_ms: int = 5000) -> Delivery | None:
        """Read the next ready job as ``consumer``.

        Blocks for up to ``block_ms`` waiting for work.
        """
        await self._ensure_group()
        messages = await self._redis.xreadgroup(
            groupname=CONSUMER_GROUP,
            consumername=consumer,
            streams={self._key("ready"): ">"},
            count=1,
            block=block_ms,
        )
        for _stream_key, entries in messages or []:
            deliveries = await self._to_deliveries(entries, consumer)
            if deliveries:
                return deliveries[0]
        return None

    async def ack(self, message_id: str) -> None:
        """Acknowledge and remove a settled stream entry."""
        await self._redis.xack(self._key("ready"), CONSUMER_GROUP, message_id)
        await self._redis.xdel(self._key("ready"), message_id)

    async def reclaim_stalled(
        self,
        consumer: str,
        idle_ms: int,
        count: int = 10,
    ) -> list[Delivery]:
        """Take over entries idle in the pending list for ``idle_ms``.

        Uses XAUTOCLAIM; the reclaimed entries are redelivered to
        ``consumer``.
        """
        await self._ensure_group()
        result = await self._redis.xautoclaim(
            self._key("ready"),
            CONSUMER_GROUP,
            consumer,
            min_idle_time=idle_ms,
            start_id="0-0",
            count=count,
        )
        entries = result[1] if len(result) > 1 else []
        return await self._to_deliveries(entries, consumer)

    async def touch(self, consumer: str, message_id: str) -> bool:
        """Reset the idle time of a pending entry still being worked on.

        XCLAIM with JUSTID by the holding consumer keeps ownership and
        zeroes the idle counter, so ``reclaim_stalled`` leaves it alone.

        Returns:
            False if the entry is no longer pending.
        """
        claimed = await self._redis.xclaim(
            self._key("ready"),
            CONSUMER_GROUP,
            consumer,
            min_idle_time=0,
            message_ids=[message_id],
            justid=True,
        )
        return bool(claimed)

    # ── Delayed retries ─────────────────────────────────────────────────

    async def schedule(self, job_id: str, ready_at: float) -> None:
        """Hold a job until ``ready_at`` (epoch seconds)."""
        await self._redis.zadd(self._key("delayed"), {job_id: ready_at})

    async def promote_due(self, now: float, limit: int = 100) -> int:
        """Move delayed jobs whose time has come to the ready stream."""
        await self._ensure_group()
        return int(
            await self._promote(
                keys=[self._key("delayed"), self._key("ready")],
                args=[now, limit, self._maxlen],
            )
        )

    # ── Stats ───────────────────────────────────────────────────────────

    async def record_terminal(self, state: JobState) -> None:
        """Count a job that reached a terminal state."""
        field = "completed" if state == JobState.SUCCEEDED else "failed"
        await self._redis.hincrby(self._key("stats"), field, 1)

    async def counts(self) -> JobCounts:
        """Return queue depth and outcome totals."""
        await self._ensure_group()
        length = await self._redis.xlen(self._key("ready"))
        pending: dict[str, Any] = await self._redis.xpending(
            self._key("ready"), CONSUMER_GROUP,
        )
        active = int(pending.get("pending", 0)) if pending else 0
        delayed = await self._redis.zcard(self._key("delayed"))
        stats = await self._redis.hgetall(self._key("stats"))
        return JobCounts(
            waiting=max(int(length) - active, 0),
            active=active,
            delayed=int(delayed),
            completed=int(stats.get("completed", 0)),
            failed=int(stats.get("failed", 0)),
        )

    async def ping(self) -> bool:
        """Check that Redis is reachable."""
        return bool(await self._redis.ping())
