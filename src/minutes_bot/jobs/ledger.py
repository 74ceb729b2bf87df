"""Delivery ledger: remembers which jobs already posted their minutes.

A job can be delivered more than once (redelivery after a crash, or a
failure after the post succeeded). The processor checks the ledger before
posting and marks the job right after a successful post, so a redelivered
job does not post the same minutes twice. A crash between the post and the
mark can still produce one duplicate.

Key pattern: q:{queue_name}:delivered:{job_id}
"""

from __future__ import annotations

from datetime import datetime, timezone

import redis.asyncio as aioredis


class RedisDeliveryLedger:
    """Delivered markers with a TTL, one key per job.

    Args:
        redis: Raw async Redis client.
        queue_name: Queue the jobs belong to.
        ttl_s: Marker lifetime; must outlast the job's retry window.
    """

    def __init__(self, redis: aioredis.Redis, queue_name: str, ttl_s: int) -> None:
        self._redis = redis
        self._queue_name = queue_name
        self._ttl_s = ttl_s

    def _key(self, job_id: str) -> str:
        return f"q:{self._queue_name}:delivered:{job_id}"

    async def was_delivered(self, job_id: str) -> bool:
        return bool(await self._redis.exists(self._key(job_id)))

    async def mark_delivered(self, job_id: str) -> None:
        await self._redis.set(
            self._key(job_id),
            datetime.now(timezone.utc).isoformat(),
            ex=self._ttl_s,
        )
