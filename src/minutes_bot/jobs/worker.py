"""Worker pool that drives queued jobs through the processor.

Runs ``concurrency`` consumer loops plus one maintenance loop on the event
loop. Each consumer reserves one job at a time, invokes the processor once
for that delivery, and settles the delivery with the queue. The
maintenance loop releases delayed retries whose time has come and
reclaims deliveries abandoned by dead workers. While a handler runs, a
heartbeat task keeps its delivery from looking abandoned.

Every log line emitted while a job is being processed carries its
``job_id`` and ``correlation_id`` through structlog context variables.
"""

from __future__ import annotations

import asyncio
import os
import socket
import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from src.minutes_bot.core.monitoring import jobs_in_progress
from src.minutes_bot.jobs.queue import JobQueue
from src.minutes_bot.jobs.schemas import Delivery, Job

logger = structlog.get_logger(__name__)

JobHandler = Callable[[Job], Awaitable[Any]]


def default_consumer_prefix() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class JobWorker:
    """Consumes the job queue with a fixed number of concurrent loops.

    Args:
        queue: JobQueue to consume.
        handler: Async callable processing one job; raising fails the
            attempt.
        concurrency: Number of jobs processed at the same time.
        block_ms: How long a consumer blocks waiting for work.
        maintenance_interval_s: Period of the promote/reclaim loop.
        stalled_idle_ms: Idle time after which an unacknowledged delivery
            is considered abandoned and reclaimed.
        heartbeat_interval_s: How often an in-flight delivery is marked
            alive. Must be shorter than ``stalled_idle_ms``.
        consumer_prefix: Prefix for consumer names in the group.
    """

    def __init__(
        self,
        queue: JobQueue,
        handler: JobHandler,
        concurrency: int = 4,
        block_ms: int = 5000,
        maintenance_interval_s: float = 1.0,
        stalled_idle_ms: int = 600_000,
        heartbeat_interval_s: float = 30.0,
        consumer_prefix: str | None = None,
    ) -> None:
        if concurrency < 1:
            msg = "concurrency must be >= 1"
            raise ValueError(msg)
        if heartbeat_interval_s <= 0 or heartbeat_interval_s * 1000 >= stalled_idle_ms:
            msg = "heartbeat_interval_s must be positive and shorter than stalled_idle_ms"
            raise ValueError(msg)
        self._queue = queue
        self._handler = handler
        self._concurrency = concurrency
        self._block_ms = block_ms
        self._maintenance_interval_s = maintenance_interval_s
        self._stalled_idle_ms = stalled_idle_ms
        self._heartbeat_interval_s = heartbeat_interval_s
        self._prefix = consumer_prefix or default_consumer_prefix()
        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._reclaimed_tasks: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._running

    def _consumer_name(self, index: int | str) -> str:
        return f"{self._prefix}-{index}"

    # ── Lifecycle ───────────────────────────────────────────────────────

    def start(self) -> None:
        """Spawn the consumer loops and the maintenance loop."""
        if self._running:
            return
        self._running = True
        for index in range(self._concurrency):
            self._tasks.append(
                asyncio.create_task(
                    self._consume_loop(self._consumer_name(index)),
                    name=f"job-consumer-{index}",
                )
            )
        self._tasks.append(
            asyncio.create_task(self._maintenance_loop(), name="job-maintenance")
        )
        logger.info(
            "worker.started",
            concurrency=self._concurrency,
            consumer_prefix=self._prefix,
        )

    async def stop(self, grace_s: float = 30.0) -> None:
        """Stop taking new work and wait for in-flight jobs.

        Jobs still running after ``grace_s`` are cancelled. Their
        deliveries stay unacknowledged and are reclaimed later by a live
        worker.
        """
        self._running = False
        tasks = [*self._tasks, *self._reclaimed_tasks]
        if not tasks:
            return
        _done, pending = await asyncio.wait(tasks, timeout=grace_s)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("worker.abandoned_in_flight", count=len(pending))
        self._tasks.clear()
        self._reclaimed_tasks.clear()
        logger.info("worker.stopped")

    # ── Loops ───────────────────────────────────────────────────────────

    async def _consume_loop(self, consumer: str) -> None:
        while self._running:
            try:
                await self.run_once(consumer)
            except asyncio.CancelledError:
                raise
            except Exception:
                # Storage hiccup; back off briefly instead of spinning.
                logger.exception("worker.consume_error", consumer=consumer)
                await asyncio.sleep(1.0)

    async def _maintenance_loop(self) -> None:
        consumer = self._consumer_name("reclaim")
        while self._running:
            try:
                await self.maintenance_tick(consumer)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("worker.maintenance_error")
            await asyncio.sleep(self._maintenance_interval_s)

    async def run_once(self, consumer: str) -> bool:
        """Reserve and process at most one job.

        Returns:
            True if a job was processed.
        """
        delivery = await self._queue.reserve(consumer, block_ms=self._block_ms)
        if delivery is None:
            return False
        await self.process_delivery(delivery)
        return True

    async def maintenance_tick(self, consumer: str) -> list[Delivery]:
        """Promote due retries and start reclaimed deliveries."""
        await self._queue.promote_due()
        reclaimed = await self._queue.reclaim_stalled(consumer, self._stalled_idle_ms)
        for delivery in reclaimed:
            task = asyncio.create_task(self.process_delivery(delivery))
            self._reclaimed_tasks.add(task)
            task.add_done_callback(self._reclaimed_tasks.discard)
        return reclaimed

    # ── Processing ──────────────────────────────────────────────────────

    async def _heartbeat(self, delivery: Delivery) -> None:
        """Keep ``delivery`` out of stalled reclaim while its handler runs."""
        while True:
            await asyncio.sleep(self._heartbeat_interval_s)
            try:
                alive = await self._queue.heartbeat(delivery)
            except Exception:
                logger.exception("worker.heartbeat_error", message_id=delivery.message_id)
                continue
            if not alive:
                logger.warning("worker.heartbeat_lost", message_id=delivery.message_id)
                return

    async def process_delivery(self, delivery: Delivery) -> Job:
        """Invoke the handler once and settle the delivery.

        Returns:
            The job after settlement.
        """
        job = delivery.job
        with structlog.contextvars.bound_contextvars(
            job_id=job.id,
            correlation_id=job.correlation_id,
        ):
            logger.info(
                "worker.job_started",
                meeting_id=job.meeting_id,
                attempt=job.attempts_made + 1,
                max_attempts=self._queue.policy.max_attempts,
            )
            start = time.monotonic()
            jobs_in_progress.inc()
            heartbeat = asyncio.create_task(self._heartbeat(delivery))
            try:
                await self._handler(job)
            except Exception as exc:
                heartbeat.cancel()
                settled = await self._queue.fail(delivery, exc)
            else:
                heartbeat.cancel()
                settled = await self._queue.complete(delivery)
            finally:
                heartbeat.cancel()
                jobs_in_progress.dec()

            logger.info(
                "worker.job_settled",
                state=settled.state.value,
                duration_ms=round((time.monotonic() - start) * 1000, 2),
                terminal=settled.state.is_terminal,
            )
            return settled
