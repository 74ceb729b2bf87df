"""FastAPI application factory.

Creates the app with logging and metrics middleware, Sentry, the v1 API
router, and a lifespan that builds the processing services, starts the
worker pool, and drains it on shutdown.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from src.minutes_bot.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.minutes_bot.api.v1.router import router as v1_router
from src.minutes_bot.config import Settings, get_settings
from src.minutes_bot.core.credentials import CredentialCache
from src.minutes_bot.core.monitoring import MetricsMiddleware, init_sentry
from src.minutes_bot.core.polling import AvailabilityPoller
from src.minutes_bot.core.redis import close_redis, get_redis_pool
from src.minutes_bot.core.retry import BackoffKind, BackoffRetrier, RetryPolicy
from src.minutes_bot.errors import ConfigurationError
from src.minutes_bot.ingestion import MeetingIngestion
from src.minutes_bot.jobs.dlq import DeadLetterQueue
from src.minutes_bot.jobs.ledger import RedisDeliveryLedger
from src.minutes_bot.jobs.queue import JobQueue
from src.minutes_bot.jobs.store import RedisJobStore
from src.minutes_bot.jobs.worker import JobWorker
from src.minutes_bot.meetings.delivery import TeamsDelivery
from src.minutes_bot.meetings.generator import MinutesGenerator
from src.minutes_bot.meetings.processor import MeetingProcessor
from src.minutes_bot.observability.metrics import ProcessingMetrics
from src.minutes_bot.services.graph import GraphClient, GraphTokenProvider


def job_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.JOB_MAX_ATTEMPTS,
        base_delay_ms=settings.JOB_RETRY_DELAY_MS,
        backoff=BackoffKind.exponential,
    )


def call_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.CALL_MAX_ATTEMPTS,
        base_delay_ms=settings.CALL_RETRY_DELAY_MS,
        backoff=BackoffKind.exponential,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: build services and start workers on startup,
    drain workers and close Redis on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    try:
        settings.validate_required()
    except ConfigurationError as exc:
        log.error("startup.configuration_invalid", error=str(exc), missing=exc.missing)
        raise

    if not settings.WEBHOOK_VALIDATE_CLIENT_STATE:
        log.warning("startup.client_state_validation_disabled")

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # ── Queue ───────────────────────────────────────────────────────────
    redis = get_redis_pool()
    store = RedisJobStore(redis, settings.QUEUE_NAME)
    dlq = DeadLetterQueue(redis, settings.QUEUE_NAME)
    ledger = RedisDeliveryLedger(redis, settings.QUEUE_NAME, settings.DELIVERY_LEDGER_TTL_S)
    job_queue = JobQueue(store, dlq, job_policy(settings))

    # ── Meeting processing ──────────────────────────────────────────────
    credentials = CredentialCache(
        GraphTokenProvider(
            tenant_id=settings.AZURE_TENANT_ID,
            client_id=settings.AZURE_CLIENT_ID,
            client_secret=settings.AZURE_CLIENT_SECRET,
            timeout=settings.REQUEST_TIMEOUT_S,
        ),
        safety_margin_s=settings.TOKEN_SAFETY_MARGIN_S,
    )
    graph = GraphClient(base_url=settings.GRAPH_BASE_URL, timeout=settings.REQUEST_TIMEOUT_S)
    generator = MinutesGenerator(
        model=settings.GENERATION_MODEL,
        api_key=settings.ANTHROPIC_API_KEY,
        max_tokens=settings.GENERATION_MAX_TOKENS,
        timeout=settings.REQUEST_TIMEOUT_S * 2,
    )
    poller = AvailabilityPoller(
        max_attempts=settings.TRANSCRIPT_POLL_ATTEMPTS,
        unit_wait_ms=settings.TRANSCRIPT_POLL_UNIT_MS,
        max_wait_ms=settings.TRANSCRIPT_POLL_MAX_WAIT_MS,
        resource="transcript",
    )
    processing_metrics = ProcessingMetrics()
    processor = MeetingProcessor(
        credentials=credentials,
        graph=graph,
        generator=generator,
        delivery=TeamsDelivery(graph),
        metrics=processing_metrics,
        retrier=BackoffRetrier(),
        call_policy=call_policy(settings),
        poller=poller,
        ledger=ledger,
        max_transcript_chars=settings.TRANSCRIPT_MAX_CHARS,
    )
    worker = JobWorker(
        job_queue,
        processor,
        concurrency=settings.WORKER_CONCURRENCY,
        stalled_idle_ms=settings.STALLED_JOB_IDLE_MS,
        heartbeat_interval_s=settings.JOB_HEARTBEAT_INTERVAL_S,
    )

    app.state.settings = settings
    app.state.job_queue = job_queue
    app.state.ingestion = MeetingIngestion(job_queue)
    app.state.credentials = credentials
    app.state.processing_metrics = processing_metrics
    app.state.worker = worker

    worker.start()
    log.info(
        "startup.complete",
        environment=settings.ENVIRONMENT.value,
        queue=settings.QUEUE_NAME,
        concurrency=settings.WORKER_CONCURRENCY,
    )

    yield

    # ── Shutdown ────────────────────────────────────────────────────────
    log.info("shutdown.started")
    await worker.stop(grace_s=settings.SHUTDOWN_GRACE_S)
    await close_redis()
    log.info("shutdown.complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Meeting Minutes Bot",
        version="0.1.0",
        description="Generates and posts minutes for ended Teams meetings",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)
    return app


# Module-level app for uvicorn
app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run("src.minutes_bot.main:app", host="0.0.0.0", port=settings.PORT)


if __name__ == "__main__":
    run()
