"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- Job queue and processing counters used by the worker and processor
- init_sentry(): Initialize Sentry with correlation-aware tagging
- get_metrics_response(): Prometheus exposition for /metrics/prometheus
"""

from __future__ import annotations

import time

import sentry_sdk
import structlog
from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Job Metrics ──────────────────────────────────────────────────────────────

jobs_enqueued_total = Counter(
    "jobs_enqueued_total",
    "Meeting jobs accepted from webhooks",
)

jobs_processed_total = Counter(
    "jobs_processed_total",
    "Meeting job attempts by outcome",
    ["outcome"],
)

jobs_retried_total = Counter(
    "jobs_retried_total",
    "Meeting jobs scheduled for redelivery after a failed attempt",
)

jobs_dead_lettered_total = Counter(
    "jobs_dead_lettered_total",
    "Meeting jobs that exhausted their attempts and were marked failed",
)

jobs_in_progress = Gauge(
    "jobs_in_progress",
    "Meeting jobs currently being processed by this process",
)

job_processing_duration_seconds = Histogram(
    "job_processing_duration_seconds",
    "Wall-clock duration of successful meeting job attempts",
    buckets=(1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0),
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the Prometheus endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics/prometheus":
            return await call_next(request)

        endpoint = request.url.path

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK with correlation id tagging.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    traces_sample_rate = 0.1 if environment == "production" else 1.0

    def before_send(event: dict, hint: dict) -> dict:
        """Tag events with the correlation id bound for the current job."""
        bound = structlog.contextvars.get_contextvars()
        if "correlation_id" in bound:
            event.setdefault("tags", {})["correlation_id"] = bound["correlation_id"]
        if "job_id" in bound:
            event.setdefault("tags", {})["job_id"] = bound["job_id"]
        return event

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
        before_send=before_send,
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
