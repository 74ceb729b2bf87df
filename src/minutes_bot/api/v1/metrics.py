"""Processing metrics endpoints (JSON and Prometheus exposition)."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse, Response

from src.minutes_bot.api.deps import get_job_queue, get_processing_metrics
from src.minutes_bot.core.monitoring import get_metrics_response
from src.minutes_bot.jobs.queue import JobQueue
from src.minutes_bot.observability.metrics import ProcessingMetrics

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["metrics"])


@router.get("/metrics")
async def processing_metrics(
    metrics: ProcessingMetrics = Depends(get_processing_metrics),
    queue: JobQueue = Depends(get_job_queue),
):
    """Processing counters plus queue depth."""
    try:
        counts = await queue.counts()
    except Exception as exc:
        logger.error("metrics.queue_counts_failed", error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(exc)},
        )

    snapshot = await metrics.snapshot()
    return {
        "processing": {**snapshot.model_dump(), "success_rate": snapshot.success_rate},
        "queue": counts.model_dump(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/metrics/prometheus", include_in_schema=False)
async def prometheus_metrics() -> Response:
    """Prometheus metrics endpoint."""
    return get_metrics_response()
