"""Health check endpoint.

``/health`` obtains a Graph credential (from cache when fresh) and pings
the queue storage. Either failure makes the service unhealthy (503).
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from src.minutes_bot.api.deps import (
    get_credentials,
    get_job_queue,
    get_processing_metrics,
)
from src.minutes_bot.core.credentials import CredentialCache
from src.minutes_bot.jobs.queue import JobQueue
from src.minutes_bot.observability.metrics import ProcessingMetrics

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(
    credentials: CredentialCache = Depends(get_credentials),
    queue: JobQueue = Depends(get_job_queue),
    metrics: ProcessingMetrics = Depends(get_processing_metrics),
):
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        await credentials.get("health-check")
        queue_ready = await queue.is_ready()
    except Exception as exc:
        logger.error("health.check_failed", error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "error": str(exc), "timestamp": timestamp},
        )

    snapshot = await metrics.snapshot()
    return JSONResponse(
        status_code=status.HTTP_200_OK if queue_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if queue_ready else "unhealthy",
            "timestamp": timestamp,
            "credential": "ok",
            "queue": "connected" if queue_ready else "disconnected",
            "metrics": {
                "total_processed": snapshot.total_processed,
                "total_succeeded": snapshot.total_succeeded,
                "total_failed": snapshot.total_failed,
                "success_rate": snapshot.success_rate,
                "average_processing_time": f"{round(snapshot.average_processing_time_ms)}ms",
            },
        },
    )
