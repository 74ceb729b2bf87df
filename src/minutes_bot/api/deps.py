"""FastAPI dependencies for the services built at start-up.

Services live on ``app.state`` (see ``main.lifespan``). Each getter raises
503 when its service was not initialized, so tests can mount the routers on
a bare app and set only what they exercise.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from src.minutes_bot.config import Settings, get_settings
from src.minutes_bot.core.credentials import CredentialCache
from src.minutes_bot.ingestion import MeetingIngestion
from src.minutes_bot.jobs.queue import JobQueue
from src.minutes_bot.observability.metrics import ProcessingMetrics


def _get_service(request: Request, name: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} is not available. The service may not have initialized.",
        )
    return service


def get_app_settings(request: Request) -> Settings:
    """Settings attached to the app, falling back to the process settings."""
    return getattr(request.app.state, "settings", None) or get_settings()


def get_job_queue(request: Request) -> JobQueue:
    return _get_service(request, "job_queue")


def get_ingestion(request: Request) -> MeetingIngestion:
    return _get_service(request, "ingestion")


def get_credentials(request: Request) -> CredentialCache:
    return _get_service(request, "credentials")


def get_processing_metrics(request: Request) -> ProcessingMetrics:
    return _get_service(request, "processing_metrics")
