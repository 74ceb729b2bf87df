"""Job inspection and dead-letter replay endpoints."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from src.minutes_bot.api.deps import get_job_queue
from src.minutes_bot.jobs.queue import JobQueue
from src.minutes_bot.jobs.schemas import Job

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


class JobResponse(BaseModel):
    id: str
    correlation_id: str
    meeting_id: str
    chat_id: str
    state: str
    attempts_made: int
    last_error: str | None = None
    created_at: str
    updated_at: str


class FailedJobEntry(BaseModel):
    entry_id: str
    fields: dict[str, Any]


def _to_response(job: Job) -> JobResponse:
    return JobResponse(
        id=job.id,
        correlation_id=job.correlation_id,
        meeting_id=job.meeting_id,
        chat_id=job.chat_id,
        state=job.state.value,
        attempts_made=job.attempts_made,
        last_error=job.last_error,
        created_at=job.created_at.isoformat(),
        updated_at=job.updated_at.isoformat(),
    )


@router.get("/failed", response_model=list[FailedJobEntry])
async def list_failed_jobs(
    count: int = Query(default=50, ge=1, le=500),
    queue: JobQueue = Depends(get_job_queue),
) -> list[FailedJobEntry]:
    """Most recent dead-lettered jobs, oldest first."""
    entries = await queue.list_failed(count=count)
    return [FailedJobEntry(entry_id=entry_id, fields=fields) for entry_id, fields in entries]


@router.post("/failed/{entry_id}/replay", response_model=JobResponse)
async def replay_failed_job(
    entry_id: str,
    queue: JobQueue = Depends(get_job_queue),
) -> JobResponse:
    """Requeue a dead-lettered job with a fresh attempt budget."""
    try:
        job = await queue.replay_failed(entry_id)
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc.args[0]) if exc.args else "Entry not found",
        ) from exc
    return _to_response(job)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    queue: JobQueue = Depends(get_job_queue),
) -> JobResponse:
    job = await queue.get(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job '{job_id}' not found",
        )
    return _to_response(job)
