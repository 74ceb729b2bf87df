"""Job schemas for the durable meeting-processing queue.

A Job is created by webhook ingestion and owned by the JobQueue until it
reaches a terminal state. The payload fields never change; the queue is the
only writer of ``attempts_made`` and ``state``. Jobs serialize to flat
string dicts for Redis hashes and deserialize back losslessly.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class JobState(str, Enum):
    """Lifecycle of a queued job.

    QUEUED -> IN_PROGRESS -> SUCCEEDED | QUEUED (retry) | FAILED (terminal)
    """

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED)


class MeetingJobPayload(BaseModel):
    """Validated meeting-ended notification, ready to be queued."""

    model_config = ConfigDict(frozen=True)

    meeting_id: str = Field(min_length=1)
    chat_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)


class Job(BaseModel):
    """A queued unit of meeting-processing work.

    Attributes:
        id: Queue-assigned identifier.
        correlation_id: UUID threaded through every log line and call
            made for this job.
        meeting_id: Online meeting id.
        chat_id: Chat thread the minutes are posted to.
        user_id: Meeting organizer, owner of the transcript.
        attempts_made: Failed deliveries so far.
        state: Current lifecycle state.
        last_error: Message of the most recent failure.
        created_at: Enqueue time (UTC).
        updated_at: Last state change (UTC).
    """

    model_config = ConfigDict(frozen=True)

    id: str
    correlation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    meeting_id: str
    chat_id: str
    user_id: str
    attempts_made: int = Field(default=0, ge=0)
    state: JobState = JobState.QUEUED
    last_error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def payload(self) -> MeetingJobPayload:
        return MeetingJobPayload(
            meeting_id=self.meeting_id,
            chat_id=self.chat_id,
            user_id=self.user_id,
        )

    def transition(self, state: JobState, **changes: object) -> Job:
        """Return a copy in ``state`` with ``updated_at`` refreshed."""
        return self.model_copy(
            update={
                "state": state,
                "updated_at": datetime.now(timezone.utc),
                **changes,
            }
        )

    def to_hash(self) -> dict[str, str]:
        """Serialize to a flat dict of strings for a Redis hash.

        None becomes the empty string; datetimes use ISO format.
        """
        return {
            "id": self.id,
            "correlation_id": self.correlation_id,
            "meeting_id": self.meeting_id,
            "chat_id": self.chat_id,
            "user_id": self.user_id,
            "attempts_made": str(self.attempts_made),
            "state": self.state.value,
            "last_error": self.last_error or "",
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_hash(cls, raw: dict[str, str]) -> Job:
        """Deserialize from a Redis hash, reversing ``to_hash()``."""
        return cls(
            id=raw["id"],
            correlation_id=raw["correlation_id"],
            meeting_id=raw["meeting_id"],
            chat_id=raw["chat_id"],
            user_id=raw["user_id"],
            attempts_made=int(raw.get("attempts_made", "0")),
            state=JobState(raw.get("state", JobState.QUEUED.value)),
            last_error=raw.get("last_error") or None,
            created_at=datetime.fromisoformat(raw["created_at"]),
            updated_at=datetime.fromisoformat(raw["updated_at"]),
        )


class Delivery(BaseModel):
    """One delivery of a job to a worker.

    ``message_id`` identifies the ready-stream entry that must be
    acknowledged once the attempt is settled. ``consumer`` is the group
    consumer currently holding the entry.
    """

    message_id: str
    job: Job
    consumer: str = ""


class JobCounts(BaseModel):
    """Queue depth and outcome totals, for the metrics endpoint."""

    waiting: int = 0
    active: int = 0
    delayed: int = 0
    completed: int = 0
    failed: int = 0
