"""Meeting-ended notification ingestion.

Turns a Graph change-notification body into validated job payloads and
hands them to the JobQueue. Ingestion never does meeting work itself; the
webhook responds as soon as the jobs are enqueued.
"""

from __future__ import annotations

import hmac
from typing import Any

import structlog
from pydantic import ValidationError

from src.minutes_bot.jobs.queue import JobQueue
from src.minutes_bot.jobs.schemas import Job, MeetingJobPayload

logger = structlog.get_logger(__name__)


def _first(*values: Any) -> str | None:
    for value in values:
        if value:
            return str(value)
    return None


def extract_payload(notification: dict[str, Any]) -> MeetingJobPayload | None:
    """Pull meeting, chat and organizer ids out of one notification.

    Returns None when any of the three is missing.
    """
    data = notification.get("resourceData") or {}
    if not isinstance(data, dict):
        return None
    chat_info = data.get("chatInfo") or {}
    organizer = data.get("organizer") or {}

    try:
        return MeetingJobPayload(
            meeting_id=_first(data.get("id"), data.get("meetingId")) or "",
            chat_id=_first(data.get("chatId"), chat_info.get("threadId")) or "",
            user_id=_first(data.get("organizerId"), organizer.get("id")) or "",
        )
    except ValidationError:
        return None


def parse_notifications(
    body: dict[str, Any],
    correlation_id: str,
) -> tuple[list[MeetingJobPayload], int]:
    """Parse every notification in ``body["value"]``.

    Returns:
        The valid payloads and the number of notifications skipped.
    """
    notifications = body.get("value") or []
    payloads: list[MeetingJobPayload] = []
    skipped = 0
    for notification in notifications:
        payload = extract_payload(notification) if isinstance(notification, dict) else None
        if payload is None:
            skipped += 1
            logger.warning(
                "ingestion.notification_incomplete",
                correlation_id=correlation_id,
                notification=notification,
            )
            continue
        payloads.append(payload)
    return payloads, skipped


def validate_client_state(body: dict[str, Any], expected: str) -> bool:
    """Check that every notification carries the subscription's clientState.

    A body with no notifications passes; there is nothing to enqueue.
    """
    notifications = body.get("value") or []
    if not expected:
        return False
    return all(
        isinstance(n, dict)
        and hmac.compare_digest(str(n.get("clientState") or ""), expected)
        for n in notifications
    )


class MeetingIngestion:
    """Enqueues one job per valid meeting-ended notification.

    Args:
        queue: JobQueue that receives the jobs.
    """

    def __init__(self, queue: JobQueue) -> None:
        self._queue = queue

    async def submit(
        self,
        payloads: list[MeetingJobPayload],
        correlation_id: str,
    ) -> list[Job]:
        """Enqueue ``payloads`` under one correlation id.

        The batch is all-or-nothing: on failure no job is queued.
        """
        jobs = await self._queue.enqueue_many(payloads, correlation_id=correlation_id)
        logger.info(
            "ingestion.jobs_submitted",
            correlation_id=correlation_id,
            job_count=len(jobs),
        )
        return jobs
