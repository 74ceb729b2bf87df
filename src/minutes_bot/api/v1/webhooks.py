"""Graph change-notification webhook for ended meetings.

Graph validates a subscription by calling the notification URL with a
``validationToken`` query parameter and expects the token echoed back as
plain text. Real notifications arrive as a JSON body with a ``value`` list;
each valid one becomes a queued job and the endpoint answers 202 without
waiting for processing.
"""

from __future__ import annotations

import json
import uuid

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse

from src.minutes_bot.api.deps import get_app_settings, get_ingestion
from src.minutes_bot.config import Settings
from src.minutes_bot.ingestion import (
    MeetingIngestion,
    parse_notifications,
    validate_client_state,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhooks"])


@router.get("/meeting-ended")
async def validate_subscription(request: Request):
    """Subscription validation handshake."""
    token = request.query_params.get("validationToken")
    if token:
        logger.info("webhook.validation_handshake")
        return PlainTextResponse(token)
    return PlainTextResponse("Bad request", status_code=status.HTTP_400_BAD_REQUEST)


@router.post("/meeting-ended", status_code=status.HTTP_202_ACCEPTED)
async def meeting_ended(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    ingestion: MeetingIngestion = Depends(get_ingestion),
):
    """Queue one processing job per meeting-ended notification."""
    token = request.query_params.get("validationToken")
    if token:
        logger.info("webhook.validation_handshake")
        return PlainTextResponse(token)

    correlation_id = str(uuid.uuid4())
    with structlog.contextvars.bound_contextvars(correlation_id=correlation_id):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("webhook.invalid_body")
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": "Invalid JSON body", "correlation_id": correlation_id},
            )
        if not isinstance(body, dict):
            body = {}

        logger.info(
            "webhook.meeting_ended_received",
            notification_count=len(body.get("value") or []),
        )

        if settings.WEBHOOK_VALIDATE_CLIENT_STATE and not validate_client_state(
            body, settings.WEBHOOK_CLIENT_STATE,
        ):
            logger.warning("webhook.invalid_client_state")
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"error": "Unauthorized", "correlation_id": correlation_id},
            )

        payloads, skipped = parse_notifications(body, correlation_id)
        try:
            jobs = await ingestion.submit(payloads, correlation_id)
        except Exception as exc:
            logger.error("webhook.enqueue_failed", error=str(exc), exc_info=True)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": str(exc), "correlation_id": correlation_id},
            )

    return {
        "success": True,
        "message": "Webhook received and queued for processing",
        "correlation_id": correlation_id,
        "job_ids": [job.id for job in jobs],
        "skipped": skipped,
    }
