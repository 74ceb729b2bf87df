"""MeetingProcessor -- the execution body of one meeting job attempt.

Each attempt walks a fixed sequence of stages:

    FETCH_MEETING -> WAIT_FOR_TRANSCRIPT -> FETCH_TRANSCRIPT -> GENERATE
        -> FORMAT -> DELIVER -> DONE

Every stage handler reads what earlier stages put on the AttemptState and
returns the next stage. A failure in any stage aborts the attempt with a
ProcessingError naming the stage; the job queue decides whether the job
is retried. External calls inside a stage go through the BackoffRetrier
with the call-level policy; the transcript wait uses the
AvailabilityPoller.

The attempt outcome and its wall-clock duration are recorded in
ProcessingMetrics whichever way the attempt ends.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import structlog
from pydantic import BaseModel

from src.minutes_bot.core.credentials import CredentialCache
from src.minutes_bot.core.polling import AvailabilityPoller
from src.minutes_bot.core.retry import BackoffRetrier, RetryPolicy
from src.minutes_bot.errors import CallFailure, ProcessingError, RetriesExhausted
from src.minutes_bot.jobs.schemas import Job
from src.minutes_bot.meetings.delivery import TeamsDelivery
from src.minutes_bot.meetings.formatter import format_minutes
from src.minutes_bot.meetings.generator import MinutesGenerator
from src.minutes_bot.meetings.schemas import (
    MeetingContext,
    StructuredMinutes,
    TranscriptInfo,
)
from src.minutes_bot.observability.metrics import ProcessingMetrics
from src.minutes_bot.services.graph.client import GraphClient

logger = structlog.get_logger(__name__)

DEFAULT_MAX_TRANSCRIPT_CHARS = 100_000


class ProcessingStage(str, Enum):
    """Stages of one processing attempt, in execution order."""

    FETCH_MEETING = "fetch_meeting"
    WAIT_FOR_TRANSCRIPT = "wait_for_transcript"
    FETCH_TRANSCRIPT = "fetch_transcript"
    GENERATE = "generate"
    FORMAT = "format"
    DELIVER = "deliver"
    DONE = "done"


class DeliveryLedger(Protocol):
    async def was_delivered(self, job_id: str) -> bool: ...
    async def mark_delivered(self, job_id: str) -> None: ...


@dataclass
class AttemptState:
    """Values produced by the stages of one attempt."""

    job: Job
    token: str | None = None
    meeting: MeetingContext | None = None
    transcripts: list[TranscriptInfo] = field(default_factory=list)
    transcript_text: str | None = None
    minutes: StructuredMinutes | None = None
    document: str | None = None
    delivered: bool = False
    already_delivered: bool = False
    stages: list[ProcessingStage] = field(default_factory=list)


class ProcessingResult(BaseModel):
    """Summary of a successful attempt."""

    job_id: str
    correlation_id: str
    processing_time_ms: float
    delivered: bool
    already_delivered: bool = False


def latest_transcript(transcripts: list[TranscriptInfo]) -> TranscriptInfo:
    """Pick the most recently created transcript (the first one if undated)."""
    dated = [t for t in transcripts if t.created_date_time]
    if not dated:
        return transcripts[0]
    return max(dated, key=lambda t: t.created_date_time)


class MeetingProcessor:
    """Runs one job attempt from meeting lookup to chat delivery.

    Args:
        credentials: Shared Graph credential cache.
        graph: Graph REST client.
        generator: Minutes generation service.
        delivery: Chat delivery service.
        metrics: Process-wide metrics owner.
        retrier: Call-level retry wrapper.
        call_policy: Retry policy for individual external calls.
        poller: Transcript availability poller.
        ledger: Optional delivery ledger for duplicate-post protection.
        max_transcript_chars: Transcript characters sent to generation.
        formatter: Pure minutes-to-document function.
        clock: Monotonic time source for durations.
    """

    def __init__(
        self,
        credentials: CredentialCache,
        graph: GraphClient,
        generator: MinutesGenerator,
        delivery: TeamsDelivery,
        metrics: ProcessingMetrics,
        retrier: BackoffRetrier,
        call_policy: RetryPolicy,
        poller: AvailabilityPoller,
        ledger: DeliveryLedger | None = None,
        max_transcript_chars: int = DEFAULT_MAX_TRANSCRIPT_CHARS,
        formatter: Callable[[StructuredMinutes, MeetingContext], str] = format_minutes,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._credentials = credentials
        self._graph = graph
        self._generator = generator
        self._delivery = delivery
        self._metrics = metrics
        self._retrier = retrier
        self._call_policy = call_policy
        self._poller = poller
        self._ledger = ledger
        self._max_transcript_chars = max_transcript_chars
        self._formatter = formatter
        self._clock = clock
        self._handlers: dict[
            ProcessingStage, Callable[[AttemptState], Awaitable[ProcessingStage]]
        ] = {
            ProcessingStage.FETCH_MEETING: self._fetch_meeting,
            ProcessingStage.WAIT_FOR_TRANSCRIPT: self._wait_for_transcript,
            ProcessingStage.FETCH_TRANSCRIPT: self._fetch_transcript,
            ProcessingStage.GENERATE: self._generate,
            ProcessingStage.FORMAT: self._format,
            ProcessingStage.DELIVER: self._deliver,
        }

    async def __call__(self, job: Job) -> ProcessingResult:
        return await self.process(job)

    async def process(self, job: Job) -> ProcessingResult:
        """Run every stage for ``job`` and record the outcome.

        A job the ledger already marks as delivered ends in FETCH_MEETING
        and is recorded as a success with that short duration.

        Raises:
            ProcessingError: If any stage failed.
        """
        cid = job.correlation_id
        start = self._clock()
        state = AttemptState(job=job)

        logger.info(
            "processor.attempt_started",
            correlation_id=cid,
            job_id=job.id,
            meeting_id=job.meeting_id,
            attempt=job.attempts_made + 1,
        )

        stage = ProcessingStage.FETCH_MEETING
        try:
            while stage != ProcessingStage.DONE:
                state.stages.append(stage)
                try:
                    stage = await self._handlers[stage](state)
                except Exception as exc:
                    raise ProcessingError(stage.value, exc) from exc
        except ProcessingError as exc:
            elapsed_ms = (self._clock() - start) * 1000
            await self._metrics.record_outcome(False, elapsed_ms)
            logger.error(
                "processor.attempt_failed",
                correlation_id=cid,
                job_id=job.id,
                meeting_id=job.meeting_id,
                stage=exc.stage,
                attempt=job.attempts_made + 1,
                error=str(exc.cause),
                exc_info=exc.cause,
            )
            raise

        elapsed_ms = (self._clock() - start) * 1000
        await self._metrics.record_outcome(True, elapsed_ms)
        logger.info(
            "processor.attempt_succeeded",
            correlation_id=cid,
            job_id=job.id,
            processing_time_ms=round(elapsed_ms, 2),
        )
        return ProcessingResult(
            job_id=job.id,
            correlation_id=cid,
            processing_time_ms=elapsed_ms,
            delivered=state.delivered or state.already_delivered,
            already_delivered=state.already_delivered,
        )

    async def _is_delivered(self, job: Job) -> bool:
        if self._ledger is None:
            return False
        return await self._ledger.was_delivered(job.id)

    async def _call(self, name: str, state: AttemptState, operation: Callable[[], Awaitable]):
        """Run one external call under the call-level retry policy."""
        try:
            return await self._retrier.run(
                operation,
                self._call_policy,
                state.job.correlation_id,
                name=name,
            )
        except (CallFailure, RetriesExhausted) as exc:
            failure = exc.last_error if isinstance(exc, RetriesExhausted) else exc
            if getattr(failure, "status_code", None) == 401:
                # Token rejected; make the next attempt fetch a new one.
                self._credentials.invalidate()
            raise

    # ── Stages ──────────────────────────────────────────────────────────

    async def _fetch_meeting(self, state: AttemptState) -> ProcessingStage:
        job = state.job
        if await self._is_delivered(job):
            logger.info("processor.already_delivered", correlation_id=job.correlation_id)
            state.already_delivered = True
            return ProcessingStage.DONE

        credential = await self._credentials.get(job.correlation_id)
        state.token = credential.token

        raw = await self._call(
            "get_meeting",
            state,
            lambda: self._graph.get_meeting(state.token, job.user_id, job.meeting_id),
        )
        state.meeting = MeetingContext.from_graph(raw)
        logger.info(
            "processor.meeting_fetched",
            correlation_id=job.correlation_id,
            subject=state.meeting.subject,
        )
        return ProcessingStage.WAIT_FOR_TRANSCRIPT

    async def _wait_for_transcript(self, state: AttemptState) -> ProcessingStage:
        job = state.job

        async def _check() -> list[TranscriptInfo]:
            return await self._call(
                "list_transcripts",
                state,
                lambda: self._graph.list_transcripts(state.token, job.user_id, job.meeting_id),
            )

        state.transcripts = await self._poller.wait_until_ready(_check, job.correlation_id)
        return ProcessingStage.FETCH_TRANSCRIPT

    async def _fetch_transcript(self, state: AttemptState) -> ProcessingStage:
        job = state.job
        transcript = latest_transcript(state.transcripts)
        state.transcript_text = await self._call(
            "get_transcript_content",
            state,
            lambda: self._graph.get_transcript_content(
                state.token, job.user_id, job.meeting_id, transcript.id,
            ),
        )
        logger.info(
            "processor.transcript_fetched",
            correlation_id=job.correlation_id,
            transcript_id=transcript.id,
            transcript_length=len(state.transcript_text or ""),
        )
        return ProcessingStage.GENERATE

    async def _generate(self, state: AttemptState) -> ProcessingStage:
        job = state.job
        text = state.transcript_text or ""
        if len(text) > self._max_transcript_chars:
            logger.info(
                "processor.transcript_truncated",
                correlation_id=job.correlation_id,
                original_length=len(text),
                max_chars=self._max_transcript_chars,
            )
            text = text[: self._max_transcript_chars]

        state.minutes = await self._call(
            "generate_minutes",
            state,
            lambda: self._generator.generate(text, state.meeting, job.correlation_id),
        )
        return ProcessingStage.FORMAT

    async def _format(self, state: AttemptState) -> ProcessingStage:
        state.document = self._formatter(state.minutes, state.meeting)
        return ProcessingStage.DELIVER

    async def _deliver(self, state: AttemptState) -> ProcessingStage:
        job = state.job
        if await self._is_delivered(job):
            logger.info("processor.delivery_skipped", correlation_id=job.correlation_id)
            return ProcessingStage.DONE

        await self._call(
            "post_minutes",
            state,
            lambda: self._delivery.post(
                state.token, job.chat_id, state.document, job.correlation_id,
            ),
        )
        state.delivered = True
        if self._ledger is not None:
            try:
                await self._ledger.mark_delivered(job.id)
            except Exception as exc:
                # Post already sent; the attempt still succeeds.
                logger.error(
                    "processor.delivery_mark_failed",
                    correlation_id=job.correlation_id,
                    job_id=job.id,
                    error=str(exc),
                    exc_info=True,
                )
        return ProcessingStage.DONE
