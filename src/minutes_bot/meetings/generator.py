"""MinutesGenerator -- structured meeting minutes from a transcript.

Uses the instructor + litellm pattern for structured LLM extraction: the
response is validated straight into StructuredMinutes. Provider errors are
translated into the call-failure taxonomy so the BackoffRetrier can decide
whether to try again (timeouts, 429, 5xx) or give up (other 4xx).

Input size is bounded by the caller; see MeetingProcessor.
"""

from __future__ import annotations

from typing import Any

import instructor
import litellm
import structlog

from src.minutes_bot.core.retry import is_retriable, status_code_of
from src.minutes_bot.errors import NonRetriableCallFailure, RetriableCallFailure
from src.minutes_bot.meetings.schemas import MeetingContext, StructuredMinutes

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = (
    "You are analyzing a Microsoft Teams meeting transcript to produce "
    "professional meeting minutes. Extract:\n"
    "1) Meeting summary (2-3 sentences)\n"
    "2) Key discussion points\n"
    "3) Decisions made\n"
    "4) Action items, with the assigned person and due date if mentioned\n\n"
    "Note absence of items rather than making assumptions."
)


def build_user_prompt(transcript_text: str, context: MeetingContext) -> str:
    participants = ", ".join(context.participants) or "Unknown"
    return (
        "Meeting Details:\n"
        f"- Subject: {context.subject}\n"
        f"- Date: {context.start_date_time or 'Unknown'}\n"
        f"- Participants: {participants}\n\n"
        f"Transcript:\n{transcript_text}"
    )


class MinutesGenerator:
    """Generates StructuredMinutes through an LLM.

    Args:
        model: litellm model name, e.g. ``anthropic/claude-sonnet-4-20250514``.
        api_key: Provider API key.
        max_tokens: Completion token limit.
        timeout: Request timeout in seconds.
        client: Optional instructor client; built from litellm.acompletion
            when omitted.
    """

    def __init__(
        self,
        model: str,
        api_key: str,
        max_tokens: int = 4000,
        timeout: float = 60.0,
        client: Any | None = None,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._client = client or instructor.from_litellm(litellm.acompletion)

    async def generate(
        self,
        transcript_text: str,
        context: MeetingContext,
        correlation_id: str,
    ) -> StructuredMinutes:
        """Extract structured minutes from transcript text.

        Args:
            transcript_text: Transcript content, already truncated.
            context: Meeting subject, date and participants.
            correlation_id: Correlation id for log attribution.

        Returns:
            Validated StructuredMinutes.

        Raises:
            RetriableCallFailure: Timeout, connection, 429 or 5xx errors.
            NonRetriableCallFailure: Other client errors.
        """
        logger.info(
            "generator.request_started",
            correlation_id=correlation_id,
            model=self._model,
            transcript_length=len(transcript_text),
            meeting_subject=context.subject,
        )
        try:
            minutes = await self._client.chat.completions.create(
                model=self._model,
                response_model=StructuredMinutes,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_user_prompt(transcript_text, context)},
                ],
                max_tokens=self._max_tokens,
                temperature=0.1,
                api_key=self._api_key,
                timeout=self._timeout,
            )
        except Exception as exc:
            status = status_code_of(exc)
            failure_cls = RetriableCallFailure if is_retriable(exc) else NonRetriableCallFailure
            logger.error(
                "generator.request_failed",
                correlation_id=correlation_id,
                status=status,
                error=str(exc),
            )
            raise failure_cls(
                f"Failed to generate meeting minutes: {exc}", status_code=status,
            ) from exc

        logger.info(
            "generator.minutes_generated",
            correlation_id=correlation_id,
            action_items=len(minutes.action_items),
            decisions=len(minutes.decisions),
        )
        return minutes
