"""Tests for MinutesGenerator with a mocked instructor client."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.minutes_bot.errors import NonRetriableCallFailure, RetriableCallFailure
from src.minutes_bot.meetings.generator import SYSTEM_PROMPT, MinutesGenerator, build_user_prompt
from src.minutes_bot.meetings.schemas import MeetingContext, StructuredMinutes

CONTEXT = MeetingContext(subject="Standup", start_date_time="2024-03-01", participants=["Ada"])


class ProviderError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"provider returned {status_code}")
        self.status_code = status_code


def _client(result=None, error=None) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=result, side_effect=error)
    return client


class TestMinutesGenerator:
    @pytest.mark.asyncio
    async def test_requests_structured_minutes(self):
        minutes = StructuredMinutes(summary="Daily sync.")
        client = _client(result=minutes)
        generator = MinutesGenerator(
            model="anthropic/claude-sonnet-4-20250514", api_key="k", max_tokens=4000, client=client,
        )

        result = await generator.generate("Ada: done", CONTEXT, "cid")

        assert result is minutes
        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["response_model"] is StructuredMinutes
        assert kwargs["model"] == "anthropic/claude-sonnet-4-20250514"
        assert kwargs["max_tokens"] == 4000
        assert kwargs["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}
        assert "Ada: done" in kwargs["messages"][1]["content"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 529])
    async def test_transient_provider_errors_are_retriable(self, status):
        generator = MinutesGenerator(model="m", api_key="k", client=_client(error=ProviderError(status)))

        with pytest.raises(RetriableCallFailure) as exc_info:
            await generator.generate("text", CONTEXT, "cid")
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_bad_request_is_not_retriable(self):
        generator = MinutesGenerator(model="m", api_key="k", client=_client(error=ProviderError(400)))

        with pytest.raises(NonRetriableCallFailure):
            await generator.generate("text", CONTEXT, "cid")

    def test_user_prompt_includes_meeting_details(self):
        prompt = build_user_prompt("hello", CONTEXT)
        assert "- Subject: Standup" in prompt
        assert "- Participants: Ada" in prompt
        assert prompt.endswith("Transcript:\nhello")
