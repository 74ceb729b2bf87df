"""Tests for settings validation."""

from __future__ import annotations

import pytest

from src.minutes_bot.config import Settings
from src.minutes_bot.errors import ConfigurationError

COMPLETE = {
    "AZURE_TENANT_ID": "t",
    "AZURE_CLIENT_ID": "c",
    "AZURE_CLIENT_SECRET": "s",
    "ANTHROPIC_API_KEY": "k",
    "WEBHOOK_CLIENT_STATE": "cs",
}


def _settings(**values) -> Settings:
    return Settings(_env_file=None, **values)


def test_complete_settings_pass():
    _settings(**COMPLETE).validate_required()


def test_missing_credentials_are_listed():
    settings = _settings(**{**COMPLETE, "AZURE_CLIENT_SECRET": "", "ANTHROPIC_API_KEY": ""})

    with pytest.raises(ConfigurationError) as exc_info:
        settings.validate_required()

    assert exc_info.value.missing == ["AZURE_CLIENT_SECRET", "ANTHROPIC_API_KEY"]


def test_client_state_required_while_validation_enabled():
    settings = _settings(**{**COMPLETE, "WEBHOOK_CLIENT_STATE": ""})
    assert settings.missing_required() == ["WEBHOOK_CLIENT_STATE"]


def test_client_state_optional_when_validation_disabled():
    settings = _settings(
        **{**COMPLETE, "WEBHOOK_CLIENT_STATE": "", "WEBHOOK_VALIDATE_CLIENT_STATE": False}
    )
    assert settings.missing_required() == []


def test_defaults():
    settings = _settings()
    assert settings.JOB_MAX_ATTEMPTS == 5
    assert settings.JOB_RETRY_DELAY_MS == 60_000
    assert settings.TRANSCRIPT_POLL_ATTEMPTS == 10
    assert settings.TRANSCRIPT_POLL_MAX_WAIT_MS == 300_000


def test_stalled_idle_must_exceed_heartbeat():
    settings = _settings(
        **COMPLETE, STALLED_JOB_IDLE_MS=20_000, JOB_HEARTBEAT_INTERVAL_S=30.0,
    )

    with pytest.raises(ConfigurationError, match="STALLED_JOB_IDLE_MS"):
        settings.validate_required()
