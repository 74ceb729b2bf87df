"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from src.minutes_bot.errors import ConfigurationError


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment
    ENVIRONMENT: Environment = Environment.development
    PORT: int = 3000

    # Logging
    LOG_LEVEL: str = "INFO"

    # Microsoft Graph (client credentials grant)
    AZURE_TENANT_ID: str = ""
    AZURE_CLIENT_ID: str = ""
    AZURE_CLIENT_SECRET: str = ""
    GRAPH_BASE_URL: str = "https://graph.microsoft.com/v1.0"
    TOKEN_SAFETY_MARGIN_S: int = 300

    # Minutes generation
    ANTHROPIC_API_KEY: str = ""
    GENERATION_MODEL: str = "anthropic/claude-sonnet-4-20250514"
    GENERATION_MAX_TOKENS: int = 4000
    TRANSCRIPT_MAX_CHARS: int = 100_000

    # Redis job queue
    REDIS_URL: str = "redis://localhost:6379/0"
    QUEUE_NAME: str = "meeting-processing"
    JOB_MAX_ATTEMPTS: int = 5
    JOB_RETRY_DELAY_MS: int = 60_000  # 1 minute
    WORKER_CONCURRENCY: int = 4
    STALLED_JOB_IDLE_MS: int = 600_000
    JOB_HEARTBEAT_INTERVAL_S: float = 30.0
    SHUTDOWN_GRACE_S: float = 30.0

    # Call-level retries for Graph / generation requests
    CALL_MAX_ATTEMPTS: int = 5
    CALL_RETRY_DELAY_MS: int = 2_000
    REQUEST_TIMEOUT_S: float = 30.0

    # Transcript availability polling
    TRANSCRIPT_POLL_ATTEMPTS: int = 10
    TRANSCRIPT_POLL_UNIT_MS: int = 30_000
    TRANSCRIPT_POLL_MAX_WAIT_MS: int = 300_000  # 5 minutes

    # Webhook
    WEBHOOK_CLIENT_STATE: str = ""
    WEBHOOK_VALIDATE_CLIENT_STATE: bool = True
    WEBHOOK_NOTIFICATION_URL: str = ""

    # Delivery ledger (duplicate post protection on redelivery)
    DELIVERY_LEDGER_TTL_S: int = 7 * 24 * 3600

    # Monitoring
    SENTRY_DSN: str = ""

    def missing_required(self) -> list[str]:
        """Return the names of required credentials that are not set."""
        required = [
            "AZURE_TENANT_ID",
            "AZURE_CLIENT_ID",
            "AZURE_CLIENT_SECRET",
            "ANTHROPIC_API_KEY",
        ]
        missing = [name for name in required if not getattr(self, name)]
        if self.WEBHOOK_VALIDATE_CLIENT_STATE and not self.WEBHOOK_CLIENT_STATE:
            missing.append("WEBHOOK_CLIENT_STATE")
        return missing

    def validate_required(self) -> None:
        """Raise ConfigurationError if any required setting is missing or
        the worker timing settings are inconsistent."""
        missing = self.missing_required()
        if missing:
            msg = f"Missing required environment variables: {', '.join(missing)}"
            raise ConfigurationError(msg, missing=missing)
        if self.JOB_HEARTBEAT_INTERVAL_S * 1000 >= self.STALLED_JOB_IDLE_MS:
            msg = "STALLED_JOB_IDLE_MS must be longer than JOB_HEARTBEAT_INTERVAL_S"
            raise ConfigurationError(msg)


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
