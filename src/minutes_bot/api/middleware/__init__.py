"""API middleware package."""

from src.minutes_bot.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
