"""Microsoft Graph integration: app-only token provider and REST client."""

from src.minutes_bot.services.graph.auth import GraphTokenProvider
from src.minutes_bot.services.graph.client import GraphClient

__all__ = [
    "GraphClient",
    "GraphTokenProvider",
]
