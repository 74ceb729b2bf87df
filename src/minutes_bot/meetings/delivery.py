"""Posts finished minutes to the meeting's Teams chat."""

from __future__ import annotations

import structlog

from src.minutes_bot.meetings.formatter import markdown_to_teams_html
from src.minutes_bot.services.graph.client import GraphClient

logger = structlog.get_logger(__name__)


class TeamsDelivery:
    """Delivers a Markdown document as an HTML chat message.

    Args:
        graph: GraphClient used for the POST.
    """

    def __init__(self, graph: GraphClient) -> None:
        self._graph = graph

    async def post(self, token: str, chat_id: str, document: str, correlation_id: str) -> None:
        """Post ``document`` to ``chat_id``.

        Raises:
            CallFailure: Propagated from GraphClient; the caller retries.
        """
        logger.info("delivery.posting", correlation_id=correlation_id, chat_id=chat_id)
        await self._graph.post_chat_message(token, chat_id, markdown_to_teams_html(document))
        logger.info("delivery.posted", correlation_id=correlation_id, chat_id=chat_id)
