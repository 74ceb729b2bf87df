#!/usr/bin/env python3
"""CLI script to register the meeting-ended webhook with Microsoft Graph.

Usage:
    uv run python scripts/create_subscription.py
    uv run python scripts/create_subscription.py --url https://minutes.example.com/webhook/meeting-ended

Reads Azure credentials, WEBHOOK_NOTIFICATION_URL and WEBHOOK_CLIENT_STATE
from environment or .env file. The subscription expires after 30 days and
must be recreated (or renewed) before then.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

# Ensure project root is on sys.path so we can import src.minutes_bot
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def create(notification_url: str) -> None:
    from src.minutes_bot.config import get_settings
    from src.minutes_bot.services.graph import GraphClient, GraphTokenProvider
    from src.minutes_bot.services.graph.subscriptions import build_subscription

    settings = get_settings()
    provider = GraphTokenProvider(
        tenant_id=settings.AZURE_TENANT_ID,
        client_id=settings.AZURE_CLIENT_ID,
        client_secret=settings.AZURE_CLIENT_SECRET,
        timeout=settings.REQUEST_TIMEOUT_S,
    )
    grant = await provider.refresh()

    graph = GraphClient(base_url=settings.GRAPH_BASE_URL, timeout=settings.REQUEST_TIMEOUT_S)
    subscription = await graph.create_subscription(
        grant.token,
        build_subscription(notification_url, settings.WEBHOOK_CLIENT_STATE),
    )
    print("Webhook created:")
    print(json.dumps(subscription, indent=2))


def main() -> None:
    parser = argparse.ArgumentParser(description="Create the meeting-ended Graph subscription")
    parser.add_argument(
        "--url",
        default=None,
        help="Public notification URL (defaults to WEBHOOK_NOTIFICATION_URL)",
    )
    args = parser.parse_args()

    from src.minutes_bot.config import get_settings

    settings = get_settings()
    url = args.url or settings.WEBHOOK_NOTIFICATION_URL
    if not url:
        parser.error("--url or WEBHOOK_NOTIFICATION_URL is required")
    if not settings.WEBHOOK_CLIENT_STATE:
        parser.error("WEBHOOK_CLIENT_STATE must be set so notifications can be verified")

    asyncio.run(create(url))


if __name__ == "__main__":
    main()
