"""Change-notification subscription for ended online meetings."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

MEETINGS_RESOURCE = "/communications/onlineMeetings"
SUBSCRIPTION_LIFETIME = timedelta(days=30)


def build_subscription(
    notification_url: str,
    client_state: str,
    now: datetime | None = None,
    lifetime: timedelta = SUBSCRIPTION_LIFETIME,
) -> dict[str, Any]:
    """Request body for POST /subscriptions."""
    now = now or datetime.now(timezone.utc)
    expires = (now + lifetime).astimezone(timezone.utc)
    return {
        "changeType": "updated",
        "notificationUrl": notification_url,
        "resource": MEETINGS_RESOURCE,
        "expirationDateTime": expires.isoformat().replace("+00:00", "Z"),
        "clientState": client_state,
    }
