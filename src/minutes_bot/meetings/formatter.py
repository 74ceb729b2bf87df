"""Pure formatting of structured minutes into a postable document.

``format_minutes`` renders Markdown; ``markdown_to_teams_html`` converts the
small Markdown subset it uses into the HTML accepted by Teams chat
messages. Neither does I/O.
"""

from __future__ import annotations

import re
from datetime import datetime

from src.minutes_bot.meetings.schemas import MeetingContext, StructuredMinutes

NONE_RECORDED = "None recorded"
FOOTER = "*Generated automatically by Meeting Minutes Bot*"


def _format_date(value: str | None) -> str:
    if not value:
        return "Unknown"
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return parsed.strftime("%Y-%m-%d %H:%M %Z").strip()


def _bullets(items: list[str]) -> str:
    return "\n".join(f"- {item}" for item in items) if items else NONE_RECORDED


def format_minutes(minutes: StructuredMinutes, context: MeetingContext) -> str:
    """Render minutes and meeting details as a Markdown document."""
    if minutes.action_items:
        actions = "\n\n".join(
            f"- **{item.task}**\n"
            f"  - Assignee: {item.assignee or 'Unassigned'}\n"
            f"  - Due: {item.due_date or 'TBD'}"
            for item in minutes.action_items
        )
    else:
        actions = NONE_RECORDED

    participants = ", ".join(context.participants) or "Unknown"

    return (
        "# Meeting Minutes\n\n"
        f"**Meeting:** {context.subject}\n"
        f"**Date:** {_format_date(context.start_date_time)}\n"
        f"**Participants:** {participants}\n\n"
        "---\n\n"
        "## Summary\n"
        f"{minutes.summary}\n\n"
        "## Key Discussion Points\n"
        f"{_bullets(minutes.discussion_points)}\n\n"
        "## Decisions Made\n"
        f"{_bullets(minutes.decisions)}\n\n"
        "## Action Items\n"
        f"{actions}\n\n"
        "---\n"
        f"{FOOTER}\n"
    )


_BOLD = re.compile(r"\*\*(.*?)\*\*")
_H1 = re.compile(r"^# (.*?)$", re.MULTILINE)
_H2 = re.compile(r"^## (.*?)$", re.MULTILINE)


def markdown_to_teams_html(document: str) -> str:
    """Convert the formatter's Markdown subset to Teams-compatible HTML.

    Headings and bold are converted before line breaks so the heading
    patterns still see line boundaries.
    """
    html = _H2.sub(r"<h2>\1</h2>", document)
    html = _H1.sub(r"<h1>\1</h1>", html)
    html = _BOLD.sub(r"<strong>\1</strong>", html)
    return html.replace("\n", "<br>")
