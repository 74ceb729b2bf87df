"""Pydantic v2 schemas for the meeting-minutes domain.

Defines the meeting context passed to generation and formatting, the
transcript listing entries returned by Microsoft Graph, and the structured
minutes returned by the generation service.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class MeetingContext(BaseModel):
    """Meeting details used to prompt generation and to head the document."""

    subject: str = "Untitled Meeting"
    start_date_time: str | None = None
    participants: list[str] = Field(default_factory=list)

    @classmethod
    def from_graph(cls, meeting: dict[str, Any]) -> MeetingContext:
        """Build from a Graph ``onlineMeeting`` resource.

        Participant names come from ``participants.organizer`` and
        ``participants.attendees``; unnamed identities become "Unknown".
        """
        raw_participants = meeting.get("participants") or {}
        if isinstance(raw_participants, dict):
            people = []
            if raw_participants.get("organizer"):
                people.append(raw_participants["organizer"])
            people.extend(raw_participants.get("attendees") or [])
        else:
            people = list(raw_participants)

        names = []
        for person in people:
            identity = (person.get("identity") or {}).get("user") or person.get("identity") or {}
            names.append(identity.get("displayName") or "Unknown")

        return cls(
            subject=meeting.get("subject") or "Untitled Meeting",
            start_date_time=meeting.get("startDateTime"),
            participants=names,
        )


class TranscriptInfo(BaseModel):
    """One entry of a meeting's transcript listing."""

    id: str
    created_date_time: str | None = Field(None, alias="createdDateTime")

    model_config = {"populate_by_name": True}


class ActionItem(BaseModel):
    """An action item extracted from the transcript."""

    task: str = Field(description="What needs to be done")
    assignee: str | None = Field(None, description="Person responsible, if mentioned")
    due_date: str | None = Field(None, description="When it's due, if mentioned")


class StructuredMinutes(BaseModel):
    """Structured minutes returned by the generation service."""

    summary: str = Field(description="2-3 sentence summary of the meeting")
    discussion_points: list[str] = Field(
        default_factory=list, description="Key discussion points"
    )
    decisions: list[str] = Field(default_factory=list, description="Decisions made")
    action_items: list[ActionItem] = Field(
        default_factory=list, description="Action items with assignees"
    )
