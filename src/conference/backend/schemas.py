"""Pydantic schemas for conferencing backend responses."""

from __future__ import annotations

from pydantic import BaseModel, Field


class CreatedMeeting(BaseModel):
    """Credentials issued by the backend when a meeting is provisioned."""

    external_id: str
    moderator_password: str
    attendee_password: str
    internal_id: str | None = None


class MeetingInfo(BaseModel):
    """Backend view of a running meeting (getMeetingInfo)."""

    external_id: str
    name: str | None = None
    running: bool = False
    recording: bool = False
    participant_count: int = 0
    moderator_count: int = 0
    listener_count: int = 0
    create_time: int | None = None
    attendees: list[dict] = Field(default_factory=list)
