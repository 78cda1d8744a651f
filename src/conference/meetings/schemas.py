"""Pydantic v2 schemas for the meeting lifecycle and membership domain.

Defines meetings (bound to exactly one server for their lifetime), users
(created on first join), memberships (join/ban/exit record of a user in a
meeting), and the JoinDecision returned by join admission.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class Role(str, Enum):
    """Role a user joins a meeting with."""

    MODERATOR = "moderator"
    ATTENDEE = "attendee"
    GUEST = "guest"


class MeetingStatus(str, Enum):
    """Lifecycle status. Unprovisioned meetings are never persisted."""

    RUNNING = "running"
    ENDED = "ended"


class JoinRejection(str, Enum):
    """Reason a join attempt was refused, in check order."""

    MEETING_NOT_FOUND = "meeting_not_found"
    MEETING_ENDED = "meeting_ended"
    USER_BANNED = "user_banned"
    SERVER_FULL = "server_full"
    INVALID_CREDENTIALS = "invalid_credentials"
    ALREADY_JOINED = "already_joined"


# ── Meeting Models ───────────────────────────────────────────────────────────


class Meeting(BaseModel):
    """Provisioned meeting with its backend-issued credentials."""

    id: int
    name: str
    external_id: str
    moderator_password: str
    attendee_password: str
    record: bool = False
    server_id: int
    status: MeetingStatus = MeetingStatus.RUNNING
    user_count: int = 0
    created_at: datetime
    ended_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self.status == MeetingStatus.RUNNING


class MeetingCreate(BaseModel):
    """Request schema for creating a meeting."""

    name: str = Field(min_length=1, max_length=300)
    external_id: str = Field(min_length=1, max_length=200)
    record: bool = False


# ── User & Membership Models ─────────────────────────────────────────────────


class UserInfo(BaseModel):
    """Identifying details a client supplies when joining."""

    full_name: str = Field(min_length=1, max_length=200)
    alias: str | None = Field(None, max_length=200)


class User(BaseModel):
    """Participant identity; the role is chosen per join and kept on the membership."""

    id: int
    full_name: str
    alias: str | None = None


class Membership(BaseModel):
    """A user's participation record in a meeting."""

    id: int
    meeting_id: int
    user_id: int
    role: Role
    joined_at: datetime
    rejected: bool = False
    exited: bool = False

    @property
    def is_active(self) -> bool:
        return not (self.rejected or self.exited)


# ── Join Decision ────────────────────────────────────────────────────────────


class JoinDecision(BaseModel):
    """Outcome of a join attempt.

    Admitted decisions carry the backend join URL and the new membership;
    rejected ones carry the first failing check as reason.
    """

    admitted: bool
    reason: JoinRejection | None = None
    join_url: str | None = None
    membership_id: int | None = None
    user_id: int | None = None

    @classmethod
    def admit(cls, join_url: str, membership_id: int, user_id: int) -> JoinDecision:
        return cls(admitted=True, join_url=join_url, membership_id=membership_id, user_id=user_id)

    @classmethod
    def reject(cls, reason: JoinRejection, user_id: int | None = None) -> JoinDecision:
        return cls(admitted=False, reason=reason, user_id=user_id)
