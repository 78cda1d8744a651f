"""REST API endpoints for meetings and memberships.

Meeting endpoints are keyed by the client-chosen external id; membership
moderation endpoints by membership id. Admitted joins answer with a 307
redirect to the backend join URL. Rejected joins answer with a JSON body
naming the first check that failed.

Typed ConferenceErrors raised by the managers are translated to HTTP
responses by the handler registered in api/v1/router.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from src.conference.api.deps import get_lifecycle_manager, get_membership_manager
from src.conference.backend.schemas import MeetingInfo
from src.conference.meetings.lifecycle import MeetingLifecycleManager
from src.conference.meetings.membership import MembershipManager
from src.conference.meetings.schemas import (
    JoinRejection,
    Meeting,
    MeetingCreate,
    Membership,
    Role,
    UserInfo,
)

router = APIRouter(prefix="/meetings", tags=["meetings"])
memberships_router = APIRouter(prefix="/memberships", tags=["memberships"])

REJECTION_STATUS: dict[JoinRejection, int] = {
    JoinRejection.MEETING_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    JoinRejection.MEETING_ENDED: status.HTTP_409_CONFLICT,
    JoinRejection.USER_BANNED: status.HTTP_403_FORBIDDEN,
    JoinRejection.SERVER_FULL: status.HTTP_409_CONFLICT,
    JoinRejection.INVALID_CREDENTIALS: status.HTTP_403_FORBIDDEN,
    JoinRejection.ALREADY_JOINED: status.HTTP_409_CONFLICT,
}


# ── Request/Response Schemas ─────────────────────────────────────────────────


class JoinRequest(BaseModel):
    user_info: UserInfo
    role: Role
    password: str | None = None


class EndRequest(BaseModel):
    password: str


class MeetingView(BaseModel):
    """Meeting as seen by clients; credentials are omitted."""

    id: int
    name: str
    external_id: str
    record: bool
    server_id: int
    status: str
    user_count: int
    created_at: str | None = None
    ended_at: str | None = None


class MeetingCreatedView(MeetingView):
    """Create response; the only place the backend-issued passwords are returned."""

    moderator_password: str
    attendee_password: str


class MembershipView(BaseModel):
    id: int
    meeting_id: int
    user_id: int
    role: str
    joined_at: str
    rejected: bool
    exited: bool
    active: bool


def _meeting_fields(meeting: Meeting) -> dict:
    return {
        "id": meeting.id,
        "name": meeting.name,
        "external_id": meeting.external_id,
        "record": meeting.record,
        "server_id": meeting.server_id,
        "status": meeting.status.value,
        "user_count": meeting.user_count,
        "created_at": meeting.created_at.isoformat() if meeting.created_at else None,
        "ended_at": meeting.ended_at.isoformat() if meeting.ended_at else None,
    }


def _membership_to_view(membership: Membership) -> MembershipView:
    return MembershipView(
        id=membership.id,
        meeting_id=membership.meeting_id,
        user_id=membership.user_id,
        role=membership.role.value,
        joined_at=membership.joined_at.isoformat(),
        rejected=membership.rejected,
        exited=membership.exited,
        active=membership.is_active,
    )


# ── Meeting Endpoints ────────────────────────────────────────────────────────


@router.post("", response_model=MeetingCreatedView, status_code=status.HTTP_201_CREATED)
async def create_meeting(
    body: MeetingCreate,
    lifecycle: MeetingLifecycleManager = Depends(get_lifecycle_manager),
) -> MeetingCreatedView:
    """Provision a meeting on the most capable server."""
    meeting = await lifecycle.create_meeting(body)
    return MeetingCreatedView(
        **_meeting_fields(meeting),
        moderator_password=meeting.moderator_password,
        attendee_password=meeting.attendee_password,
    )


@router.post("/{external_id}/join", response_model=None)
async def join_meeting(
    external_id: str,
    body: JoinRequest,
    memberships: MembershipManager = Depends(get_membership_manager),
) -> RedirectResponse | JSONResponse:
    """Admit a user and redirect to the backend, or explain the rejection."""
    decision = await memberships.join_meeting(
        external_id, body.user_info, body.role, password=body.password
    )
    if decision.admitted and decision.join_url:
        return RedirectResponse(
            decision.join_url, status_code=status.HTTP_307_TEMPORARY_REDIRECT
        )
    return JSONResponse(
        status_code=REJECTION_STATUS[decision.reason],
        content={
            "detail": "Join rejected",
            "reason": decision.reason.value,
            "user_id": decision.user_id,
        },
    )


@router.post("/{external_id}/end", response_model=MeetingView)
async def end_meeting(
    external_id: str,
    body: EndRequest,
    lifecycle: MeetingLifecycleManager = Depends(get_lifecycle_manager),
) -> MeetingView:
    """End a running meeting; every active member is exited."""
    meeting = await lifecycle.end_meeting(external_id, body.password)
    return MeetingView(**_meeting_fields(meeting))


@router.get("/{external_id}/info", response_model=MeetingInfo)
async def get_meeting_info(
    external_id: str,
    lifecycle: MeetingLifecycleManager = Depends(get_lifecycle_manager),
) -> MeetingInfo:
    return await lifecycle.get_meeting_info(external_id)


@router.get("/{external_id}/memberships", response_model=list[MembershipView])
async def list_memberships(
    external_id: str,
    memberships: MembershipManager = Depends(get_membership_manager),
) -> list[MembershipView]:
    return [_membership_to_view(m) for m in await memberships.list_memberships(external_id)]


# ── Membership Endpoints ─────────────────────────────────────────────────────


@memberships_router.post("/{membership_id}/ban", response_model=MembershipView)
async def ban_user(
    membership_id: int,
    memberships: MembershipManager = Depends(get_membership_manager),
) -> MembershipView:
    """Ban the user of a membership from its meeting for good."""
    return _membership_to_view(await memberships.ban_user(membership_id))


@memberships_router.post("/{membership_id}/exit", response_model=MembershipView)
async def exit_user(
    membership_id: int,
    memberships: MembershipManager = Depends(get_membership_manager),
) -> MembershipView:
    return _membership_to_view(await memberships.exit_user(membership_id))
