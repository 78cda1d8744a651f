"""Tests for MembershipManager join admission, bans, and exits.

Covers the ordered join checks, role policies, capacity accounting on
join/ban/exit, and concurrent joins against a single server.
"""

from __future__ import annotations

import asyncio
from urllib.parse import parse_qs, urlparse

import pytest

from src.conference.core.errors import MeetingNotFoundError, MembershipNotFoundError
from src.conference.meetings.membership import ROLE_POLICIES, password_matches
from src.conference.meetings.schemas import JoinRejection, MeetingCreate, Role, UserInfo


async def _room(lifecycle, external_id: str = "room1"):
    return await lifecycle.create_meeting(
        MeetingCreate(name=f"Room {external_id}", external_id=external_id)
    )


def _query(url: str) -> dict[str, list[str]]:
    return parse_qs(urlparse(url).query)


# ── Role Policy ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_password_policy(lifecycle, add_server):
    await add_server(5)
    meeting = await _room(lifecycle)

    assert password_matches(meeting, Role.MODERATOR, "mp-room1")
    assert not password_matches(meeting, Role.MODERATOR, "ap-room1")
    assert not password_matches(meeting, Role.MODERATOR, "MP-ROOM1")
    assert not password_matches(meeting, Role.MODERATOR, None)
    assert password_matches(meeting, Role.ATTENDEE, "ap-room1")
    assert password_matches(meeting, Role.GUEST, None)
    assert set(ROLE_POLICIES) == set(Role)


# ── Join ─────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_moderator_join_wrong_then_right_password(lifecycle, memberships, add_server, meeting_repo):
    """room1: wrong moderator password is rejected, the right one admitted as userID=1."""
    await add_server(5)
    meeting = await _room(lifecycle)
    alice = UserInfo(full_name="Alice")

    rejected = await memberships.join_meeting("room1", alice, Role.MODERATOR, password="nope")
    assert rejected.admitted is False
    assert rejected.reason == JoinRejection.INVALID_CREDENTIALS
    assert rejected.user_id is None
    assert meeting_repo.users == {}

    admitted = await memberships.join_meeting(
        "room1", alice, Role.MODERATOR, password=meeting.moderator_password
    )
    assert admitted.admitted is True
    assert admitted.membership_id is not None
    assert admitted.user_id in meeting_repo.users
    assert meeting_repo.memberships[admitted.membership_id].role == Role.MODERATOR
    query = _query(admitted.join_url)
    assert query["userID"] == ["1"]
    assert query["password"] == [meeting.moderator_password]
    assert query["fullName"] == ["Alice"]
    assert query["meetingID"] == ["room1"]
    assert "checksum" in query
    assert "/api/join?" in admitted.join_url


@pytest.mark.asyncio
async def test_attendee_join_url(lifecycle, memberships, add_server):
    await add_server(5)
    meeting = await _room(lifecycle)

    decision = await memberships.join_meeting(
        "room1", UserInfo(full_name="Bob"), Role.ATTENDEE, password=meeting.attendee_password
    )
    assert decision.admitted
    assert _query(decision.join_url)["userID"] == ["2"]


@pytest.mark.asyncio
async def test_guest_join_needs_no_password(lifecycle, memberships, add_server):
    await add_server(5)
    await _room(lifecycle)

    decision = await memberships.join_meeting("room1", UserInfo(full_name="Gus"), Role.GUEST)
    assert decision.admitted
    query = _query(decision.join_url)
    assert query["guest"] == ["true"]
    assert "password" not in query
    assert "userID" not in query


@pytest.mark.asyncio
async def test_join_unknown_meeting(memberships):
    decision = await memberships.join_meeting("ghost", UserInfo(full_name="Ann"), Role.GUEST)
    assert decision.reason == JoinRejection.MEETING_NOT_FOUND


@pytest.mark.asyncio
async def test_join_ended_meeting(lifecycle, memberships, add_server):
    await add_server(5)
    meeting = await _room(lifecycle)
    await lifecycle.end_meeting("room1", meeting.moderator_password)

    decision = await memberships.join_meeting(
        "room1", UserInfo(full_name="Ann"), Role.ATTENDEE, password=meeting.attendee_password
    )
    assert decision.admitted is False
    assert decision.reason == JoinRejection.MEETING_ENDED


@pytest.mark.asyncio
async def test_second_user_rejected_when_server_full(
    lifecycle, memberships, add_server, server_repo, meeting_repo
):
    server = await add_server(1)
    meeting = await _room(lifecycle)

    first = await memberships.join_meeting(
        "room1", UserInfo(full_name="Ann"), Role.ATTENDEE, password=meeting.attendee_password
    )
    second = await memberships.join_meeting(
        "room1", UserInfo(full_name="Bob"), Role.ATTENDEE, password=meeting.attendee_password
    )

    assert first.admitted
    assert second.reason == JoinRejection.SERVER_FULL
    assert (await server_repo.get_server(server.id)).occupancy == 1
    assert second.user_id is None
    assert [u.full_name for u in meeting_repo.users.values()] == ["Ann"]


@pytest.mark.asyncio
async def test_capacity_checked_before_credentials(lifecycle, memberships, add_server):
    await add_server(1)
    meeting = await _room(lifecycle)
    await memberships.join_meeting(
        "room1", UserInfo(full_name="Ann"), Role.ATTENDEE, password=meeting.attendee_password
    )

    decision = await memberships.join_meeting(
        "room1", UserInfo(full_name="Bob"), Role.ATTENDEE, password="wrong"
    )
    assert decision.reason == JoinRejection.SERVER_FULL


@pytest.mark.asyncio
async def test_duplicate_join_rejected(lifecycle, memberships, add_server, meeting_repo):
    await add_server(5)
    meeting = await _room(lifecycle)
    ann = UserInfo(full_name="Ann", alias="ann")

    await memberships.join_meeting("room1", ann, Role.ATTENDEE, password=meeting.attendee_password)
    again = await memberships.join_meeting(
        "room1", ann, Role.ATTENDEE, password=meeting.attendee_password
    )

    assert again.reason == JoinRejection.ALREADY_JOINED
    assert len(meeting_repo.memberships) == 1
    assert len(meeting_repo.users) == 1


@pytest.mark.asyncio
async def test_join_increments_counters(lifecycle, memberships, add_server, server_repo, meeting_repo):
    server = await add_server(5)
    meeting = await _room(lifecycle)

    await memberships.join_meeting("room1", UserInfo(full_name="Ann"), Role.GUEST)

    assert (await server_repo.get_server(server.id)).occupancy == 1
    assert meeting_repo.meetings[meeting.id].user_count == 1


# ── Concurrency ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_concurrent_joins_never_exceed_limit(lifecycle, memberships, add_server, server_repo):
    server = await add_server(3)
    await _room(lifecycle)

    decisions = await asyncio.gather(
        *(
            memberships.join_meeting("room1", UserInfo(full_name=f"user{i}"), Role.GUEST)
            for i in range(10)
        )
    )

    assert sum(1 for d in decisions if d.admitted) == 3
    assert all(d.reason == JoinRejection.SERVER_FULL for d in decisions if not d.admitted)
    assert (await server_repo.get_server(server.id)).occupancy == 3


@pytest.mark.asyncio
async def test_concurrent_duplicate_joins_create_one_membership(
    lifecycle, memberships, add_server, meeting_repo
):
    await add_server(10)
    await _room(lifecycle)

    decisions = await asyncio.gather(
        *(memberships.join_meeting("room1", UserInfo(full_name="Ann"), Role.GUEST) for _ in range(5))
    )

    assert sum(1 for d in decisions if d.admitted) == 1
    active = [m for m in meeting_repo.memberships.values() if m.is_active]
    assert len(active) == 1


# ── Ban & Exit ───────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_ban_is_permanent(lifecycle, memberships, add_server, server_repo):
    server = await add_server(5)
    meeting = await _room(lifecycle)
    ann = UserInfo(full_name="Ann")

    joined = await memberships.join_meeting("room1", ann, Role.ATTENDEE, password=meeting.attendee_password)
    banned = await memberships.ban_user(joined.membership_id)
    assert banned.rejected is True
    assert (await server_repo.get_server(server.id)).occupancy == 0

    for _ in range(2):
        decision = await memberships.join_meeting(
            "room1", ann, Role.ATTENDEE, password=meeting.attendee_password
        )
        assert decision.reason == JoinRejection.USER_BANNED


@pytest.mark.asyncio
async def test_ban_holds_when_rejoining_under_another_role(
    lifecycle, memberships, add_server, meeting_repo
):
    await add_server(5)
    meeting = await _room(lifecycle)
    bob = UserInfo(full_name="Bob", alias="bob")

    joined = await memberships.join_meeting("room1", bob, Role.ATTENDEE, password=meeting.attendee_password)
    await memberships.ban_user(joined.membership_id)

    as_guest = await memberships.join_meeting("room1", bob, Role.GUEST)
    assert as_guest.admitted is False
    assert as_guest.reason == JoinRejection.USER_BANNED
    assert as_guest.user_id == joined.user_id

    as_moderator = await memberships.join_meeting(
        "room1", bob, Role.MODERATOR, password=meeting.moderator_password
    )
    assert as_moderator.reason == JoinRejection.USER_BANNED
    assert len(meeting_repo.users) == 1


@pytest.mark.asyncio
async def test_same_name_with_other_alias_is_another_user(lifecycle, memberships, add_server):
    await add_server(5)
    await _room(lifecycle)

    joined = await memberships.join_meeting("room1", UserInfo(full_name="Bob", alias="bob"), Role.GUEST)
    await memberships.ban_user(joined.membership_id)

    other = await memberships.join_meeting("room1", UserInfo(full_name="Bob", alias="bobby"), Role.GUEST)
    assert other.admitted is True
    assert other.user_id != joined.user_id


@pytest.mark.asyncio
async def test_ban_after_exit_keeps_ban_and_capacity(lifecycle, memberships, add_server, server_repo):
    server = await add_server(5)
    await _room(lifecycle)

    joined = await memberships.join_meeting("room1", UserInfo(full_name="Ann"), Role.GUEST)
    await memberships.exit_user(joined.membership_id)
    banned = await memberships.ban_user(joined.membership_id)

    assert banned.rejected and banned.exited
    assert (await server_repo.get_server(server.id)).occupancy == 0
    again = await memberships.join_meeting("room1", UserInfo(full_name="Ann"), Role.GUEST)
    assert again.reason == JoinRejection.USER_BANNED


@pytest.mark.asyncio
async def test_exit_is_idempotent_and_allows_rejoin(
    lifecycle, memberships, add_server, server_repo, meeting_repo
):
    server = await add_server(5)
    meeting = await _room(lifecycle)

    joined = await memberships.join_meeting("room1", UserInfo(full_name="Ann"), Role.GUEST)
    await memberships.exit_user(joined.membership_id)
    await memberships.exit_user(joined.membership_id)

    assert (await server_repo.get_server(server.id)).occupancy == 0
    assert meeting_repo.meetings[meeting.id].user_count == 0

    rejoined = await memberships.join_meeting("room1", UserInfo(full_name="Ann"), Role.GUEST)
    assert rejoined.admitted
    assert rejoined.membership_id != joined.membership_id
    assert len(await memberships.list_memberships("room1")) == 2


@pytest.mark.asyncio
async def test_ban_unknown_membership(memberships):
    with pytest.raises(MembershipNotFoundError):
        await memberships.ban_user(42)


@pytest.mark.asyncio
async def test_list_memberships_unknown_meeting(memberships):
    with pytest.raises(MeetingNotFoundError):
        await memberships.list_memberships("ghost")
