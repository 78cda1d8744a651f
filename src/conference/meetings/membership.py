"""MembershipManager -- join admission, bans, and exits.

Join checks run in a fixed order and the first failure decides the
rejection reason:

1. meeting exists and is running
2. user is not banned from the meeting
3. hosting server has free capacity
4. role/password policy (ROLE_POLICIES)
5. user has no active membership in the meeting

Checks 2-5 and the admission itself (membership insert, server occupancy
+1, meeting user_count +1) run inside the hosting server's lock, so
capacity can't be oversubscribed and a (user, meeting) pair can't get two
active memberships.

Users are identified by (full_name, alias) whatever role they join with,
so a ban holds across roles. The user record is only created when a join
is admitted; rejected attempts leave no trace beyond the log line.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from src.conference.core.errors import MeetingNotFoundError, MembershipNotFoundError
from src.conference.core.monitoring import join_decisions_total
from src.conference.meetings.schemas import (
    JoinDecision,
    JoinRejection,
    Meeting,
    Membership,
    Role,
    UserInfo,
)
from src.conference.servers.schemas import Server

if TYPE_CHECKING:
    from src.conference.backend.client import BigBlueButtonClient
    from src.conference.meetings.repository import MeetingRepository
    from src.conference.servers.scheduler import CapacityScheduler

logger = structlog.get_logger(__name__)


# ── Role Policy ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RolePolicy:
    """How a role joins: which stored password it must match and how the
    backend identifies it in the join URL (fixed userID or guest flag)."""

    password_field: str | None
    join_user_id: str | None
    guest: bool = False


ROLE_POLICIES: dict[Role, RolePolicy] = {
    Role.MODERATOR: RolePolicy(password_field="moderator_password", join_user_id="1"),
    Role.ATTENDEE: RolePolicy(password_field="attendee_password", join_user_id="2"),
    Role.GUEST: RolePolicy(password_field=None, join_user_id=None, guest=True),
}


def password_matches(meeting: Meeting, role: Role, supplied: str | None) -> bool:
    policy = ROLE_POLICIES[role]
    if policy.password_field is None:
        return True
    return supplied is not None and supplied == getattr(meeting, policy.password_field)


# ── Manager ──────────────────────────────────────────────────────────────────


class MembershipManager:
    """Admits users into meetings and records bans and exits.

    Args:
        repository: MeetingRepository for meetings, users, and memberships.
        scheduler: CapacityScheduler owning server locks and occupancy.
        client_factory: Builds a backend client for a server (join URLs).
    """

    def __init__(
        self,
        repository: MeetingRepository,
        scheduler: CapacityScheduler,
        client_factory: Callable[[Server], BigBlueButtonClient],
    ) -> None:
        self._repository = repository
        self._scheduler = scheduler
        self._client_factory = client_factory
        self._user_lock = asyncio.Lock()

    def _reject(
        self, external_id: str, reason: JoinRejection, user_id: int | None = None
    ) -> JoinDecision:
        join_decisions_total.labels(outcome=reason.value).inc()
        logger.info(
            "membership.join_rejected",
            external_id=external_id,
            reason=reason.value,
            user_id=user_id,
        )
        return JoinDecision.reject(reason, user_id=user_id)

    async def join_meeting(
        self,
        external_id: str,
        user_info: UserInfo,
        role: Role,
        password: str | None = None,
    ) -> JoinDecision:
        """Run the ordered join checks and admit the user on success.

        Returns:
            JoinDecision; admitted decisions carry the join URL.

        Raises:
            ServerNotFoundError: Hosting server vanished from the registry.
        """
        meeting = await self._repository.get_meeting_by_external_id(external_id)
        if meeting is None:
            return self._reject(external_id, JoinRejection.MEETING_NOT_FOUND)
        if not meeting.is_running:
            return self._reject(external_id, JoinRejection.MEETING_ENDED)

        async with self._scheduler.server_lock(meeting.server_id):
            # An end may have landed while we waited for the lock
            current = await self._repository.get_meeting(meeting.id)
            if current is None or not current.is_running:
                return self._reject(external_id, JoinRejection.MEETING_ENDED)

            user = await self._repository.get_user(user_info.full_name, user_info.alias)
            user_id = user.id if user else None
            memberships = (
                await self._repository.find_memberships(meeting.id, user.id) if user else []
            )
            if any(m.rejected for m in memberships):
                return self._reject(external_id, JoinRejection.USER_BANNED, user_id)

            if not await self._scheduler.can_join_server(meeting.server_id):
                return self._reject(external_id, JoinRejection.SERVER_FULL, user_id)

            if not password_matches(current, role, password):
                return self._reject(external_id, JoinRejection.INVALID_CREDENTIALS, user_id)

            if any(m.is_active for m in memberships):
                return self._reject(external_id, JoinRejection.ALREADY_JOINED, user_id)

            if user is None:
                # Joins on other servers may race to create the same identity
                async with self._user_lock:
                    user = await self._repository.get_or_create_user(
                        user_info.full_name, user_info.alias
                    )
            membership = await self._repository.create_membership(meeting.id, user.id, role)
            server = await self._scheduler.admit(meeting.server_id)
            await self._repository.adjust_user_count(meeting.id, 1)

        policy = ROLE_POLICIES[role]
        join_url = self._client_factory(server).build_join_url(
            external_id,
            user_info.full_name,
            password=password if policy.password_field else None,
            user_id=policy.join_user_id,
            guest=policy.guest,
        )

        join_decisions_total.labels(outcome="admitted").inc()
        logger.info(
            "membership.join_admitted",
            external_id=external_id,
            membership_id=membership.id,
            user_id=user.id,
            role=role.value,
            server_id=server.id,
            occupancy=server.occupancy,
        )
        return JoinDecision.admit(join_url, membership.id, user.id)

    async def _meeting_of(self, membership_id: int) -> Meeting:
        membership = await self._repository.get_membership(membership_id)
        if membership is None:
            raise MembershipNotFoundError(membership_id)
        meeting = await self._repository.get_meeting(membership.meeting_id)
        if meeting is None:
            raise MembershipNotFoundError(membership_id)
        return meeting

    async def _release(self, meeting: Meeting) -> None:
        await self._scheduler.release(meeting.server_id, 1)
        await self._repository.adjust_user_count(meeting.id, -1)

    async def ban_user(self, membership_id: int) -> Membership:
        """Mark a membership rejected; the user can never rejoin that meeting.

        Idempotent. An active membership gives its seat back.
        """
        meeting = await self._meeting_of(membership_id)
        async with self._scheduler.server_lock(meeting.server_id):
            membership = await self._repository.get_membership(membership_id)
            if membership is None:
                raise MembershipNotFoundError(membership_id)
            if membership.rejected:
                return membership
            was_active = membership.is_active
            updated = await self._repository.update_membership(membership_id, rejected=True)
            if was_active:
                await self._release(meeting)

        logger.info(
            "membership.user_banned",
            membership_id=membership_id,
            meeting_id=meeting.id,
            user_id=updated.user_id,
        )
        return updated

    async def exit_user(self, membership_id: int) -> Membership:
        """Mark a membership exited and free its seat. Idempotent; history is kept."""
        meeting = await self._meeting_of(membership_id)
        async with self._scheduler.server_lock(meeting.server_id):
            membership = await self._repository.get_membership(membership_id)
            if membership is None:
                raise MembershipNotFoundError(membership_id)
            if membership.exited:
                return membership
            was_active = membership.is_active
            updated = await self._repository.update_membership(membership_id, exited=True)
            if was_active:
                await self._release(meeting)

        logger.info(
            "membership.user_exited",
            membership_id=membership_id,
            meeting_id=meeting.id,
            user_id=updated.user_id,
        )
        return updated

    async def list_memberships(self, external_id: str) -> list[Membership]:
        meeting = await self._repository.get_meeting_by_external_id(external_id)
        if meeting is None:
            raise MeetingNotFoundError(external_id)
        return await self._repository.list_memberships(meeting.id)
