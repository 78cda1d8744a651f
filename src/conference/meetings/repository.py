"""Meeting repository -- async CRUD for meetings, users, and memberships.

Provides MeetingRepository with the session_factory callable pattern.
Handles conversion between SQLAlchemy models and Pydantic schemas. State
transitions (running -> ended, membership ban/exit) are plain column
updates here; the rules that govern them live in the lifecycle and
membership managers.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.conference.backend.schemas import CreatedMeeting
from src.conference.meetings.models import MeetingModel, MembershipModel, UserModel
from src.conference.meetings.schemas import (
    Meeting,
    MeetingCreate,
    MeetingStatus,
    Membership,
    Role,
    User,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_meeting(model: MeetingModel) -> Meeting:
    """Convert MeetingModel to Meeting schema."""
    return Meeting(
        id=model.id,
        name=model.name,
        external_id=model.external_id,
        moderator_password=model.moderator_password,
        attendee_password=model.attendee_password,
        record=model.record,
        server_id=model.server_id,
        status=MeetingStatus(model.status),
        user_count=model.user_count,
        created_at=model.created_at,
        ended_at=model.ended_at,
    )


def _model_to_user(model: UserModel) -> User:
    return User(id=model.id, full_name=model.full_name, alias=model.alias)


def _model_to_membership(model: MembershipModel) -> Membership:
    return Membership(
        id=model.id,
        meeting_id=model.meeting_id,
        user_id=model.user_id,
        role=Role(model.role),
        joined_at=model.joined_at,
        rejected=model.rejected,
        exited=model.exited,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class MeetingRepository:
    """Async CRUD operations for meetings, users, and memberships.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Meetings ─────────────────────────────────────────────────────────

    async def create_meeting(
        self, data: MeetingCreate, server_id: int, created: CreatedMeeting
    ) -> Meeting:
        """Persist a running meeting with the credentials the backend issued.

        Args:
            data: Name, external id, and record flag requested by the client.
            server_id: Hosting server chosen by the scheduler.
            created: Backend response of the create call.

        Returns:
            Meeting in the running state.
        """
        async for session in self._session_factory():
            model = MeetingModel(
                name=data.name,
                external_id=data.external_id,
                moderator_password=created.moderator_password,
                attendee_password=created.attendee_password,
                record=data.record,
                server_id=server_id,
                status=MeetingStatus.RUNNING.value,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_meeting(model)

    async def get_meeting(self, meeting_id: int) -> Meeting | None:
        async for session in self._session_factory():
            model = await session.get(MeetingModel, meeting_id)
            if model is None:
                return None
            return _model_to_meeting(model)

    async def get_meeting_by_external_id(self, external_id: str) -> Meeting | None:
        """Most recent meeting for an external id (the running one, if any)."""
        async for session in self._session_factory():
            stmt = (
                select(MeetingModel)
                .where(MeetingModel.external_id == external_id)
                .order_by(MeetingModel.id.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_meeting(model)

    async def mark_meeting_ended(self, meeting_id: int) -> Meeting:
        """Set status to ended and stamp ended_at.

        Raises:
            ValueError: If meeting not found.
        """
        async for session in self._session_factory():
            model = await session.get(MeetingModel, meeting_id)
            if model is None:
                raise ValueError(f"Meeting not found: id={meeting_id}")
            model.status = MeetingStatus.ENDED.value
            model.ended_at = datetime.now(timezone.utc)
            model.user_count = 0
            await session.commit()
            await session.refresh(model)
            return _model_to_meeting(model)

    async def adjust_user_count(self, meeting_id: int, delta: int) -> None:
        async for session in self._session_factory():
            await session.execute(
                update(MeetingModel)
                .where(MeetingModel.id == meeting_id)
                .values(user_count=func.greatest(MeetingModel.user_count + delta, 0))
            )
            await session.commit()

    async def count_running_meetings(self, server_id: int) -> int:
        async for session in self._session_factory():
            stmt = select(func.count(MeetingModel.id)).where(
                MeetingModel.server_id == server_id,
                MeetingModel.status == MeetingStatus.RUNNING.value,
            )
            result = await session.execute(stmt)
            return int(result.scalar_one())

    # ── Users ────────────────────────────────────────────────────────────

    @staticmethod
    def _identity(full_name: str, alias: str | None):
        alias_clause = UserModel.alias.is_(None) if alias is None else UserModel.alias == alias
        return select(UserModel).where(UserModel.full_name == full_name, alias_clause)

    async def get_user(self, full_name: str, alias: str | None) -> User | None:
        """Look up a user by (full_name, alias) without creating it."""
        async for session in self._session_factory():
            result = await session.execute(self._identity(full_name, alias))
            model = result.scalars().first()
            if model is None:
                return None
            return _model_to_user(model)

    async def get_or_create_user(self, full_name: str, alias: str | None) -> User:
        """Look up a user by (full_name, alias), creating it if absent."""
        async for session in self._session_factory():
            result = await session.execute(self._identity(full_name, alias))
            model = result.scalars().first()
            if model is None:
                model = UserModel(full_name=full_name, alias=alias)
                session.add(model)
                await session.commit()
                await session.refresh(model)
                logger.info("user.created", user_id=model.id)
            return _model_to_user(model)

    # ── Memberships ──────────────────────────────────────────────────────

    async def create_membership(self, meeting_id: int, user_id: int, role: Role) -> Membership:
        async for session in self._session_factory():
            model = MembershipModel(
                meeting_id=meeting_id,
                user_id=user_id,
                role=role.value,
                joined_at=datetime.now(timezone.utc),
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_membership(model)

    async def get_membership(self, membership_id: int) -> Membership | None:
        async for session in self._session_factory():
            model = await session.get(MembershipModel, membership_id)
            if model is None:
                return None
            return _model_to_membership(model)

    async def find_memberships(self, meeting_id: int, user_id: int) -> list[Membership]:
        """All memberships (any state) of one user in one meeting."""
        async for session in self._session_factory():
            stmt = (
                select(MembershipModel)
                .where(
                    MembershipModel.meeting_id == meeting_id,
                    MembershipModel.user_id == user_id,
                )
                .order_by(MembershipModel.id)
            )
            result = await session.execute(stmt)
            return [_model_to_membership(m) for m in result.scalars().all()]

    async def list_memberships(self, meeting_id: int) -> list[Membership]:
        async for session in self._session_factory():
            stmt = (
                select(MembershipModel)
                .where(MembershipModel.meeting_id == meeting_id)
                .order_by(MembershipModel.id)
            )
            result = await session.execute(stmt)
            return [_model_to_membership(m) for m in result.scalars().all()]

    async def update_membership(
        self,
        membership_id: int,
        rejected: bool | None = None,
        exited: bool | None = None,
    ) -> Membership:
        """Set the rejected and/or exited flags.

        Raises:
            ValueError: If membership not found.
        """
        async for session in self._session_factory():
            model = await session.get(MembershipModel, membership_id)
            if model is None:
                raise ValueError(f"Membership not found: id={membership_id}")
            if rejected is not None:
                model.rejected = rejected
            if exited is not None:
                model.exited = exited
            await session.commit()
            await session.refresh(model)
            return _model_to_membership(model)

    async def exit_active_memberships(self, meeting_id: int) -> int:
        """Mark every active membership of a meeting exited. Returns how many changed."""
        async for session in self._session_factory():
            stmt = (
                update(MembershipModel)
                .where(
                    MembershipModel.meeting_id == meeting_id,
                    MembershipModel.rejected.is_(False),
                    MembershipModel.exited.is_(False),
                )
                .values(exited=True)
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0
