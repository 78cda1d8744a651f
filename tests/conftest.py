"""Shared fixtures for scheduler tests.

Provides:
- InMemoryServerRepository / InMemoryMeetingRepository test doubles that
  yield to the event loop on every call, so concurrent tests interleave
- FakeBackend: records backend calls and issues deterministic passwords;
  join URLs are signed by the real BigBlueButtonClient
- Wired CapacityScheduler, ServerRegistry, MeetingLifecycleManager, and
  MembershipManager over the doubles
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest_asyncio

from src.conference.backend.client import BigBlueButtonClient
from src.conference.backend.schemas import CreatedMeeting, MeetingInfo
from src.conference.core.errors import BackendRejectedError, BackendUnavailableError
from src.conference.meetings.lifecycle import MeetingLifecycleManager
from src.conference.meetings.membership import MembershipManager
from src.conference.meetings.schemas import (
    Meeting,
    MeetingCreate,
    MeetingStatus,
    Membership,
    Role,
    User,
)
from src.conference.servers.registry import ServerRegistry
from src.conference.servers.scheduler import CapacityScheduler
from src.conference.servers.schemas import Server, ServerCreate, ServerUpdate


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


class InMemoryServerRepository:
    """In-memory ServerRepository for testing without database."""

    def __init__(self) -> None:
        self._servers: dict[int, Server] = {}
        self._next_id = 1

    async def create_server(self, data: ServerCreate) -> Server:
        await asyncio.sleep(0)
        now = datetime.now(timezone.utc)
        server = Server(
            id=self._next_id,
            url=data.url,
            secret=data.secret,
            limit=data.limit,
            created_at=now,
            updated_at=now,
        )
        self._servers[server.id] = server
        self._next_id += 1
        return server

    async def get_server(self, server_id: int) -> Server | None:
        await asyncio.sleep(0)
        return self._servers.get(server_id)

    async def list_servers(self) -> list[Server]:
        await asyncio.sleep(0)
        return [self._servers[k] for k in sorted(self._servers)]

    async def update_server(self, server_id: int, data: ServerUpdate) -> Server | None:
        await asyncio.sleep(0)
        server = self._servers.get(server_id)
        if server is None:
            return None
        updated = server.model_copy(
            update={**data.model_dump(exclude_none=True), "updated_at": datetime.now(timezone.utc)}
        )
        self._servers[server_id] = updated
        return updated

    async def delete_server(self, server_id: int) -> bool:
        await asyncio.sleep(0)
        return self._servers.pop(server_id, None) is not None

    async def adjust_occupancy(self, server_id: int, delta: int) -> Server:
        await asyncio.sleep(0)
        server = self._servers.get(server_id)
        if server is None:
            raise ValueError(f"Server not found: id={server_id}")
        updated = server.model_copy(update={"occupancy": max(server.occupancy + delta, 0)})
        self._servers[server_id] = updated
        return updated

    async def set_liveness(self, server_id: int, is_active: bool) -> Server | None:
        await asyncio.sleep(0)
        server = self._servers.get(server_id)
        if server is None:
            return None
        updated = server.model_copy(update={"is_active": is_active})
        self._servers[server_id] = updated
        return updated


class InMemoryMeetingRepository:
    """In-memory MeetingRepository for testing without database."""

    def __init__(self) -> None:
        self.meetings: dict[int, Meeting] = {}
        self.users: dict[int, User] = {}
        self.memberships: dict[int, Membership] = {}
        self._ids = {"meeting": 0, "user": 0, "membership": 0}

    def _next(self, kind: str) -> int:
        self._ids[kind] += 1
        return self._ids[kind]

    async def create_meeting(
        self, data: MeetingCreate, server_id: int, created: CreatedMeeting
    ) -> Meeting:
        await asyncio.sleep(0)
        meeting = Meeting(
            id=self._next("meeting"),
            name=data.name,
            external_id=data.external_id,
            moderator_password=created.moderator_password,
            attendee_password=created.attendee_password,
            record=data.record,
            server_id=server_id,
            created_at=datetime.now(timezone.utc),
        )
        self.meetings[meeting.id] = meeting
        return meeting

    async def get_meeting(self, meeting_id: int) -> Meeting | None:
        await asyncio.sleep(0)
        return self.meetings.get(meeting_id)

    async def get_meeting_by_external_id(self, external_id: str) -> Meeting | None:
        await asyncio.sleep(0)
        matches = [m for m in self.meetings.values() if m.external_id == external_id]
        return max(matches, key=lambda m: m.id) if matches else None

    async def mark_meeting_ended(self, meeting_id: int) -> Meeting:
        await asyncio.sleep(0)
        meeting = self.meetings.get(meeting_id)
        if meeting is None:
            raise ValueError(f"Meeting not found: id={meeting_id}")
        ended = meeting.model_copy(
            update={
                "status": MeetingStatus.ENDED,
                "ended_at": datetime.now(timezone.utc),
                "user_count": 0,
            }
        )
        self.meetings[meeting_id] = ended
        return ended

    async def adjust_user_count(self, meeting_id: int, delta: int) -> None:
        await asyncio.sleep(0)
        meeting = self.meetings[meeting_id]
        self.meetings[meeting_id] = meeting.model_copy(
            update={"user_count": max(meeting.user_count + delta, 0)}
        )

    async def count_running_meetings(self, server_id: int) -> int:
        await asyncio.sleep(0)
        return sum(1 for m in self.meetings.values() if m.server_id == server_id and m.is_running)

    async def get_user(self, full_name: str, alias: str | None) -> User | None:
        await asyncio.sleep(0)
        for user in self.users.values():
            if (user.full_name, user.alias) == (full_name, alias):
                return user
        return None

    async def get_or_create_user(self, full_name: str, alias: str | None) -> User:
        existing = await self.get_user(full_name, alias)
        if existing is not None:
            return existing
        user = User(id=self._next("user"), full_name=full_name, alias=alias)
        self.users[user.id] = user
        return user

    async def create_membership(self, meeting_id: int, user_id: int, role: Role) -> Membership:
        await asyncio.sleep(0)
        membership = Membership(
            id=self._next("membership"),
            meeting_id=meeting_id,
            user_id=user_id,
            role=role,
            joined_at=datetime.now(timezone.utc),
        )
        self.memberships[membership.id] = membership
        return membership

    async def get_membership(self, membership_id: int) -> Membership | None:
        await asyncio.sleep(0)
        return self.memberships.get(membership_id)

    async def find_memberships(self, meeting_id: int, user_id: int) -> list[Membership]:
        await asyncio.sleep(0)
        return [
            m
            for m in self.memberships.values()
            if m.meeting_id == meeting_id and m.user_id == user_id
        ]

    async def list_memberships(self, meeting_id: int) -> list[Membership]:
        await asyncio.sleep(0)
        return [m for m in self.memberships.values() if m.meeting_id == meeting_id]

    async def update_membership(
        self,
        membership_id: int,
        rejected: bool | None = None,
        exited: bool | None = None,
    ) -> Membership:
        await asyncio.sleep(0)
        membership = self.memberships.get(membership_id)
        if membership is None:
            raise ValueError(f"Membership not found: id={membership_id}")
        changes = {}
        if rejected is not None:
            changes["rejected"] = rejected
        if exited is not None:
            changes["exited"] = exited
        updated = membership.model_copy(update=changes)
        self.memberships[membership_id] = updated
        return updated

    async def exit_active_memberships(self, meeting_id: int) -> int:
        await asyncio.sleep(0)
        changed = 0
        for membership in list(self.memberships.values()):
            if membership.meeting_id == meeting_id and membership.is_active:
                self.memberships[membership.id] = membership.model_copy(update={"exited": True})
                changed += 1
        return changed


class FakeBackend:
    """Stands in for BackendClientFactory; every server shares this state.

    Passwords are derived from the external id: mp-<id> and ap-<id>.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, int, str | None]] = []
        self.unhealthy: set[int] = set()
        self.create_error: Exception | None = None
        self.info_error: Exception | None = None
        self.running: set[str] = set()

    def __call__(self, server: Server) -> FakeBackendClient:
        return FakeBackendClient(self, server)

    def count(self, call: str) -> int:
        return sum(1 for c in self.calls if c[0] == call)


class FakeBackendClient:
    def __init__(self, backend: FakeBackend, server: Server) -> None:
        self._backend = backend
        self._server = server
        self._signer = BigBlueButtonClient(base_url=server.url, secret=server.secret)

    async def create_meeting(self, name: str, external_id: str, record: bool) -> CreatedMeeting:
        await asyncio.sleep(0)
        self._backend.calls.append(("create", self._server.id, external_id))
        if self._backend.create_error is not None:
            raise self._backend.create_error
        self._backend.running.add(external_id)
        return CreatedMeeting(
            external_id=external_id,
            moderator_password=f"mp-{external_id}",
            attendee_password=f"ap-{external_id}",
        )

    async def end_meeting(self, external_id: str, password: str) -> None:
        await asyncio.sleep(0)
        self._backend.calls.append(("end", self._server.id, external_id))
        if password != f"mp-{external_id}":
            raise BackendRejectedError("end", "invalidPassword", "You must supply the moderator password")
        self._backend.running.discard(external_id)

    async def get_meeting_info(self, external_id: str) -> MeetingInfo:
        self._backend.calls.append(("getMeetingInfo", self._server.id, external_id))
        if self._backend.info_error is not None:
            raise self._backend.info_error
        if external_id not in self._backend.running:
            raise BackendRejectedError("getMeetingInfo", "notFound", "No meeting with that id")
        return MeetingInfo(external_id=external_id, running=True)

    async def probe(self) -> None:
        self._backend.calls.append(("getMeetings", self._server.id, None))
        if self._server.id in self._backend.unhealthy:
            raise BackendUnavailableError(f"Backend getMeetings failed on {self._server.id}")

    def build_join_url(self, external_id, full_name, password=None, user_id=None, guest=False):
        return self._signer.build_join_url(
            external_id, full_name, password=password, user_id=user_id, guest=guest
        )


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def server_repo() -> InMemoryServerRepository:
    return InMemoryServerRepository()


@pytest_asyncio.fixture
async def meeting_repo() -> InMemoryMeetingRepository:
    return InMemoryMeetingRepository()


@pytest_asyncio.fixture
async def backend() -> FakeBackend:
    return FakeBackend()


@pytest_asyncio.fixture
async def scheduler(server_repo) -> CapacityScheduler:
    return CapacityScheduler(server_repo)


@pytest_asyncio.fixture
async def registry(server_repo, scheduler, meeting_repo) -> ServerRegistry:
    return ServerRegistry(server_repo, scheduler, meeting_repo)


@pytest_asyncio.fixture
async def lifecycle(meeting_repo, server_repo, scheduler, backend) -> MeetingLifecycleManager:
    return MeetingLifecycleManager(meeting_repo, server_repo, scheduler, backend)


@pytest_asyncio.fixture
async def memberships(meeting_repo, scheduler, backend) -> MembershipManager:
    return MembershipManager(meeting_repo, scheduler, backend)


@pytest_asyncio.fixture
async def add_server(server_repo):
    """Register a server: await add_server(limit, url=...)."""

    async def _add(limit: int, url: str | None = None, secret: str = "s3cret") -> Server:
        n = len(await server_repo.list_servers()) + 1
        return await server_repo.create_server(
            ServerCreate(url=url or f"https://bbb{n}.example.com/bigbluebutton/", secret=secret, limit=limit)
        )

    return _add
