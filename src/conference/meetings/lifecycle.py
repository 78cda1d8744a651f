"""MeetingLifecycleManager -- Unprovisioned -> Running -> Ended state machine.

Create and end for one external id are serialized by a per-meeting lock,
so a second create for a running id fails instead of double-provisioning,
and a concurrent end cannot interleave with it.

Local state only changes after the backend call has succeeded. A backend
failure on create leaves no record; a backend failure on end leaves the
meeting running so the operator can retry.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog

from src.conference.backend.schemas import MeetingInfo
from src.conference.core.errors import (
    BackendRejectedError,
    BackendUnavailableError,
    MeetingConflictError,
    MeetingEndedError,
    MeetingNotFoundError,
    ServerNotFoundError,
)
from src.conference.core.locks import KeyedLocks
from src.conference.core.monitoring import meetings_created_total, meetings_ended_total
from src.conference.meetings.schemas import Meeting, MeetingCreate
from src.conference.servers.schemas import Server

if TYPE_CHECKING:
    from src.conference.backend.client import BigBlueButtonClient
    from src.conference.meetings.repository import MeetingRepository
    from src.conference.servers.repository import ServerRepository
    from src.conference.servers.scheduler import CapacityScheduler

logger = structlog.get_logger(__name__)

# messageKey the backend uses for unknown meetings
BACKEND_NOT_FOUND = "notFound"


class MeetingLifecycleManager:
    """Creates, ends, and inspects meetings on their hosting server.

    Args:
        repository: MeetingRepository for meetings and memberships.
        server_repository: ServerRepository to resolve hosting servers.
        scheduler: CapacityScheduler for server selection and release.
        client_factory: Builds a backend client for a server.
    """

    def __init__(
        self,
        repository: MeetingRepository,
        server_repository: ServerRepository,
        scheduler: CapacityScheduler,
        client_factory: Callable[[Server], BigBlueButtonClient],
    ) -> None:
        self._repository = repository
        self._servers = server_repository
        self._scheduler = scheduler
        self._client_factory = client_factory
        self._locks = KeyedLocks()

    @asynccontextmanager
    async def meeting_lock(self, external_id: str) -> AsyncGenerator[None, None]:
        async with self._locks.hold(external_id):
            yield

    # ── Lookups ──────────────────────────────────────────────────────────

    async def get_meeting(self, external_id: str) -> Meeting:
        meeting = await self._repository.get_meeting_by_external_id(external_id)
        if meeting is None:
            raise MeetingNotFoundError(external_id)
        return meeting

    async def _hosting_server(self, meeting: Meeting) -> Server:
        server = await self._servers.get_server(meeting.server_id)
        if server is None:
            raise ServerNotFoundError(meeting.server_id)
        return server

    # ── Transitions ──────────────────────────────────────────────────────

    async def create_meeting(self, data: MeetingCreate, server: Server | None = None) -> Meeting:
        """Provision a meeting on a server and persist it as running.

        Args:
            data: Name, external id, and record flag.
            server: Pre-selected host; the scheduler picks one when omitted.

        Raises:
            MeetingConflictError: A running meeting already uses external_id.
            NoCapableServerError: No server has free capacity.
            BackendUnavailableError: Host unreachable, unhealthy, or timed out.
            BackendRejectedError: Backend refused the create call.
        """
        async with self.meeting_lock(data.external_id):
            existing = await self._repository.get_meeting_by_external_id(data.external_id)
            if existing is not None and existing.is_running:
                raise MeetingConflictError(data.external_id)

            if server is None:
                server = await self._scheduler.select_capable_server()

            if not await self.is_backend_healthy(server):
                raise BackendUnavailableError(
                    f"Server {server.id} did not answer the health probe"
                )

            client = self._client_factory(server)
            created = await client.create_meeting(data.name, data.external_id, data.record)

            meeting = await self._repository.create_meeting(data, server.id, created)

        meetings_created_total.labels(server_id=str(server.id)).inc()
        logger.info(
            "lifecycle.meeting_created",
            meeting_id=meeting.id,
            external_id=meeting.external_id,
            server_id=server.id,
            record=meeting.record,
        )
        return meeting

    async def end_meeting(self, external_id: str, password: str) -> Meeting:
        """End a running meeting and release its capacity.

        Raises:
            MeetingNotFoundError: Unknown external id.
            MeetingEndedError: Meeting already ended (no backend call is made).
            BackendUnavailableError / BackendRejectedError: Backend end failed;
                the meeting stays running.
        """
        async with self.meeting_lock(external_id):
            meeting = await self.get_meeting(external_id)
            if not meeting.is_running:
                raise MeetingEndedError(external_id)

            server = await self._hosting_server(meeting)
            await self._client_factory(server).end_meeting(external_id, password)

            async with self._scheduler.server_lock(server.id):
                released = await self._repository.exit_active_memberships(meeting.id)
                ended = await self._repository.mark_meeting_ended(meeting.id)
                await self._scheduler.release(server.id, released)

        meetings_ended_total.inc()
        logger.info(
            "lifecycle.meeting_ended",
            meeting_id=ended.id,
            external_id=external_id,
            server_id=server.id,
            released=released,
        )
        return ended

    # ── Read-only Passthroughs ───────────────────────────────────────────

    async def get_meeting_info(self, external_id: str) -> MeetingInfo:
        """Backend view of the meeting; never mutates local state.

        Raises:
            MeetingNotFoundError: Unknown locally or reported unknown by the backend.
        """
        meeting = await self.get_meeting(external_id)
        server = await self._hosting_server(meeting)
        try:
            return await self._client_factory(server).get_meeting_info(external_id)
        except BackendRejectedError as exc:
            if exc.message_key == BACKEND_NOT_FOUND:
                raise MeetingNotFoundError(external_id) from exc
            raise

    async def is_backend_healthy(self, server: Server) -> bool:
        """Probe a server; any failure is reported as unhealthy, never raised."""
        try:
            await self._client_factory(server).probe()
        except Exception as exc:
            logger.warning(
                "lifecycle.backend_unhealthy",
                server_id=server.id,
                error=str(exc),
            )
            return False
        return True
