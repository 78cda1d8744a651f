"""ServerRegistry -- operator-facing admin operations over the server pool.

Wraps ServerRepository with not-found handling, the removal policy, and
liveness updates. Removal is refused while the server hosts running
meetings; operators end those meetings (or wait for them) first.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from src.conference.core.errors import ServerBusyError, ServerNotFoundError
from src.conference.servers.schemas import Server, ServerCreate, ServerUpdate

if TYPE_CHECKING:
    from src.conference.meetings.repository import MeetingRepository
    from src.conference.servers.repository import ServerRepository
    from src.conference.servers.scheduler import CapacityScheduler

logger = structlog.get_logger(__name__)


class ServerRegistry:
    """CRUD passthroughs plus removal policy and liveness for servers.

    Args:
        repository: ServerRepository for persistence.
        scheduler: CapacityScheduler owning the per-server locks.
        meeting_repository: MeetingRepository, used to count hosted meetings.
    """

    def __init__(
        self,
        repository: ServerRepository,
        scheduler: CapacityScheduler,
        meeting_repository: MeetingRepository,
    ) -> None:
        self._repository = repository
        self._scheduler = scheduler
        self._meetings = meeting_repository

    async def create_server(self, data: ServerCreate) -> Server:
        server = await self._repository.create_server(data)
        logger.info("registry.server_created", server_id=server.id, limit=server.limit)
        return server

    async def get_server(self, server_id: int) -> Server:
        server = await self._repository.get_server(server_id)
        if server is None:
            raise ServerNotFoundError(server_id)
        return server

    async def list_servers(self) -> list[Server]:
        return await self._repository.list_servers()

    async def update_server(self, server_id: int, data: ServerUpdate) -> Server:
        """Change url, secret, or limit.

        Lowering the limit below current occupancy is allowed; existing
        members stay and new joins are rejected until occupancy drops.
        """
        async with self._scheduler.server_lock(server_id):
            server = await self._repository.update_server(server_id, data)
        if server is None:
            raise ServerNotFoundError(server_id)
        logger.info(
            "registry.server_updated",
            server_id=server_id,
            fields=sorted(data.model_dump(exclude_none=True).keys()),
        )
        return server

    async def delete_server(self, server_id: int) -> int:
        """Remove a server that hosts no running meetings.

        Raises:
            ServerNotFoundError: Unknown server id.
            ServerBusyError: Running meetings are still hosted.
        """
        async with self._scheduler.server_lock(server_id):
            running = await self._meetings.count_running_meetings(server_id)
            if running:
                raise ServerBusyError(server_id, running)
            deleted = await self._repository.delete_server(server_id)
        if not deleted:
            raise ServerNotFoundError(server_id)
        logger.info("registry.server_deleted", server_id=server_id)
        return server_id

    async def most_capable_server(self) -> Server:
        return await self._scheduler.select_capable_server()

    async def set_liveness(self, server_id: int, is_active: bool) -> Server:
        server = await self._repository.set_liveness(server_id, is_active)
        if server is None:
            raise ServerNotFoundError(server_id)
        return server
