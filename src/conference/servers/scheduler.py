"""CapacityScheduler -- least-loaded server selection and per-server admission scope.

Free capacity of a server is limit - occupancy, where occupancy is the
explicit counter on the server row. Selection never reserves capacity;
reservation happens when a membership is admitted inside server_lock().

server_lock(server_id) is the single concurrency-critical section of the
system: "read occupancy -> admit -> increment occupancy" and the
active-membership uniqueness check all run while holding it. Locks are
process-local asyncio locks, so one scheduler process owns a registry;
a lock is dropped once no task holds or awaits it.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog

from src.conference.core.errors import NoCapableServerError, ServerNotFoundError
from src.conference.core.locks import KeyedLocks
from src.conference.core.monitoring import server_occupancy
from src.conference.servers.schemas import Server

if TYPE_CHECKING:
    from src.conference.servers.repository import ServerRepository

logger = structlog.get_logger(__name__)


def pick_most_capable(servers: Iterable[Server]) -> Server | None:
    """Return the active server with the largest free capacity.

    Ties resolve to the lowest id. Servers with free <= 0 or marked
    inactive are never returned.
    """
    candidates = [s for s in servers if s.is_active and s.free_capacity > 0]
    if not candidates:
        return None
    return min(candidates, key=lambda s: (-s.free_capacity, s.id))


class CapacityScheduler:
    """Selects servers for new meetings and guards per-server admission.

    Args:
        repository: ServerRepository (or compatible) holding the registry.
    """

    def __init__(self, repository: ServerRepository) -> None:
        self._repository = repository
        self._locks = KeyedLocks()

    # ── Mutual Exclusion ─────────────────────────────────────────────────

    @asynccontextmanager
    async def server_lock(self, server_id: int) -> AsyncGenerator[None, None]:
        """Hold the admission lock for one server."""
        async with self._locks.hold(server_id):
            yield

    # ── Selection ────────────────────────────────────────────────────────

    async def select_capable_server(self) -> Server:
        """Pick the server with maximal free capacity.

        Raises:
            NoCapableServerError: Registry empty or every server full/inactive.
        """
        servers = await self._repository.list_servers()
        server = pick_most_capable(servers)
        if server is None:
            logger.warning("scheduler.no_capable_server", server_count=len(servers))
            raise NoCapableServerError()
        logger.info(
            "scheduler.server_selected",
            server_id=server.id,
            free_capacity=server.free_capacity,
            limit=server.limit,
        )
        return server

    async def can_join_server(self, server_id: int) -> bool:
        """Point-in-time capacity check; not a reservation.

        Raises:
            ServerNotFoundError: Unknown server id.
        """
        server = await self._repository.get_server(server_id)
        if server is None:
            raise ServerNotFoundError(server_id)
        return server.limit > server.occupancy

    # ── Occupancy Counter (call while holding server_lock) ───────────────

    async def admit(self, server_id: int) -> Server:
        server = await self._repository.adjust_occupancy(server_id, 1)
        server_occupancy.labels(server_id=str(server_id)).set(server.occupancy)
        return server

    async def release(self, server_id: int, count: int = 1) -> Server | None:
        if count <= 0:
            return await self._repository.get_server(server_id)
        server = await self._repository.adjust_occupancy(server_id, -count)
        server_occupancy.labels(server_id=str(server_id)).set(server.occupancy)
        logger.debug(
            "scheduler.capacity_released",
            server_id=server_id,
            released=count,
            occupancy=server.occupancy,
        )
        return server
