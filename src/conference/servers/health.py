"""ServerHealthMonitor -- periodic liveness polling of every registered server.

Each cycle probes every server and records the result in the registry's
is_active flag. Inactive servers are skipped by the scheduler when picking
a host for a new meeting; meetings already running on them are untouched.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import structlog

from src.conference.core.errors import ServerNotFoundError
from src.conference.servers.schemas import Server

if TYPE_CHECKING:
    from src.conference.servers.registry import ServerRegistry

logger = structlog.get_logger(__name__)

POLL_INTERVAL_SECONDS = 60


class ServerHealthMonitor:
    """Polls server liveness and updates the registry.

    Args:
        registry: ServerRegistry to read servers from and write liveness to.
        probe: Async callable returning True when a server answers correctly.
            Must not raise (MeetingLifecycleManager.is_backend_healthy).
        interval_seconds: Delay between poll cycles.
    """

    def __init__(
        self,
        registry: ServerRegistry,
        probe: Callable[[Server], Awaitable[bool]],
        interval_seconds: int = POLL_INTERVAL_SECONDS,
    ) -> None:
        self._registry = registry
        self._probe = probe
        self._interval = interval_seconds
        self._running = False

    async def check_servers(self) -> dict[int, bool]:
        """Probe all servers concurrently and persist changed liveness flags.

        Servers deleted while the cycle runs are left out of the report.
        """
        servers = await self._registry.list_servers()
        results = await asyncio.gather(*(self._probe(s) for s in servers))

        report: dict[int, bool] = {}
        for server, healthy in zip(servers, results):
            if server.is_active != healthy:
                try:
                    await self._registry.set_liveness(server.id, healthy)
                except ServerNotFoundError:
                    logger.info("health.server_vanished", server_id=server.id)
                    continue
                logger.warning(
                    "health.liveness_changed",
                    server_id=server.id,
                    is_active=healthy,
                )
            report[server.id] = healthy
        return report

    async def run_poll_loop(self) -> None:
        """Call check_servers every interval; log and continue on failures."""
        self._running = True
        logger.info("health_monitor_started", poll_interval=self._interval)

        while self._running:
            try:
                report = await self.check_servers()
                logger.debug(
                    "health_poll_complete",
                    servers=len(report),
                    down=sum(1 for ok in report.values() if not ok),
                )
            except Exception:
                logger.exception("health_poll_error")

            await asyncio.sleep(self._interval)

    def stop(self) -> None:
        """Signal the poll loop to stop."""
        self._running = False
