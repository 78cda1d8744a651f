"""REST API endpoints for server registry administration.

CRUD passthroughs to ServerRegistry plus the most-capable-server query
and an on-demand liveness check. Shared secrets are accepted on write but
never returned.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from src.conference.api.deps import get_health_monitor, get_server_registry
from src.conference.servers.health import ServerHealthMonitor
from src.conference.servers.registry import ServerRegistry
from src.conference.servers.schemas import Server, ServerCreate, ServerUpdate

router = APIRouter(prefix="/servers", tags=["servers"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class ServerResponse(BaseModel):
    """Server view, serializes datetimes to ISO strings."""

    id: int
    url: str
    limit: int
    occupancy: int
    free_capacity: int
    is_active: bool
    created_at: str | None = None
    updated_at: str | None = None


class HealthCheckResponse(BaseModel):
    servers: dict[int, bool]


def _server_to_response(server: Server) -> ServerResponse:
    return ServerResponse(
        id=server.id,
        url=server.url,
        limit=server.limit,
        occupancy=server.occupancy,
        free_capacity=server.free_capacity,
        is_active=server.is_active,
        created_at=server.created_at.isoformat() if server.created_at else None,
        updated_at=server.updated_at.isoformat() if server.updated_at else None,
    )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("", response_model=ServerResponse, status_code=status.HTTP_201_CREATED)
async def create_server(
    body: ServerCreate,
    registry: ServerRegistry = Depends(get_server_registry),
) -> ServerResponse:
    """Register a backend server."""
    return _server_to_response(await registry.create_server(body))


@router.get("", response_model=list[ServerResponse])
async def list_servers(
    registry: ServerRegistry = Depends(get_server_registry),
) -> list[ServerResponse]:
    return [_server_to_response(s) for s in await registry.list_servers()]


@router.get("/most-capable", response_model=ServerResponse)
async def most_capable_server(
    registry: ServerRegistry = Depends(get_server_registry),
) -> ServerResponse:
    """Server a new meeting would be placed on right now."""
    return _server_to_response(await registry.most_capable_server())


@router.post("/health-check", response_model=HealthCheckResponse)
async def check_servers(
    monitor: ServerHealthMonitor = Depends(get_health_monitor),
) -> HealthCheckResponse:
    """Probe every server now and update liveness flags."""
    return HealthCheckResponse(servers=await monitor.check_servers())


@router.get("/{server_id}", response_model=ServerResponse)
async def get_server(
    server_id: int,
    registry: ServerRegistry = Depends(get_server_registry),
) -> ServerResponse:
    return _server_to_response(await registry.get_server(server_id))


@router.patch("/{server_id}", response_model=ServerResponse)
async def update_server(
    server_id: int,
    body: ServerUpdate,
    registry: ServerRegistry = Depends(get_server_registry),
) -> ServerResponse:
    """Change url, secret, or capacity limit."""
    return _server_to_response(await registry.update_server(server_id, body))


@router.delete("/{server_id}")
async def delete_server(
    server_id: int,
    registry: ServerRegistry = Depends(get_server_registry),
) -> dict:
    """Remove a server; refused (409) while it hosts running meetings."""
    return {"id": await registry.delete_server(server_id)}
