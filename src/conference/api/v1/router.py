"""V1 API router -- aggregates all v1 endpoint routers and maps typed errors."""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from src.conference.api.v1 import health, meetings, servers
from src.conference.core.errors import ConferenceError, ErrorKind

router = APIRouter()

router.include_router(health.router)

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(servers.router)
api_router.include_router(meetings.router)
api_router.include_router(meetings.memberships_router)

router.include_router(api_router)


STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.CAPACITY_EXCEEDED: status.HTTP_409_CONFLICT,
    ErrorKind.POLICY_VIOLATION: status.HTTP_403_FORBIDDEN,
    ErrorKind.BACKEND_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.BACKEND_REJECTED: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.INVALID_REQUEST: 422,
}


async def conference_error_handler(request: Request, exc: ConferenceError) -> JSONResponse:
    """Translate a ConferenceError into a JSON response by its kind."""
    return JSONResponse(
        status_code=STATUS_BY_KIND[exc.kind],
        content={"detail": exc.message, "kind": exc.kind.value},
    )
