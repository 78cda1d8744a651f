"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready). Readiness
requires the database to answer and reports how many registered
conferencing servers are currently marked active.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.conference.config import get_settings
from src.conference.core.database import get_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No external dependencies are checked."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check database connectivity and the server pool. Returns check results dict."""
    checks: dict = {"database": "ok", "servers": "ok"}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    registry = getattr(request.app.state, "server_registry", None)
    if registry is None:
        checks["servers"] = "not_initialized"
        return checks
    try:
        servers = await registry.list_servers()
        checks["servers_total"] = len(servers)
        checks["servers_active"] = sum(1 for s in servers if s.is_active)
        if not checks["servers_active"]:
            checks["servers"] = "none_active"
    except Exception as e:
        checks["servers"] = "error"
        checks["servers_error"] = str(e)

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: 200 when the database answers, 503 otherwise.

    An empty or fully inactive server pool is reported but does not fail
    readiness; the API can still administer servers.
    """
    checks = await _check_dependencies(request)
    ready = checks.get("database") == "ok" and checks.get("servers") != "error"

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "degraded",
            "checks": checks,
        },
    )
