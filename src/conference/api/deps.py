"""FastAPI dependency injection for the scheduler services.

Services are created once in the application lifespan and stored on
app.state; each dependency returns 503 when its service is missing so a
half-initialized app fails loudly instead of with AttributeError.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from src.conference.meetings.lifecycle import MeetingLifecycleManager
from src.conference.meetings.membership import MembershipManager
from src.conference.servers.health import ServerHealthMonitor
from src.conference.servers.registry import ServerRegistry


def _from_state(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


def get_server_registry(request: Request) -> ServerRegistry:
    return _from_state(request, "server_registry", "Server registry")


def get_lifecycle_manager(request: Request) -> MeetingLifecycleManager:
    return _from_state(request, "lifecycle_manager", "Meeting lifecycle")


def get_membership_manager(request: Request) -> MembershipManager:
    return _from_state(request, "membership_manager", "Membership manager")


def get_health_monitor(request: Request) -> ServerHealthMonitor:
    return _from_state(request, "health_monitor", "Health monitor")
