"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
the ConferenceError handler, lifespan events for database initialization
and service wiring, and the v1 API router.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.conference.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.conference.api.v1.router import conference_error_handler
from src.conference.api.v1.router import router as v1_router
from src.conference.backend.client import BackendClientFactory
from src.conference.config import get_settings
from src.conference.core.database import close_db, get_session, init_db
from src.conference.core.errors import ConferenceError
from src.conference.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.conference.meetings.lifecycle import MeetingLifecycleManager
from src.conference.meetings.membership import MembershipManager
from src.conference.meetings.repository import MeetingRepository
from src.conference.servers.health import ServerHealthMonitor
from src.conference.servers.registry import ServerRegistry
from src.conference.servers.repository import ServerRepository
from src.conference.servers.scheduler import CapacityScheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry, and services on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # ── Scheduler Services ───────────────────────────────────────────────
    server_repository = ServerRepository(session_factory=get_session)
    meeting_repository = MeetingRepository(session_factory=get_session)
    scheduler = CapacityScheduler(server_repository)
    client_factory = BackendClientFactory(
        timeout=settings.BACKEND_TIMEOUT_SECONDS,
        max_attempts=settings.BACKEND_MAX_RETRIES,
    )

    server_registry = ServerRegistry(server_repository, scheduler, meeting_repository)
    lifecycle_manager = MeetingLifecycleManager(
        meeting_repository, server_repository, scheduler, client_factory
    )
    membership_manager = MembershipManager(meeting_repository, scheduler, client_factory)
    health_monitor = ServerHealthMonitor(
        server_registry,
        probe=lifecycle_manager.is_backend_healthy,
        interval_seconds=settings.HEALTH_POLL_INTERVAL_SECONDS,
    )

    app.state.server_registry = server_registry
    app.state.lifecycle_manager = lifecycle_manager
    app.state.membership_manager = membership_manager
    app.state.health_monitor = health_monitor
    log.info("conference.services_initialized")

    # ── Server Liveness Polling ──────────────────────────────────────────
    app.state.health_monitor_task = None
    if settings.HEALTH_POLL_ENABLED:
        app.state.health_monitor_task = asyncio.create_task(health_monitor.run_poll_loop())
        log.info(
            "conference.health_monitor_started",
            interval_seconds=settings.HEALTH_POLL_INTERVAL_SECONDS,
        )

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    monitor_task = getattr(app.state, "health_monitor_task", None)
    if monitor_task and not monitor_task.done():
        health_monitor.stop()
        monitor_task.cancel()
        try:
            await monitor_task
        except asyncio.CancelledError:
            pass
        log.info("conference.health_monitor_stopped")

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Conference Scheduler API",
        version="0.1.0",
        description="Capacity-aware meeting placement and admission for BigBlueButton servers",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.add_exception_handler(ConferenceError, conference_error_handler)

    # Health probes plus /api/v1 servers, meetings, memberships
    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
