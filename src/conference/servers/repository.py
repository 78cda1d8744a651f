"""Server repository -- async CRUD and occupancy counter updates.

Uses the session_factory callable pattern shared by every repository in
this package. Occupancy changes are issued as a single UPDATE with a
column expression so concurrent writers never lose increments.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.conference.servers.models import ServerModel
from src.conference.servers.schemas import Server, ServerCreate, ServerUpdate

logger = structlog.get_logger(__name__)


def _model_to_server(model: ServerModel) -> Server:
    """Convert ServerModel to Server schema."""
    return Server(
        id=model.id,
        url=model.url,
        secret=model.secret,
        limit=model.server_limit,
        occupancy=model.occupancy,
        is_active=model.is_active,
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


class ServerRepository:
    """Async CRUD operations for registered servers.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def create_server(self, data: ServerCreate) -> Server:
        async for session in self._session_factory():
            model = ServerModel(
                url=data.url,
                secret=data.secret,
                server_limit=data.limit,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_server(model)

    async def get_server(self, server_id: int) -> Server | None:
        async for session in self._session_factory():
            model = await session.get(ServerModel, server_id)
            if model is None:
                return None
            return _model_to_server(model)

    async def list_servers(self) -> list[Server]:
        """All servers ordered by id (the scheduler's tie-break order)."""
        async for session in self._session_factory():
            result = await session.execute(select(ServerModel).order_by(ServerModel.id))
            return [_model_to_server(m) for m in result.scalars().all()]

    async def update_server(self, server_id: int, data: ServerUpdate) -> Server | None:
        """Apply the non-None fields of data. Returns None if the server is unknown."""
        async for session in self._session_factory():
            model = await session.get(ServerModel, server_id)
            if model is None:
                return None
            if data.url is not None:
                model.url = data.url
            if data.secret is not None:
                model.secret = data.secret
            if data.limit is not None:
                model.server_limit = data.limit
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_server(model)

    async def delete_server(self, server_id: int) -> bool:
        async for session in self._session_factory():
            model = await session.get(ServerModel, server_id)
            if model is None:
                return False
            await session.delete(model)
            await session.commit()
            return True

    async def adjust_occupancy(self, server_id: int, delta: int) -> Server:
        """Add delta to the server's occupancy counter (floored at zero).

        Raises:
            ValueError: If the server is unknown.
        """
        async for session in self._session_factory():
            stmt = (
                update(ServerModel)
                .where(ServerModel.id == server_id)
                .values(
                    occupancy=func.greatest(ServerModel.occupancy + delta, 0),
                    updated_at=datetime.now(timezone.utc),
                )
                .returning(ServerModel)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                raise ValueError(f"Server not found: id={server_id}")
            await session.commit()
            logger.debug(
                "server.occupancy_adjusted",
                server_id=server_id,
                delta=delta,
                occupancy=model.occupancy,
            )
            return _model_to_server(model)

    async def set_liveness(self, server_id: int, is_active: bool) -> Server | None:
        async for session in self._session_factory():
            model = await session.get(ServerModel, server_id)
            if model is None:
                return None
            model.is_active = is_active
            await session.commit()
            await session.refresh(model)
            return _model_to_server(model)
