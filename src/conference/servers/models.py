"""Server persistence model.

The occupancy column is the explicit per-server counter maintained by the
scheduler's admission and release paths. It is never recomputed from the
meetings table on the hot path.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from src.conference.core.database import Base


class ServerModel(Base):
    """Backend media server with capacity limit and occupancy counter."""

    __tablename__ = "servers"
    __table_args__ = (
        CheckConstraint("server_limit >= 0", name="ck_servers_limit_non_negative"),
        CheckConstraint("occupancy >= 0", name="ck_servers_occupancy_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    url: Mapped[str] = mapped_column(String(500), nullable=False)
    secret: Mapped[str] = mapped_column(String(200), nullable=False)
    server_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    occupancy: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
