"""Meeting persistence models -- meetings, users, and memberships.

No foreign key constraints (application-level referential integrity via
the repositories). Ended meetings keep their server_id after the server
row is removed, so history outlives the server.

An external_id may be reused once its previous meeting has ended; the
partial unique index uq_meetings_running_external_id keeps at most one
running meeting per external_id.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.conference.core.database import Base


class MeetingModel(Base):
    """Meeting provisioned on one backend server."""

    __tablename__ = "meetings"
    __table_args__ = (
        Index(
            "uq_meetings_running_external_id",
            "external_id",
            unique=True,
            postgresql_where=text("status = 'running'"),
        ),
        Index("ix_meetings_server_status", "server_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    external_id: Mapped[str] = mapped_column(String(200), nullable=False)
    moderator_password: Mapped[str] = mapped_column(String(200), nullable=False)
    attendee_password: Mapped[str] = mapped_column(String(200), nullable=False)
    record: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    server_id: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default="running",
        server_default=text("'running'"),
        nullable=False,
    )
    user_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class UserModel(Base):
    """Meeting participant, created on the first admitted join."""

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("full_name", "alias", name="uq_users_identity"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    alias: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class MembershipModel(Base):
    """Join/ban/exit record of one user in one meeting."""

    __tablename__ = "memberships"
    __table_args__ = (
        Index("ix_memberships_meeting_user", "meeting_id", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    meeting_id: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    rejected: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    exited: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
