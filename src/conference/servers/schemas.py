"""Pydantic v2 schemas for the server registry.

A Server is a backend media server with a declared capacity limit and an
explicit occupancy counter (active memberships across all of its meetings).
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class Server(BaseModel):
    """Registered backend server."""

    id: int
    url: str
    secret: str
    limit: int = Field(ge=0)
    occupancy: int = 0
    is_active: bool = True
    created_at: datetime
    updated_at: datetime

    @property
    def free_capacity(self) -> int:
        return self.limit - self.occupancy


class ServerCreate(BaseModel):
    """Request schema for registering a server."""

    url: str = Field(min_length=1)
    secret: str = Field(min_length=1)
    limit: int = Field(ge=0)


class ServerUpdate(BaseModel):
    """Partial update of a server's connection settings or capacity."""

    url: str | None = Field(None, min_length=1)
    secret: str | None = Field(None, min_length=1)
    limit: int | None = Field(None, ge=0)
