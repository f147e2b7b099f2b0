"""Pydantic schemas for the tenant registry."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field


class TenantStatus(IntEnum):
    """Lifecycle status of a registered tenant."""

    PENDING = 0
    ACTIVE = 1
    SUSPENDED = 2
    DISABLED = 3
    FLAGGED_FOR_DELETE = 4

    @classmethod
    def parse(cls, value: str | int) -> TenantStatus:
        """Accept ``1``, ``"1"``, ``"active"`` or ``"flagged_for_delete"``."""
        if isinstance(value, int) or str(value).isdigit():
            return cls(int(value))
        return cls[str(value).strip().upper()]


class TenantRecord(BaseModel):
    """A tenant as stored in the control registry (credentials excluded)."""

    model_config = ConfigDict(from_attributes=True)

    tenant_id: uuid.UUID
    slug: str
    status: TenantStatus
    schema_name: str
    database: str | None = None
    db_server: str | None = None
    db_user: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CreateTenantRequest(BaseModel):
    """Request schema for registering a new tenant."""

    slug: str = Field(..., min_length=1, max_length=100)
    schema_name: str = Field(..., min_length=1, max_length=63)
    database: str | None = Field(default=None, max_length=100)
    db_server: str | None = Field(default=None, max_length=255)
    db_user: str | None = Field(default=None, max_length=100)
    db_password: str | None = None
    api_key: str | None = None


class UpdateTenantRequest(BaseModel):
    """Partial update; only fields explicitly set are written."""

    slug: str | None = Field(default=None, min_length=1, max_length=100)
    database: str | None = Field(default=None, max_length=100)
    db_server: str | None = Field(default=None, max_length=255)
    db_user: str | None = Field(default=None, max_length=100)
    db_password: str | None = None
    api_key: str | None = None
