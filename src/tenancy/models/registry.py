"""Control registry model -- one row per tenant, outside every tenant schema.

Lives in the fixed "tenant_control" schema so that dropping, archiving or
migrating a tenant schema never touches the catalog that describes it.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, SmallInteger, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.tenancy.core.database import ControlBase


class TenantEntity(ControlBase):
    """Registered tenant with its schema, remote coordinates and credentials."""

    __tablename__ = "tenants"
    __table_args__ = (
        Index("ix_tenants_slug", "slug", unique=True),
        Index("ix_tenants_schema_name", "schema_name", unique=True),
        Index("ix_tenants_api_key_hash", "api_key_hash"),
        Index("ix_tenants_status", "status"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    schema_name: Mapped[str] = mapped_column(String(63), nullable=False)
    database: Mapped[str | None] = mapped_column(String(100), nullable=True)
    db_server: Mapped[str | None] = mapped_column(String(255), nullable=True)
    db_user: Mapped[str | None] = mapped_column(String(100), nullable=True)
    encrypted_password: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    api_key_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
