"""Async SQLAlchemy engine with schema-per-tenant routing.

Provides:
- ControlBase: Declarative base for the control registry (schema "tenant_control")
- TenantBase: Declarative base for per-tenant tables (unqualified, resolved via search_path)
- create_tenancy_engine(): engine with the checkout reset and the schema router installed
- get_control_session(): Session for control registry operations
- get_tenant_session(): Session bound to the current tenant context
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import MetaData, event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from src.tenancy.config import Settings, get_settings
from src.tenancy.core.identifiers import quote_identifier
from src.tenancy.core.routing import SchemaRouter
from src.tenancy.core.tenant import get_current_tenant

CONTROL_SCHEMA = "tenant_control"

# ── Engine Factory ──────────────────────────────────────────────────────────


def create_tenancy_engine(
    url: str | None = None,
    *,
    settings: Settings | None = None,
    **engine_kwargs: Any,
) -> AsyncEngine:
    """Create an async engine whose every command is routed to the tenant schema."""
    settings = settings or get_settings()
    engine_kwargs.setdefault("pool_size", settings.DATABASE_POOL_SIZE)
    engine_kwargs.setdefault("max_overflow", settings.DATABASE_MAX_OVERFLOW)
    engine = create_async_engine(url or settings.DATABASE_URL, echo=False, **engine_kwargs)

    # Reset session variables on every checkout so nothing a previous
    # borrower set survives into the next one.
    @event.listens_for(engine.sync_engine, "checkout")
    def reset_session_state(dbapi_conn: Any, connection_record: Any, connection_proxy: Any) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("RESET ALL")
        cursor.close()

    SchemaRouter(settings.DEFAULT_SCHEMA).install(engine)
    return engine


# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        _engine = create_tenancy_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


# ── Declarative Bases ───────────────────────────────────────────────────────

control_metadata = MetaData(schema=CONTROL_SCHEMA)
tenant_metadata = MetaData()


class ControlBase(DeclarativeBase):
    """Base class for control registry models (outside every tenant schema)."""

    metadata = control_metadata


class TenantBase(DeclarativeBase):
    """Base class for per-tenant models.

    Tables carry no schema; the router points search_path at the current
    tenant's schema before each statement.
    """

    metadata = tenant_metadata


# ── Session Factories ───────────────────────────────────────────────────────


async def get_control_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession for the control registry (no tenant scoping)."""
    async with get_session_factory()() as session:
        yield session


async def get_tenant_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession for the current tenant.

    Raises RuntimeError when called outside a tenant scope, so a missing
    context fails loudly instead of silently querying the default schema.
    """
    get_current_tenant()
    async with get_session_factory()() as session:
        yield session


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create the control schema and registry tables if they don't exist."""
    # Registers TenantEntity on ControlBase.metadata.
    import src.tenancy.models.registry  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {quote_identifier(CONTROL_SCHEMA)}"))
        await conn.run_sync(ControlBase.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
