"""Tests for the engine factory and session dependencies."""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from src.tenancy.config import Settings
from src.tenancy.core import database
from src.tenancy.core.database import (
    CONTROL_SCHEMA,
    ControlBase,
    close_db,
    create_tenancy_engine,
    get_control_session,
    get_tenant_session,
)
from src.tenancy.core.routing import SchemaRouter
from src.tenancy.core.tenant import TenantContext, tenant_scope


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL="postgresql+asyncpg://u:p@localhost/db",
        DATABASE_POOL_SIZE=3,
        DATABASE_MAX_OVERFLOW=1,
        DEFAULT_SCHEMA="shared",
    )


class TestCreateTenancyEngine:
    @pytest.mark.asyncio
    async def test_router_installed_with_default_schema(self, settings):
        engine = create_tenancy_engine(settings=settings)
        try:
            router = SchemaRouter.for_engine(engine)
            assert router is not None
            assert router.default_schema == "shared"
            assert engine.pool.size() == 3
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_explicit_pool_arguments_win(self, settings):
        engine = create_tenancy_engine(settings=settings, pool_size=1, max_overflow=0)
        try:
            assert engine.pool.size() == 1
        finally:
            await engine.dispose()


class TestSessionDependencies:
    @pytest_asyncio.fixture(autouse=True)
    async def _module_engine(self, settings, monkeypatch):
        monkeypatch.setattr(database, "get_settings", lambda: settings)
        yield
        await close_db()

    @pytest.mark.asyncio
    async def test_tenant_session_requires_context(self):
        with pytest.raises(RuntimeError):
            async for _ in get_tenant_session():
                pass

    @pytest.mark.asyncio
    async def test_tenant_session_inside_scope(self):
        with tenant_scope(TenantContext(tenant_id="acme", schema_name="tenant_acme")):
            async for session in get_tenant_session():
                assert isinstance(session, AsyncSession)

    @pytest.mark.asyncio
    async def test_control_session_needs_no_context(self):
        async for session in get_control_session():
            assert isinstance(session, AsyncSession)

    @pytest.mark.asyncio
    async def test_close_db_resets_singleton(self):
        first = database.get_engine()
        await close_db()
        assert database.get_engine() is not first


def test_registry_table_lives_in_control_schema():
    import src.tenancy.models.registry  # noqa: F401

    assert f"{CONTROL_SCHEMA}.tenants" in ControlBase.metadata.tables
