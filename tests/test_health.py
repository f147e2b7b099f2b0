"""Tests for the tenant fleet health check."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.tenancy.migrations.tracker import TenantMigrationStatus
from src.tenancy.services.health import HealthStatus, TenantHealthCheck


def make_manager(statuses=None, *, db_error=None) -> MagicMock:
    manager = MagicMock()
    conn = AsyncMock()
    connect = manager.runner.engine.connect
    if db_error is not None:
        connect.side_effect = db_error
    else:
        connect.return_value.__aenter__.return_value = conn
    manager.get_migration_status = AsyncMock(return_value=statuses or {})
    return manager


class TestTenantHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy(self):
        manager = make_manager({"a": TenantMigrationStatus("tenant_a", applied=["001"])})
        result = await TenantHealthCheck(manager).check()
        assert result["status"] == HealthStatus.healthy.value
        assert result["tenant_count"] == 1
        assert result["pending_migrations"] == 0

    @pytest.mark.asyncio
    async def test_pending_migrations_degrade(self):
        manager = make_manager(
            {
                "a": TenantMigrationStatus("tenant_a", applied=["001"]),
                "b": TenantMigrationStatus("tenant_b", pending=["001", "002"]),
            }
        )
        result = await TenantHealthCheck(manager).check()
        assert result["status"] == HealthStatus.degraded.value
        assert result["tenants_behind"] == ["b"]
        assert result["pending_migrations"] == 2

    @pytest.mark.asyncio
    async def test_status_errors_degrade(self):
        manager = make_manager({"a": TenantMigrationStatus("tenant_a", pending=["001"], error="denied")})
        result = await TenantHealthCheck(manager).check()
        assert result["status"] == HealthStatus.degraded.value
        assert result["tenants_failed"] == ["a"]
        assert "tenants_behind" not in result

    @pytest.mark.asyncio
    async def test_database_down(self):
        manager = make_manager(db_error=OSError("connection refused"))
        result = await TenantHealthCheck(manager).check()
        assert result["status"] == HealthStatus.unhealthy.value
        assert result["database"] == "error"
        manager.get_migration_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_enumeration_failure(self):
        manager = make_manager()
        manager.get_migration_status.side_effect = RuntimeError("registry down")
        result = await TenantHealthCheck(manager).check()
        assert result["status"] == HealthStatus.unhealthy.value
        assert result["tenants"] == "error"
