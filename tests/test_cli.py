"""Tests for the tenant management CLI."""

from __future__ import annotations

import argparse
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
import structlog

from scripts import manage_tenants
from src.tenancy.core.errors import TenantAlreadyExistsError
from src.tenancy.migrations.runner import FleetMigrationReport, MigrationResult
from src.tenancy.services import bootstrap


@pytest.fixture
def manager(monkeypatch):
    manager = AsyncMock()
    built = {}

    def fake_build(**kwargs):
        built.update(kwargs)
        return manager

    monkeypatch.setattr(bootstrap, "build_tenant_manager", fake_build)
    manager.built_with = built
    yield manager
    structlog.reset_defaults()


def args(command: str, **extra) -> argparse.Namespace:
    return argparse.Namespace(command=command, registry=False, cache=False, **extra)


@pytest.mark.asyncio
async def test_provision(manager, capsys):
    manager.provision_tenant.return_value = SimpleNamespace(tenant_id="acme", schema_name="tenant_acme")

    assert await manage_tenants.run(args("provision", tenant="acme")) == 0
    manager.provision_tenant.assert_awaited_once_with("acme")
    assert "tenant_acme" in capsys.readouterr().out
    assert manager.built_with == {"use_registry": False, "redis": None}


@pytest.mark.asyncio
async def test_hard_delete(manager, capsys):
    assert await manage_tenants.run(args("delete", tenant="acme", hard=True)) == 0
    manager.delete_tenant.assert_awaited_once_with("acme", hard=True)
    assert "hard" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_migrate_all_lists_skipped(manager, capsys):
    report = FleetMigrationReport()
    report.results["a"] = MigrationResult("a", "tenant_a", ["001"])
    report.failures["b"] = RuntimeError("boom")
    manager.migrate_all_tenants.return_value = report

    assert await manage_tenants.run(args("migrate-all")) == 0
    out = capsys.readouterr().out
    assert "Migrated 1 tenant(s), 1 skipped" in out
    assert "FAILED b: boom" in out


@pytest.mark.asyncio
async def test_tenancy_error_exit_code(manager, capsys):
    manager.provision_tenant.side_effect = TenantAlreadyExistsError("acme")

    assert await manage_tenants.run(args("provision", tenant="acme")) == 1
    assert "Error:" in capsys.readouterr().err
