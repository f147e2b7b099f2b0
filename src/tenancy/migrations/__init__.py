"""Tenant schema migrations.

Exports:
    MigrationSource: Known migrations and generic script generation.
    TenantMigrationRunner: Per-tenant and fleet-wide execution.
    MigrationOptions: Retry, timeout, concurrency and failure policy.
    MigrationTracker: Read-only applied/pending status per schema.
"""

from __future__ import annotations

from src.tenancy.migrations.runner import (
    FleetMigrationReport,
    MigrationOptions,
    MigrationResult,
    MigrationTarget,
    TenantMigrationRunner,
)
from src.tenancy.migrations.script import Migration, MigrationSource
from src.tenancy.migrations.tracker import MigrationTracker, TenantMigrationStatus

__all__ = [
    "FleetMigrationReport",
    "Migration",
    "MigrationOptions",
    "MigrationResult",
    "MigrationSource",
    "MigrationTarget",
    "MigrationTracker",
    "TenantMigrationRunner",
    "TenantMigrationStatus",
]
