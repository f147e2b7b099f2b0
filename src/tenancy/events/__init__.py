"""Tenant lifecycle events.

Exports:
    TenantEvent: Base Pydantic event model.
    TenantEventType: Enum of lifecycle event kinds.
    TenantCreated, TenantDeleted, TenantArchived, TenantRestored,
    MigrationApplied: Concrete events.
    TenantEventPublisher: In-process fan-out to async subscribers.
"""

from __future__ import annotations

from src.tenancy.events.publisher import TenantEventPublisher
from src.tenancy.events.schemas import (
    MigrationApplied,
    TenantArchived,
    TenantCreated,
    TenantDeleted,
    TenantEvent,
    TenantEventType,
    TenantRestored,
)

__all__ = [
    "MigrationApplied",
    "TenantArchived",
    "TenantCreated",
    "TenantDeleted",
    "TenantEvent",
    "TenantEventPublisher",
    "TenantEventType",
    "TenantRestored",
]
