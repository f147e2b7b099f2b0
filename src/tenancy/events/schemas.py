"""Tenant lifecycle event schemas.

Events describe something that already happened to a tenant: its schema was
provisioned, dropped, archived or restored, or a migration landed in it.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class TenantEventType(str, Enum):
    """Kinds of tenant lifecycle events."""

    CREATED = "tenant.created"
    DELETED = "tenant.deleted"
    ARCHIVED = "tenant.archived"
    RESTORED = "tenant.restored"
    MIGRATION_APPLIED = "tenant.migration_applied"


class TenantEvent(BaseModel):
    """Base event carried to subscribers.

    Attributes:
        event_id: Unique identifier (auto-generated UUID4).
        event_type: The kind of lifecycle change.
        tenant_id: Tenant the event is about, stringified.
        timestamp: UTC creation time.
    """

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: TenantEventType
    tenant_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TenantCreated(TenantEvent):
    event_type: Literal[TenantEventType.CREATED] = TenantEventType.CREATED
    schema_name: str


class TenantDeleted(TenantEvent):
    event_type: Literal[TenantEventType.DELETED] = TenantEventType.DELETED
    hard_delete: bool


class TenantArchived(TenantEvent):
    event_type: Literal[TenantEventType.ARCHIVED] = TenantEventType.ARCHIVED
    archived_schema: str


class TenantRestored(TenantEvent):
    event_type: Literal[TenantEventType.RESTORED] = TenantEventType.RESTORED
    schema_name: str


class MigrationApplied(TenantEvent):
    event_type: Literal[TenantEventType.MIGRATION_APPLIED] = TenantEventType.MIGRATION_APPLIED
    schema_name: str
    migration_id: str
