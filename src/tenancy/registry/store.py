"""Tenant registry backed by the control schema.

Plain CRUD; nothing here retries or caches. See ``registry.cache`` for the
caching decorator.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable
from typing import Protocol

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.tenancy.core.errors import ConfigurationError, TenantAlreadyExistsError, TenantNotFoundError
from src.tenancy.core.security import ApiKeyHasher, PasswordProtector
from src.tenancy.models.registry import TenantEntity
from src.tenancy.schemas.tenant import (
    CreateTenantRequest,
    TenantRecord,
    TenantStatus,
    UpdateTenantRequest,
)

logger = structlog.get_logger(__name__)


class TenantRegistry(Protocol):
    """Durable catalog of tenants."""

    async def get_tenants(self, statuses: Iterable[TenantStatus] | None = None) -> list[TenantRecord]: ...

    async def get_tenant(self, tenant_id: uuid.UUID) -> TenantRecord | None: ...

    async def get_tenant_by_slug(self, slug: str) -> TenantRecord | None: ...

    async def get_tenant_by_api_key(self, api_key: str) -> TenantRecord | None: ...

    async def create_tenant(self, tenant_id: uuid.UUID, request: CreateTenantRequest) -> TenantRecord: ...

    async def update_tenant(self, tenant_id: uuid.UUID, request: UpdateTenantRequest) -> TenantRecord: ...

    async def update_status(self, tenant_id: uuid.UUID, status: TenantStatus) -> TenantRecord: ...

    async def delete_tenant(self, tenant_id: uuid.UUID) -> bool: ...

    async def get_tenant_password(self, tenant_id: uuid.UUID) -> str | None: ...


class SqlTenantRegistry:
    """TenantRegistry over the ``tenant_control.tenants`` table.

    Args:
        session_factory: Sessions bound to the shared engine.
        hasher: API key hasher used on create/update and lookup.
        protector: Credential protector; required only when passwords are stored.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        hasher: ApiKeyHasher | None = None,
        protector: PasswordProtector | None = None,
    ) -> None:
        self._sessions = session_factory
        self._hasher = hasher or ApiKeyHasher()
        self._protector = protector

    def _protect(self, password: str | None) -> str | None:
        if password is None:
            return None
        if self._protector is None:
            raise ConfigurationError("A password protector is required to store tenant credentials")
        return self._protector.protect(password)

    # ── Reads ───────────────────────────────────────────────────────────

    async def get_tenants(self, statuses: Iterable[TenantStatus] | None = None) -> list[TenantRecord]:
        query = select(TenantEntity).order_by(TenantEntity.slug)
        if statuses is not None:
            query = query.where(TenantEntity.status.in_([int(s) for s in statuses]))
        async with self._sessions() as session:
            result = await session.scalars(query)
            return [TenantRecord.model_validate(entity) for entity in result]

    async def get_tenant(self, tenant_id: uuid.UUID) -> TenantRecord | None:
        async with self._sessions() as session:
            entity = await session.get(TenantEntity, tenant_id)
            return TenantRecord.model_validate(entity) if entity else None

    async def get_tenant_by_slug(self, slug: str) -> TenantRecord | None:
        async with self._sessions() as session:
            entity = await session.scalar(select(TenantEntity).where(TenantEntity.slug == slug))
            return TenantRecord.model_validate(entity) if entity else None

    async def get_tenant_by_api_key(self, api_key: str) -> TenantRecord | None:
        """Find the active tenant whose stored hash verifies ``api_key``."""
        if not api_key:
            return None
        async with self._sessions() as session:
            result = await session.scalars(
                select(TenantEntity).where(
                    TenantEntity.status == int(TenantStatus.ACTIVE),
                    TenantEntity.api_key_hash.is_not(None),
                )
            )
            candidates = list(result)

        for entity in candidates:
            # PBKDF2 is CPU-bound.
            if await asyncio.to_thread(self._hasher.verify, api_key, entity.api_key_hash):
                return TenantRecord.model_validate(entity)
        return None

    async def get_tenant_password(self, tenant_id: uuid.UUID) -> str | None:
        async with self._sessions() as session:
            encrypted = await session.scalar(
                select(TenantEntity.encrypted_password).where(TenantEntity.tenant_id == tenant_id)
            )
        if encrypted is None:
            return None
        if self._protector is None:
            raise ConfigurationError("A password protector is required to read tenant credentials")
        return self._protector.unprotect(encrypted)

    # ── Writes ──────────────────────────────────────────────────────────

    async def create_tenant(self, tenant_id: uuid.UUID, request: CreateTenantRequest) -> TenantRecord:
        """Insert a new tenant in ``PENDING`` status.

        Raises:
            TenantAlreadyExistsError: id, slug or schema name already registered.
        """
        entity = TenantEntity(
            tenant_id=tenant_id,
            slug=request.slug,
            status=int(TenantStatus.PENDING),
            schema_name=request.schema_name,
            database=request.database,
            db_server=request.db_server,
            db_user=request.db_user,
            encrypted_password=self._protect(request.db_password),
            api_key_hash=self._hasher.hash(request.api_key) if request.api_key else None,
        )
        async with self._sessions() as session:
            session.add(entity)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise TenantAlreadyExistsError(tenant_id, f"slug {request.slug!r} or schema taken") from exc
            await session.refresh(entity)
            logger.info("tenant_registered", tenant_id=str(tenant_id), slug=request.slug)
            return TenantRecord.model_validate(entity)

    async def update_tenant(self, tenant_id: uuid.UUID, request: UpdateTenantRequest) -> TenantRecord:
        changes = request.model_dump(exclude_unset=True)
        async with self._sessions() as session:
            entity = await session.get(TenantEntity, tenant_id)
            if entity is None:
                raise TenantNotFoundError(tenant_id)
            for field in ("slug", "database", "db_server", "db_user"):
                if field in changes:
                    setattr(entity, field, changes[field])
            if "db_password" in changes:
                entity.encrypted_password = self._protect(changes["db_password"])
            if "api_key" in changes:
                api_key = changes["api_key"]
                entity.api_key_hash = self._hasher.hash(api_key) if api_key else None
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise TenantAlreadyExistsError(tenant_id, f"slug {request.slug!r} taken") from exc
            await session.refresh(entity)
            return TenantRecord.model_validate(entity)

    async def update_status(self, tenant_id: uuid.UUID, status: TenantStatus) -> TenantRecord:
        async with self._sessions() as session:
            entity = await session.get(TenantEntity, tenant_id)
            if entity is None:
                raise TenantNotFoundError(tenant_id)
            entity.status = int(status)
            await session.commit()
            await session.refresh(entity)
            logger.info("tenant_status_changed", tenant_id=str(tenant_id), status=status.name)
            return TenantRecord.model_validate(entity)

    async def delete_tenant(self, tenant_id: uuid.UUID) -> bool:
        async with self._sessions() as session:
            result = await session.execute(delete(TenantEntity).where(TenantEntity.tenant_id == tenant_id))
            await session.commit()
            return result.rowcount > 0
