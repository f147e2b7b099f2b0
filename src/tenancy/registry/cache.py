"""Redis-backed caching decorator for a TenantRegistry.

Cached: lookups by id and by slug, and status-filtered lists, each for a
fixed TTL. Never cached: API-key lookup (verification needs the salted hash,
so a cache would have to hold the plaintext key) and password retrieval.

Every write drops the entries it touches plus every list entry; lists are
small and TTL-bounded, so no per-list bookkeeping is attempted.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable

import redis.asyncio as aioredis
import structlog
from pydantic import TypeAdapter

from src.tenancy.config import get_settings
from src.tenancy.registry.store import TenantRegistry
from src.tenancy.schemas.tenant import (
    CreateTenantRequest,
    TenantRecord,
    TenantStatus,
    UpdateTenantRequest,
)

logger = structlog.get_logger(__name__)

_record_list = TypeAdapter(list[TenantRecord])


class CachedTenantRegistry:
    """TenantRegistry decorator that caches reads in Redis.

    Args:
        inner: The registry that owns the data.
        redis: Async Redis client (``decode_responses=True``).
        ttl: Seconds each cached entry lives.
        prefix: Namespace for every cache key.
    """

    def __init__(
        self,
        inner: TenantRegistry,
        redis: aioredis.Redis,
        *,
        ttl: int | None = None,
        prefix: str | None = None,
    ) -> None:
        settings = get_settings()
        self._inner = inner
        self._redis = redis
        self._ttl = ttl if ttl is not None else settings.REGISTRY_CACHE_TTL_SECONDS
        self._prefix = prefix or settings.REGISTRY_CACHE_PREFIX

    # ── Keys ────────────────────────────────────────────────────────────

    def _id_key(self, tenant_id: uuid.UUID) -> str:
        return f"{self._prefix}:tenant:{tenant_id}"

    def _slug_key(self, slug: str) -> str:
        return f"{self._prefix}:tenant-by-slug:{slug}"

    def _list_key(self, statuses: Iterable[TenantStatus] | None) -> str:
        if statuses is None:
            return f"{self._prefix}:tenants:all"
        suffix = ",".join(str(int(s)) for s in sorted(set(statuses)))
        return f"{self._prefix}:tenants:{suffix}"

    async def _invalidate_lists(self) -> None:
        keys = [key async for key in self._redis.scan_iter(match=f"{self._prefix}:tenants:*")]
        if keys:
            await self._redis.delete(*keys)

    async def _invalidate_record(self, record: TenantRecord | None, tenant_id: uuid.UUID) -> None:
        keys = [self._id_key(tenant_id)]
        if record is not None:
            keys.append(self._slug_key(record.slug))
        await self._redis.delete(*keys)

    async def _cache_record(self, record: TenantRecord) -> None:
        payload = record.model_dump_json()
        await self._redis.set(self._id_key(record.tenant_id), payload, ex=self._ttl)
        await self._redis.set(self._slug_key(record.slug), payload, ex=self._ttl)

    # ── Cached reads ────────────────────────────────────────────────────

    async def get_tenants(self, statuses: Iterable[TenantStatus] | None = None) -> list[TenantRecord]:
        statuses = list(statuses) if statuses is not None else None
        key = self._list_key(statuses)
        cached = await self._redis.get(key)
        if cached:
            return _record_list.validate_json(cached)
        records = await self._inner.get_tenants(statuses)
        await self._redis.set(key, _record_list.dump_json(records).decode("utf-8"), ex=self._ttl)
        return records

    async def get_tenant(self, tenant_id: uuid.UUID) -> TenantRecord | None:
        cached = await self._redis.get(self._id_key(tenant_id))
        if cached:
            return TenantRecord.model_validate_json(cached)
        record = await self._inner.get_tenant(tenant_id)
        if record is not None:
            await self._redis.set(self._id_key(tenant_id), record.model_dump_json(), ex=self._ttl)
        return record

    async def get_tenant_by_slug(self, slug: str) -> TenantRecord | None:
        cached = await self._redis.get(self._slug_key(slug))
        if cached:
            return TenantRecord.model_validate_json(cached)
        record = await self._inner.get_tenant_by_slug(slug)
        if record is not None:
            await self._redis.set(self._slug_key(slug), record.model_dump_json(), ex=self._ttl)
        return record

    # ── Uncached reads ──────────────────────────────────────────────────

    async def get_tenant_by_api_key(self, api_key: str) -> TenantRecord | None:
        return await self._inner.get_tenant_by_api_key(api_key)

    async def get_tenant_password(self, tenant_id: uuid.UUID) -> str | None:
        return await self._inner.get_tenant_password(tenant_id)

    # ── Writes ──────────────────────────────────────────────────────────

    async def create_tenant(self, tenant_id: uuid.UUID, request: CreateTenantRequest) -> TenantRecord:
        record = await self._inner.create_tenant(tenant_id, request)
        await self._invalidate_lists()
        await self._cache_record(record)
        return record

    async def update_tenant(self, tenant_id: uuid.UUID, request: UpdateTenantRequest) -> TenantRecord:
        previous = await self._inner.get_tenant(tenant_id)
        record = await self._inner.update_tenant(tenant_id, request)
        await self._invalidate_record(previous, tenant_id)
        await self._invalidate_lists()
        await self._cache_record(record)
        return record

    async def update_status(self, tenant_id: uuid.UUID, status: TenantStatus) -> TenantRecord:
        previous = await self._inner.get_tenant(tenant_id)
        record = await self._inner.update_status(tenant_id, status)
        await self._invalidate_record(previous, tenant_id)
        await self._invalidate_lists()
        await self._cache_record(record)
        return record

    async def delete_tenant(self, tenant_id: uuid.UUID) -> bool:
        previous = await self._inner.get_tenant(tenant_id)
        deleted = await self._inner.delete_tenant(tenant_id)
        await self._invalidate_record(previous, tenant_id)
        await self._invalidate_lists()
        logger.debug("tenant_cache_invalidated", tenant_id=str(tenant_id))
        return deleted
