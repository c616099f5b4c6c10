"""Tenant-keyed cache abstraction used by retrieval and cost governance."""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class TenantCache(ABC):
    """
    Key/value cache partitioned by tenant id.

    Entries of one tenant are never visible through another tenant's id.
    """

    @abstractmethod
    async def get(self, tenant_id: str, key: str) -> Optional[Any]:
        """Return the cached value or None."""

    @abstractmethod
    async def set(self, tenant_id: str, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Store (replace) a value."""

    @abstractmethod
    async def delete(self, tenant_id: str, key: str) -> None:
        """Remove a value if present."""


class InMemoryTenantCache(TenantCache):
    """Process-local cache. Values are stored as given (no serialization)."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}

    async def get(self, tenant_id: str, key: str) -> Optional[Any]:
        return self._data.get(tenant_id, {}).get(key)

    async def set(self, tenant_id: str, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        # Freshness is checked by callers; ttl is not enforced here
        self._data.setdefault(tenant_id, {})[key] = value

    async def delete(self, tenant_id: str, key: str) -> None:
        self._data.get(tenant_id, {}).pop(key, None)


class RedisTenantCache(TenantCache):
    """Redis-backed cache. Values must be JSON-serializable."""

    def __init__(self, client: aioredis.Redis, prefix: str = "dine"):
        self.client = client
        self.prefix = prefix

    def _key(self, tenant_id: str, key: str) -> str:
        return f"{self.prefix}:{tenant_id}:{key}"

    async def get(self, tenant_id: str, key: str) -> Optional[Any]:
        raw = await self.client.get(self._key(tenant_id, key))
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, tenant_id: str, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        await self.client.set(self._key(tenant_id, key), json.dumps(value, default=str), ex=ttl_seconds)

    async def delete(self, tenant_id: str, key: str) -> None:
        await self.client.delete(self._key(tenant_id, key))
