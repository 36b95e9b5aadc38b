"""
Cache — Abstract interface with Redis and in-memory backends.

Key layout:
  sms:<ledger_id>          — serialized DispatchRequest (read-through, 24h)
  blacklist:<phone>        — "true" | "false" membership flag (24h)
  blacklist:all            — list snapshot of every blacklisted number (24h)

Values are strings; callers own serialization. List snapshots are stored
as one JSON string so an empty list is a cache hit, not a miss.
"""
from __future__ import annotations

import fnmatch
import json
import time
import structlog
from abc import ABC, abstractmethod
from typing import Any, Optional

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class Cache(ABC):
    """Abstract key/value cache with TTLs."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys, returning how many existed."""
        ...

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern (Redis MATCH syntax)."""
        ...

    @abstractmethod
    async def get_list(self, key: str) -> Optional[list[str]]:
        """Return the cached list, or None when the key is absent."""
        ...

    @abstractmethod
    async def set_list(self, key: str, values: list[str], ttl_seconds: int) -> None:
        ...

    async def close(self) -> None:
        return None


# ──────────────────────────────────────────────────────────────
#  Redis Implementation
# ──────────────────────────────────────────────────────────────

class RedisCache(Cache):
    """Production cache backed by Redis strings."""

    def __init__(self, redis_url: str = "redis://localhost:6379/0"):
        self._redis_url = redis_url
        self._redis = None

    def _client(self):
        if self._redis is None:
            import redis.asyncio as aioredis
            self._redis = aioredis.from_url(
                self._redis_url,
                decode_responses=True,
                max_connections=20,
            )
            logger.info("redis_cache_connected", url=self._redis_url)
        return self._redis

    async def get(self, key: str) -> Optional[str]:
        return await self._client().get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client().set(key, value, ex=ttl_seconds)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._client().delete(*keys)

    async def delete_pattern(self, pattern: str) -> int:
        client = self._client()
        keys = [k async for k in client.scan_iter(match=pattern)]
        if not keys:
            return 0
        return await client.delete(*keys)

    async def get_list(self, key: str) -> Optional[list[str]]:
        raw = await self._client().get(key)
        return json.loads(raw) if raw is not None else None

    async def set_list(self, key: str, values: list[str], ttl_seconds: int) -> None:
        await self._client().set(key, json.dumps(list(values)), ex=ttl_seconds)

    async def close(self) -> None:
        if self._redis:
            await self._redis.close()
            self._redis = None


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

class InMemoryCache(Cache):
    """
    Development/test cache backed by a dict with monotonic expiry.
    Single-process only.
    """

    def __init__(self):
        self._data: dict[str, tuple[float, Any]] = {}   # key → (expires_at, value)

    def _live(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= time.monotonic():
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        value = self._live(key)
        return value if isinstance(value, str) else None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._data[key] = (time.monotonic() + ttl_seconds, value)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
        return removed

    async def delete_pattern(self, pattern: str) -> int:
        keys = [k for k in list(self._data) if fnmatch.fnmatchcase(k, pattern)]
        return await self.delete(*keys)

    async def get_list(self, key: str) -> Optional[list[str]]:
        value = self._live(key)
        return list(value) if isinstance(value, list) else None

    async def set_list(self, key: str, values: list[str], ttl_seconds: int) -> None:
        self._data[key] = (time.monotonic() + ttl_seconds, list(values))

    def keys(self) -> list[str]:
        return [k for k in list(self._data) if self._live(k) is not None]


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

_instance: Optional[Cache] = None


def create_cache(cache_config: dict[str, Any] = None) -> Cache:
    """Factory: create the appropriate cache backend."""
    global _instance
    if _instance:
        return _instance

    config = cache_config or {}
    backend = config.get("backend", "memory")

    if backend == "redis":
        _instance = RedisCache(redis_url=config.get("redis_url", "redis://localhost:6379/0"))
    else:
        _instance = InMemoryCache()

    logger.info("cache_created", backend=backend)
    return _instance


def get_cache() -> Cache:
    """Return the singleton cache instance."""
    global _instance
    if _instance is None:
        _instance = create_cache()
    return _instance


def reset_cache() -> None:
    """Reset the singleton (for testing)."""
    global _instance
    _instance = None
