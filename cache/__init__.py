"""
Cache layer — TTL key/value cache shared by the blacklist gate and ledger.

Backends:
  - Redis (production)
  - In-memory dict with expiry (development/testing)
"""
from cache.backends import (
    Cache, RedisCache, InMemoryCache,
    create_cache, get_cache, reset_cache,
)

__all__ = [
    "Cache", "RedisCache", "InMemoryCache",
    "create_cache", "get_cache", "reset_cache",
]
