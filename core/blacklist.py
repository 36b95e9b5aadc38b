"""
Blacklist Gate — Cache-aside membership check in front of the blacklist store.

Cache layout:
  blacklist:<phone>   "true" | "false"   (absent = unknown)
  blacklist:all       list snapshot of every blacklisted number

Policy: checks fail open. If neither the cache nor the store can answer,
the number is treated as not blocked and the decision is marked degraded.
"""
from __future__ import annotations

import structlog
from typing import Iterable

from cache.backends import Cache
from core.errors import BlacklistError, ErrorCodes
from database.store_base import BaseNotificationStore
from models.schemas import GateDecision

logger = structlog.get_logger()

DEFAULT_TTL_SECONDS = 24 * 60 * 60


class BlacklistGate:

    LIST_KEY = "blacklist:all"

    def __init__(self, store: BaseNotificationStore, cache: Cache,
                 ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.store = store
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.stats = {
            "checks": 0,
            "cache_hits": 0,
            "degraded": 0,
            "invalidation_failures": 0,
        }

    @staticmethod
    def cache_key(phone_number: str) -> str:
        return f"blacklist:{phone_number}"

    async def check(self, phone_number: str) -> GateDecision:
        self.stats["checks"] += 1
        key = self.cache_key(phone_number)

        try:
            cached = await self.cache.get(key)
        except Exception as e:
            logger.warning("blacklist_cache_read_failed", phone_number=phone_number, error=str(e))
            cached = None

        if cached is not None:
            self.stats["cache_hits"] += 1
            return GateDecision(blocked=cached == "true")

        try:
            blocked = await self.store.is_blacklisted(phone_number)
        except Exception as e:
            self.stats["degraded"] += 1
            logger.error("blacklist_check_degraded", phone_number=phone_number, error=str(e))
            return GateDecision(blocked=False, degraded=True)

        try:
            await self.cache.set(key, "true" if blocked else "false", self.ttl_seconds)
        except Exception as e:
            logger.warning("blacklist_cache_write_failed", phone_number=phone_number, error=str(e))

        return GateDecision(blocked=blocked)

    async def is_blocked(self, phone_number: str) -> bool:
        return (await self.check(phone_number)).blocked

    async def add(self, phone_numbers: Iterable[str]) -> list[str]:
        """Blacklist numbers. Returns the ones that were not already present."""
        phone_numbers = list(phone_numbers)
        added = []
        try:
            for phone in phone_numbers:
                if await self.store.add_blacklisted(phone):
                    added.append(phone)
        except Exception as e:
            logger.error("blacklist_add_failed", error=str(e))
            raise BlacklistError(f"Failed to add numbers to blacklist: {e}",
                                 code=ErrorCodes.BLACKLIST_ADD_FAILED) from e
        finally:
            await self._invalidate(phone_numbers)

        logger.info("blacklist_added", requested=len(phone_numbers), added=len(added))
        return added

    async def remove(self, phone_numbers: Iterable[str]) -> list[str]:
        """Un-blacklist numbers. Returns the ones that were present."""
        phone_numbers = list(phone_numbers)
        removed = []
        try:
            for phone in phone_numbers:
                if await self.store.remove_blacklisted(phone):
                    removed.append(phone)
        except Exception as e:
            logger.error("blacklist_remove_failed", error=str(e))
            raise BlacklistError(f"Failed to remove numbers from blacklist: {e}",
                                 code=ErrorCodes.BLACKLIST_REMOVE_FAILED) from e
        finally:
            await self._invalidate(phone_numbers)

        logger.info("blacklist_removed", requested=len(phone_numbers), removed=len(removed))
        return removed

    async def list_all(self) -> list[str]:
        try:
            cached = await self.cache.get_list(self.LIST_KEY)
            if cached is not None:
                return cached
        except Exception as e:
            logger.warning("blacklist_list_cache_read_failed", error=str(e))

        try:
            numbers = await self.store.list_blacklisted()
        except Exception as e:
            logger.error("blacklist_list_failed", error=str(e))
            return []

        try:
            await self.cache.set_list(self.LIST_KEY, numbers, self.ttl_seconds)
        except Exception as e:
            logger.warning("blacklist_list_cache_write_failed", error=str(e))
        return numbers

    async def _invalidate(self, phone_numbers: list[str]):
        keys = [self.cache_key(p) for p in phone_numbers] + [self.LIST_KEY]
        try:
            await self.cache.delete(*keys)
        except Exception as e:
            self.stats["invalidation_failures"] += 1
            logger.error("blacklist_cache_invalidation_failed", keys=len(keys), error=str(e))
