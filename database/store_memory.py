"""
InMemoryNotificationStore — Dict-backed store for development and testing.

Features:
  - Zero dependencies (no database, no Redis)
  - Full interface compatibility with SqlNotificationStore
  - Safe under a single asyncio event loop
  - All data lost on process restart

Best for: local development, unit tests, quick prototyping.
"""
from __future__ import annotations

import itertools
import structlog
from typing import Optional

from database.store_base import BaseNotificationStore
from models.schemas import BlacklistEntry, DispatchRequest, SmsStatus, utcnow

logger = structlog.get_logger()


def _newest_first(request: DispatchRequest) -> tuple:
    return (request.created_at, request.id)


class InMemoryNotificationStore(BaseNotificationStore):
    """
    Full-featured in-memory store with the same interface as SqlNotificationStore.
    Returns copies so callers never mutate stored state in place.
    """

    def __init__(self):
        self._requests: dict[int, DispatchRequest] = {}       # id → request
        self._blacklist: dict[str, BlacklistEntry] = {}       # phone → entry
        self._ids = itertools.count(1)
        logger.info("inmemory_store_initialized")

    # ── Dispatch requests ─────────────────────────────────

    async def create_request(self, phone_number: str, message: str,
                             request_id: Optional[str] = None) -> DispatchRequest:
        now = utcnow()
        request = DispatchRequest(
            id=next(self._ids),
            request_id=request_id,
            phone_number=phone_number,
            message=message,
            status=SmsStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self._requests[request.id] = request
        return request.model_copy()

    async def get_request(self, ledger_id: int) -> Optional[DispatchRequest]:
        request = self._requests.get(ledger_id)
        return request.model_copy() if request else None

    async def save_request(self, request: DispatchRequest) -> DispatchRequest:
        self._requests[request.id] = request.model_copy()
        return request

    async def find_latest_by_phone_number(self, phone_number: str) -> Optional[DispatchRequest]:
        matches = [r for r in self._requests.values() if r.phone_number == phone_number]
        if not matches:
            return None
        return max(matches, key=_newest_first).model_copy()

    async def find_by_request_id(self, request_id: str) -> Optional[DispatchRequest]:
        matches = [r for r in self._requests.values() if r.request_id == request_id]
        if not matches:
            return None
        return max(matches, key=_newest_first).model_copy()

    async def list_by_status(self, status: SmsStatus, limit: int = 100) -> list[DispatchRequest]:
        matches = [r for r in self._requests.values() if r.status == status]
        matches.sort(key=_newest_first, reverse=True)
        return [r.model_copy() for r in matches[:limit]]

    # ── Blacklist ─────────────────────────────────────────

    async def is_blacklisted(self, phone_number: str) -> bool:
        return phone_number in self._blacklist

    async def add_blacklisted(self, phone_number: str) -> bool:
        if phone_number in self._blacklist:
            return False
        self._blacklist[phone_number] = BlacklistEntry(phone_number=phone_number)
        return True

    async def remove_blacklisted(self, phone_number: str) -> bool:
        return self._blacklist.pop(phone_number, None) is not None

    async def list_blacklisted(self) -> list[str]:
        entries = sorted(self._blacklist.values(), key=lambda e: e.created_at, reverse=True)
        return [e.phone_number for e in entries]

    # ── Stats (for debugging) ─────────────────────────────

    def stats(self) -> dict[str, int]:
        return {
            "requests": len(self._requests),
            "blacklisted": len(self._blacklist),
        }
