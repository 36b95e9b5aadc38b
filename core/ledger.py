"""
Request Ledger — Authoritative record of each dispatch request.

Reads go through a cache keyed "sms:<ledger_id>" (24h TTL). Updates
invalidate that key without repopulating it and re-project the row
into the search store.
"""
from __future__ import annotations

import structlog
from typing import Optional

from cache.backends import Cache
from core.errors import InvalidStatusTransition, NotFoundError, ValidationError
from core.projector import SearchProjector
from database.store_base import BaseNotificationStore
from models.schemas import DispatchRequest, SmsStatus, can_transition, utcnow

logger = structlog.get_logger()

DEFAULT_TTL_SECONDS = 24 * 60 * 60


class RequestLedger:

    CACHE_PREFIX = "sms:"
    # Ledger ids are numeric; the pattern leaves "sms:request:*" streams alone.
    CACHE_PATTERN = "sms:[0-9]*"

    def __init__(
        self,
        store: BaseNotificationStore,
        cache: Cache,
        projector: Optional[SearchProjector] = None,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ):
        self.store = store
        self.cache = cache
        self.projector = projector
        self.ttl_seconds = ttl_seconds

    def cache_key(self, ledger_id: int) -> str:
        return f"{self.CACHE_PREFIX}{ledger_id}"

    async def create(self, phone_number: str, message: str,
                     request_id: Optional[str] = None) -> DispatchRequest:
        if not phone_number or not phone_number.strip():
            raise ValidationError("Phone number is required")
        if not message or not message.strip():
            raise ValidationError("Message is required")

        request = await self.store.create_request(phone_number, message, request_id)
        logger.info("sms_request_created",
                    ledger_id=request.id,
                    request_id=request_id,
                    phone_number=phone_number)
        if self.projector:
            await self.projector.index(request)
        return request

    async def get_by_id(self, ledger_id: int) -> DispatchRequest:
        key = self.cache_key(ledger_id)
        try:
            cached = await self.cache.get(key)
            if cached:
                return DispatchRequest.model_validate_json(cached)
        except Exception as e:
            logger.warning("ledger_cache_read_failed", ledger_id=ledger_id, error=str(e))

        request = await self.store.get_request(ledger_id)
        if request is None:
            raise NotFoundError(f"SMS request not found with ID: {ledger_id}")

        try:
            await self.cache.set(key, request.model_dump_json(), self.ttl_seconds)
        except Exception as e:
            logger.warning("ledger_cache_write_failed", ledger_id=ledger_id, error=str(e))
        return request

    async def update_status(
        self,
        ledger_id: int,
        status: SmsStatus,
        external_message_id: Optional[str] = None,
        failure_code: Optional[str] = None,
        failure_comments: Optional[str] = None,
    ) -> DispatchRequest:
        current = await self.get_by_id(ledger_id)
        if not can_transition(current.status, status):
            raise InvalidStatusTransition(
                f"Cannot move SMS request {ledger_id} from {current.status.value} to {status.value}"
            )

        changes = {"status": status, "updated_at": utcnow()}
        if external_message_id is not None:
            changes["external_message_id"] = external_message_id
        if status == SmsStatus.FAILED:
            changes["failure_code"] = failure_code
            changes["failure_comments"] = failure_comments
        updated = current.model_copy(update=changes)

        await self.store.save_request(updated)
        await self.clear_cache(ledger_id)
        logger.info("sms_status_updated",
                    ledger_id=ledger_id,
                    previous=current.status.value,
                    status=status.value)

        if self.projector:
            await self.projector.update(updated)
        return updated

    async def find_latest_by_phone_number(self, phone_number: str) -> Optional[DispatchRequest]:
        return await self.store.find_latest_by_phone_number(phone_number)

    async def find_by_request_id(self, request_id: str) -> Optional[DispatchRequest]:
        return await self.store.find_by_request_id(request_id)

    async def list_by_status(self, status: SmsStatus, limit: int = 100) -> list[DispatchRequest]:
        return await self.store.list_by_status(status, limit)

    async def clear_cache(self, ledger_id: int) -> bool:
        try:
            return await self.cache.delete(self.cache_key(ledger_id)) > 0
        except Exception as e:
            logger.warning("ledger_cache_invalidation_failed", ledger_id=ledger_id, error=str(e))
            return False

    async def clear_all_caches(self) -> int:
        try:
            removed = await self.cache.delete_pattern(self.CACHE_PATTERN)
        except Exception as e:
            logger.warning("ledger_cache_clear_failed", error=str(e))
            return 0
        logger.info("ledger_cache_cleared", removed=removed)
        return removed
