"""
SMS Service — The core operations behind the ingress API.

  submit   → ledger row (PENDING) + search document + request message
  lookup   → cached ledger read
  search   → search store only, never the ledger
Plus blacklist administration and ledger cache maintenance.
"""
from __future__ import annotations

import structlog
from typing import Iterable, Optional

from core.blacklist import BlacklistGate
from core.errors import ValidationError
from core.ledger import RequestLedger
from core.projector import SearchProjector
from job_queue.producer import SmsProducer
from models.schemas import (
    DispatchRequest, Page, SearchCriteria, SmsRequestMessage, SubmitResult, new_request_id,
)

logger = structlog.get_logger()

MAX_PAGE_SIZE = 100


class SmsService:

    def __init__(
        self,
        ledger: RequestLedger,
        producer: SmsProducer,
        projector: SearchProjector,
        gate: BlacklistGate,
        max_message_length: int = 1600,
    ):
        self.ledger = ledger
        self.producer = producer
        self.projector = projector
        self.gate = gate
        self.max_message_length = max_message_length

    async def submit(self, phone_number: str, message: str,
                     request_id: Optional[str] = None) -> SubmitResult:
        if message and len(message) > self.max_message_length:
            raise ValidationError(
                f"Message must be at most {self.max_message_length} characters"
            )
        request_id = request_id or new_request_id()

        request = await self.ledger.create(phone_number, message, request_id)
        await self.producer.send_request(SmsRequestMessage(
            phone_number=phone_number,
            message=message,
            request_id=request_id,
        ))
        logger.info("sms_request_submitted", ledger_id=request.id, request_id=request_id)
        return SubmitResult(request_id=request_id, ledger_id=request.id)

    async def lookup(self, ledger_id: int) -> DispatchRequest:
        return await self.ledger.get_by_id(ledger_id)

    async def search(self, criteria: SearchCriteria, page: int = 0,
                     page_size: int = 20) -> Page[DispatchRequest]:
        if criteria.is_empty:
            raise ValidationError("At least one search criterion is required")
        if page < 0 or not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(f"page must be >= 0 and page_size between 1 and {MAX_PAGE_SIZE}")
        if criteria.start and criteria.end and criteria.start > criteria.end:
            raise ValidationError("start must not be after end")
        return await self.projector.search(criteria, page, page_size)

    # ── Blacklist administration ──────────────────────────

    async def add_to_blacklist(self, phone_numbers: Iterable[str]) -> list[str]:
        return await self.gate.add(phone_numbers)

    async def remove_from_blacklist(self, phone_numbers: Iterable[str]) -> list[str]:
        return await self.gate.remove(phone_numbers)

    async def get_blacklist(self) -> list[str]:
        return await self.gate.list_all()

    # ── Cache maintenance ─────────────────────────────────

    async def clear_cache(self, ledger_id: int) -> bool:
        return await self.ledger.clear_cache(ledger_id)

    async def clear_all_caches(self) -> int:
        return await self.ledger.clear_all_caches()
