"""
Search Projector — Best-effort mirror of ledger rows into the search store.

Writes never raise; they return False and are counted instead. Reads
(search and the lookup helpers) propagate search store errors.
"""
from __future__ import annotations

import structlog
from typing import Optional

from models.schemas import DispatchRequest, Page, SearchCriteria, SearchDocument
from search.search_base import BaseSearchStore

logger = structlog.get_logger()


class SearchProjector:

    def __init__(self, search_store: BaseSearchStore):
        self.search_store = search_store
        self.stats = {"indexed": 0, "failed": 0}

    async def index(self, request: DispatchRequest) -> bool:
        try:
            await self.search_store.upsert(SearchDocument.from_request(request))
        except Exception as e:
            self.stats["failed"] += 1
            logger.error("search_index_failed", ledger_id=request.id, error=str(e))
            return False
        self.stats["indexed"] += 1
        return True

    async def update(self, request: DispatchRequest) -> bool:
        # Documents are keyed by ledger id, so an update is a re-index.
        return await self.index(request)

    async def remove(self, ledger_id: int) -> bool:
        try:
            return await self.search_store.delete(str(ledger_id))
        except Exception as e:
            self.stats["failed"] += 1
            logger.error("search_delete_failed", ledger_id=ledger_id, error=str(e))
            return False

    async def search(self, criteria: SearchCriteria, page: int = 0,
                     page_size: int = 20) -> Page[DispatchRequest]:
        found = await self.search_store.search(criteria, page, page_size)
        return Page[DispatchRequest](
            items=[doc.to_request() for doc in found.items],
            page=found.page,
            page_size=found.page_size,
            total=found.total,
        )

    async def find_by_request_id(self, request_id: str) -> Optional[DispatchRequest]:
        doc = await self.search_store.find_by_request_id(request_id)
        return doc.to_request() if doc else None

    async def find_by_external_message_id(self, external_message_id: str) -> Optional[DispatchRequest]:
        doc = await self.search_store.find_by_external_message_id(external_message_id)
        return doc.to_request() if doc else None
