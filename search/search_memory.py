"""In-memory search projection for development and tests."""
from __future__ import annotations

from typing import Optional

from models.schemas import Page, SearchCriteria, SearchDocument
from search.search_base import BaseSearchStore, to_utc


class InMemorySearchStore(BaseSearchStore):

    def __init__(self):
        self._docs: dict[str, SearchDocument] = {}

    async def upsert(self, doc: SearchDocument) -> None:
        self._docs[doc.id] = doc.model_copy()

    async def get(self, doc_id: str) -> Optional[SearchDocument]:
        doc = self._docs.get(doc_id)
        return doc.model_copy() if doc else None

    async def delete(self, doc_id: str) -> bool:
        return self._docs.pop(doc_id, None) is not None

    async def search(self, criteria: SearchCriteria, page: int = 0,
                     page_size: int = 20) -> Page[SearchDocument]:
        matches = [d for d in self._docs.values() if self._matches(d, criteria)]
        matches.sort(key=lambda d: (to_utc(d.created_at), d.id), reverse=True)
        offset = page * page_size
        return Page[SearchDocument](
            items=[d.model_copy() for d in matches[offset:offset + page_size]],
            page=page,
            page_size=page_size,
            total=len(matches),
        )

    async def find_by_request_id(self, request_id: str) -> Optional[SearchDocument]:
        return self._first(lambda d: d.request_id == request_id)

    async def find_by_external_message_id(self, external_message_id: str) -> Optional[SearchDocument]:
        return self._first(lambda d: d.external_message_id == external_message_id)

    def _first(self, predicate) -> Optional[SearchDocument]:
        found = [d for d in self._docs.values() if predicate(d)]
        if not found:
            return None
        return max(found, key=lambda d: to_utc(d.created_at)).model_copy()

    @staticmethod
    def _matches(doc: SearchDocument, criteria: SearchCriteria) -> bool:
        if criteria.text and criteria.text.lower() not in doc.message.lower():
            return False
        if criteria.phone_number and doc.phone_number != criteria.phone_number:
            return False
        created = to_utc(doc.created_at)
        if criteria.start and created < to_utc(criteria.start):
            return False
        if criteria.end and created > to_utc(criteria.end):
            return False
        return True

    def __len__(self) -> int:
        return len(self._docs)
