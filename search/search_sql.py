"""
SqlSearchStore — Search projection stored in its own table.

Text matching is a case-insensitive LIKE over the message column,
which every supported dialect handles without extensions.
"""
from __future__ import annotations

import structlog
from typing import Optional

from sqlalchemy import func, select

from database.models import SearchDocumentRow
from database.session import SessionScope, get_session
from database.store import as_utc
from models.schemas import Page, SearchCriteria, SearchDocument
from search.search_base import BaseSearchStore, to_utc

logger = structlog.get_logger()


class SqlSearchStore(BaseSearchStore):

    def __init__(self, session_scope: SessionScope = None):
        self._session = session_scope or get_session

    async def upsert(self, doc: SearchDocument) -> None:
        async with self._session() as db:
            row = await db.get(SearchDocumentRow, doc.id)
            if row is None:
                row = SearchDocumentRow(id=doc.id)
                db.add(row)
            row.request_id = doc.request_id
            row.phone_number = doc.phone_number
            row.message = doc.message
            row.status = doc.status
            row.external_message_id = doc.external_message_id
            row.failure_code = doc.failure_code
            row.failure_comments = doc.failure_comments
            row.created_at = to_utc(doc.created_at)
            row.updated_at = to_utc(doc.updated_at)

    async def get(self, doc_id: str) -> Optional[SearchDocument]:
        async with self._session() as db:
            row = await db.get(SearchDocumentRow, doc_id)
            return self._row_to_doc(row) if row else None

    async def delete(self, doc_id: str) -> bool:
        async with self._session() as db:
            row = await db.get(SearchDocumentRow, doc_id)
            if row is None:
                return False
            await db.delete(row)
            return True

    async def search(self, criteria: SearchCriteria, page: int = 0,
                     page_size: int = 20) -> Page[SearchDocument]:
        filters = []
        if criteria.text:
            # LIKE wildcards in user text match literally
            filters.append(func.lower(SearchDocumentRow.message)
                           .contains(criteria.text.lower(), autoescape=True))
        if criteria.phone_number:
            filters.append(SearchDocumentRow.phone_number == criteria.phone_number)
        if criteria.start:
            filters.append(SearchDocumentRow.created_at >= to_utc(criteria.start))
        if criteria.end:
            filters.append(SearchDocumentRow.created_at <= to_utc(criteria.end))

        async with self._session() as db:
            count_stmt = select(func.count()).select_from(SearchDocumentRow).where(*filters)
            total = (await db.execute(count_stmt)).scalar_one()

            stmt = (
                select(SearchDocumentRow)
                .where(*filters)
                .order_by(SearchDocumentRow.created_at.desc(), SearchDocumentRow.id.desc())
                .offset(page * page_size)
                .limit(page_size)
            )
            rows = (await db.execute(stmt)).scalars().all()

        return Page[SearchDocument](
            items=[self._row_to_doc(r) for r in rows],
            page=page,
            page_size=page_size,
            total=total,
        )

    async def find_by_request_id(self, request_id: str) -> Optional[SearchDocument]:
        return await self._first(SearchDocumentRow.request_id == request_id)

    async def find_by_external_message_id(self, external_message_id: str) -> Optional[SearchDocument]:
        return await self._first(SearchDocumentRow.external_message_id == external_message_id)

    async def _first(self, clause) -> Optional[SearchDocument]:
        async with self._session() as db:
            stmt = (
                select(SearchDocumentRow)
                .where(clause)
                .order_by(SearchDocumentRow.created_at.desc())
                .limit(1)
            )
            row = (await db.execute(stmt)).scalar_one_or_none()
            return self._row_to_doc(row) if row else None

    @staticmethod
    def _row_to_doc(row: SearchDocumentRow) -> SearchDocument:
        return SearchDocument(
            id=row.id,
            request_id=row.request_id,
            phone_number=row.phone_number,
            message=row.message,
            status=row.status,
            external_message_id=row.external_message_id,
            failure_code=row.failure_code,
            failure_comments=row.failure_comments,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )
