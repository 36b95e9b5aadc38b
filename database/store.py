"""
SqlNotificationStore — Portable SQL queries for PostgreSQL, MySQL, SQLite.

The ledger lookup paths are:
  - by id (primary key)
  - by request_id (correlation token, indexed)
  - by phone_number ordered by created_at desc (composite index)
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError

from database.models import BlacklistedNumberRow, DispatchRequestRow
from database.session import SessionScope, get_session
from database.store_base import BaseNotificationStore
from models.schemas import DispatchRequest, SmsStatus, utcnow

logger = structlog.get_logger()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlNotificationStore(BaseNotificationStore):
    """
    Persistent record store backed by any SQLAlchemy-supported database.
    Works with PostgreSQL, MySQL 8+, and SQLite.
    """

    def __init__(self, session_scope: SessionScope = None):
        self._session = session_scope or get_session

    # ── Dispatch requests ──────────────────────────────────

    async def create_request(self, phone_number: str, message: str,
                             request_id: Optional[str] = None) -> DispatchRequest:
        now = utcnow()
        async with self._session() as db:
            row = DispatchRequestRow(
                request_id=request_id,
                phone_number=phone_number,
                message=message,
                status=SmsStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            db.add(row)
            await db.flush()
            return self._row_to_request(row)

    async def get_request(self, ledger_id: int) -> Optional[DispatchRequest]:
        async with self._session() as db:
            row = await db.get(DispatchRequestRow, ledger_id)
            return self._row_to_request(row) if row else None

    async def save_request(self, request: DispatchRequest) -> DispatchRequest:
        async with self._session() as db:
            row = await db.get(DispatchRequestRow, request.id)
            if row is None:
                row = DispatchRequestRow(id=request.id)
                db.add(row)
            row.request_id = request.request_id
            row.phone_number = request.phone_number
            row.message = request.message
            row.status = request.status.value
            row.external_message_id = request.external_message_id
            row.failure_code = request.failure_code
            row.failure_comments = request.failure_comments
            row.created_at = request.created_at
            row.updated_at = request.updated_at
            return request

    async def find_latest_by_phone_number(self, phone_number: str) -> Optional[DispatchRequest]:
        async with self._session() as db:
            stmt = (
                select(DispatchRequestRow)
                .where(DispatchRequestRow.phone_number == phone_number)
                .order_by(DispatchRequestRow.created_at.desc(), DispatchRequestRow.id.desc())
                .limit(1)
            )
            result = await db.execute(stmt)
            row = result.scalar_one_or_none()
            return self._row_to_request(row) if row else None

    async def find_by_request_id(self, request_id: str) -> Optional[DispatchRequest]:
        async with self._session() as db:
            stmt = (
                select(DispatchRequestRow)
                .where(DispatchRequestRow.request_id == request_id)
                .order_by(DispatchRequestRow.id.desc())
                .limit(1)
            )
            result = await db.execute(stmt)
            row = result.scalar_one_or_none()
            return self._row_to_request(row) if row else None

    async def list_by_status(self, status: SmsStatus, limit: int = 100) -> list[DispatchRequest]:
        async with self._session() as db:
            stmt = (
                select(DispatchRequestRow)
                .where(DispatchRequestRow.status == status.value)
                .order_by(DispatchRequestRow.created_at.desc(), DispatchRequestRow.id.desc())
                .limit(limit)
            )
            result = await db.execute(stmt)
            return [self._row_to_request(r) for r in result.scalars().all()]

    # ── Blacklist ──────────────────────────────────────────

    async def is_blacklisted(self, phone_number: str) -> bool:
        async with self._session() as db:
            stmt = select(BlacklistedNumberRow.id).where(
                BlacklistedNumberRow.phone_number == phone_number
            )
            result = await db.execute(stmt)
            return result.first() is not None

    async def add_blacklisted(self, phone_number: str) -> bool:
        async with self._session() as db:
            stmt = select(BlacklistedNumberRow).where(
                BlacklistedNumberRow.phone_number == phone_number
            )
            result = await db.execute(stmt)
            if result.scalar_one_or_none() is not None:
                return False
            db.add(BlacklistedNumberRow(phone_number=phone_number))
            try:
                await db.flush()
            except IntegrityError:
                # A concurrent add committed the same number first.
                await db.rollback()
                return False
            return True

    async def remove_blacklisted(self, phone_number: str) -> bool:
        async with self._session() as db:
            stmt = delete(BlacklistedNumberRow).where(
                BlacklistedNumberRow.phone_number == phone_number
            )
            result = await db.execute(stmt)
            return (result.rowcount or 0) > 0

    async def list_blacklisted(self) -> list[str]:
        async with self._session() as db:
            stmt = select(BlacklistedNumberRow.phone_number).order_by(
                BlacklistedNumberRow.created_at.desc(), BlacklistedNumberRow.id.desc()
            )
            result = await db.execute(stmt)
            return list(result.scalars().all())

    # ── Converters ─────────────────────────────────────────

    @staticmethod
    def _row_to_request(row: DispatchRequestRow) -> DispatchRequest:
        return DispatchRequest(
            id=row.id,
            request_id=row.request_id,
            phone_number=row.phone_number,
            message=row.message,
            status=SmsStatus(row.status),
            external_message_id=row.external_message_id,
            failure_code=row.failure_code,
            failure_comments=row.failure_comments,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )
