"""
SQLAlchemy ORM models — Cross-database compatible.

Supports: PostgreSQL, MySQL 8+, SQLite.

Key design decisions:
  - Integer surrogate keys for ledger rows; the search projection keys
    documents by the ledger id rendered as a string.
  - Timestamps are stored timezone-aware where the dialect allows it;
    SQLite returns naive values, which the stores normalize to UTC.
  - No dialect-specific index types.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Integer, DateTime, Text, Index
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────
#  Dispatch Requests (ledger)
# ──────────────────────────────────────────────────────────────

class DispatchRequestRow(Base):
    __tablename__ = "sms_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")

    external_message_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    failure_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    failure_comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_sms_requests_phone_created", "phone_number", "created_at"),
        Index("ix_sms_requests_request_id", "request_id"),
        Index("ix_sms_requests_status", "status"),
    )


# ──────────────────────────────────────────────────────────────
#  Blacklist
# ──────────────────────────────────────────────────────────────

class BlacklistedNumberRow(Base):
    __tablename__ = "blacklisted_numbers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


# ──────────────────────────────────────────────────────────────
#  Search projection
# ──────────────────────────────────────────────────────────────

class SearchDocumentRow(Base):
    __tablename__ = "sms_request_documents"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)

    external_message_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    failure_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    failure_comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_sms_documents_phone", "phone_number"),
        Index("ix_sms_documents_created", "created_at"),
        Index("ix_sms_documents_request_id", "request_id"),
        Index("ix_sms_documents_external_id", "external_message_id"),
    )
