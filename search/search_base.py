"""
Abstract Search Store — Interface for the searchable request projection.

Implementations:
  - SqlSearchStore      (documents table in the configured SQL database)
  - InMemorySearchStore (dict-based, single-process)

The search store is never authoritative; the ledger is. Documents are
keyed by the ledger id rendered as a string, so re-indexing is an upsert.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from models.schemas import Page, SearchCriteria, SearchDocument


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken as UTC; aware ones are converted."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BaseSearchStore(ABC):

    @abstractmethod
    async def upsert(self, doc: SearchDocument) -> None:
        ...

    @abstractmethod
    async def get(self, doc_id: str) -> Optional[SearchDocument]:
        ...

    @abstractmethod
    async def delete(self, doc_id: str) -> bool:
        ...

    @abstractmethod
    async def search(self, criteria: SearchCriteria, page: int = 0,
                     page_size: int = 20) -> Page[SearchDocument]:
        """
        AND-combine every criterion that is set:
          text          case-insensitive substring of the message
          phone_number  exact match
          start / end   inclusive bounds on created_at
        Results are ordered by created_at, newest first.
        """
        ...

    @abstractmethod
    async def find_by_request_id(self, request_id: str) -> Optional[SearchDocument]:
        ...

    @abstractmethod
    async def find_by_external_message_id(self, external_message_id: str) -> Optional[SearchDocument]:
        ...
