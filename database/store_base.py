"""
Abstract Notification Store — Interface for the ledger and blacklist record stores.

Implementations:
  - SqlNotificationStore      (PostgreSQL / MySQL / SQLite via SQLAlchemy)
  - InMemoryNotificationStore (dict-based, single-process, no persistence)

Writes are upserts so redelivered queue messages can repeat them safely.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from models.schemas import DispatchRequest, SmsStatus


class BaseNotificationStore(ABC):
    """Interface that all record store backends must implement."""

    # ── Dispatch requests ─────────────────────────────────────

    @abstractmethod
    async def create_request(self, phone_number: str, message: str,
                             request_id: Optional[str] = None) -> DispatchRequest:
        """Persist a new PENDING request and return it with its assigned id."""
        ...

    @abstractmethod
    async def get_request(self, ledger_id: int) -> Optional[DispatchRequest]:
        ...

    @abstractmethod
    async def save_request(self, request: DispatchRequest) -> DispatchRequest:
        """Upsert a request by id."""
        ...

    @abstractmethod
    async def find_latest_by_phone_number(self, phone_number: str) -> Optional[DispatchRequest]:
        ...

    @abstractmethod
    async def find_by_request_id(self, request_id: str) -> Optional[DispatchRequest]:
        """Most recent row carrying this correlation token."""
        ...

    @abstractmethod
    async def list_by_status(self, status: SmsStatus, limit: int = 100) -> list[DispatchRequest]:
        """Rows with the given status, newest first."""
        ...

    # ── Blacklist ─────────────────────────────────────────────

    @abstractmethod
    async def is_blacklisted(self, phone_number: str) -> bool:
        ...

    @abstractmethod
    async def add_blacklisted(self, phone_number: str) -> bool:
        """Insert if absent. Returns True when a row was created."""
        ...

    @abstractmethod
    async def remove_blacklisted(self, phone_number: str) -> bool:
        """Delete if present. Returns True when a row was removed."""
        ...

    @abstractmethod
    async def list_blacklisted(self) -> list[str]:
        """All blacklisted numbers, most recently added first."""
        ...
