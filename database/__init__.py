"""
Database layer — Ledger and blacklist persistence.

Backends:
  - SQL (PostgreSQL / MySQL / SQLite via SQLAlchemy async)
  - In-memory (dict-based, for development/testing)

Quick start:
  from database import create_store, get_store
  store = create_store({"store_backend": "memory"})
  request = await store.create_request("+919876543210", "hello")
"""
from database.models import (
    Base, DispatchRequestRow, BlacklistedNumberRow, SearchDocumentRow,
)
from database.session import (
    get_engine, get_session, make_session_scope, init_db, close_db,
)
from database.store_base import BaseNotificationStore
from database.store import SqlNotificationStore
from database.store_memory import InMemoryNotificationStore
from database.store_factory import create_store, get_store, reset_store

__all__ = [
    # ORM models
    "Base", "DispatchRequestRow", "BlacklistedNumberRow", "SearchDocumentRow",
    # Session management
    "get_engine", "get_session", "make_session_scope", "init_db", "close_db",
    # Store interface
    "BaseNotificationStore",
    # Store backends
    "SqlNotificationStore", "InMemoryNotificationStore",
    # Factory
    "create_store", "get_store", "reset_store",
]
