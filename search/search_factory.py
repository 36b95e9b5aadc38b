"""
Search Store Factory.

    search:
      backend: "memory"     # "memory" | "sql"
"""
from __future__ import annotations

import structlog
from typing import Optional

from search.search_base import BaseSearchStore

logger = structlog.get_logger()

_instance: Optional[BaseSearchStore] = None


def create_search_store(config: dict = None) -> BaseSearchStore:
    global _instance
    if _instance is not None:
        return _instance

    config = config or {}
    backend = config.get("backend", "memory")

    if backend == "sql":
        from search.search_sql import SqlSearchStore
        _instance = SqlSearchStore()
    elif backend == "memory":
        from search.search_memory import InMemorySearchStore
        _instance = InMemorySearchStore()
    else:
        raise ValueError(f"Unknown search backend: {backend!r}")

    logger.info("search_store_created", backend=backend)
    return _instance


def get_search_store() -> BaseSearchStore:
    global _instance
    if _instance is None:
        _instance = create_search_store()
    return _instance


def reset_search_store() -> None:
    """Reset the singleton (for testing)."""
    global _instance
    _instance = None
