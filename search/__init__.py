"""Searchable projection of the request ledger."""
from search.search_base import BaseSearchStore
from search.search_memory import InMemorySearchStore
from search.search_sql import SqlSearchStore
from search.search_factory import create_search_store, get_search_store, reset_search_store

__all__ = [
    "BaseSearchStore", "InMemorySearchStore", "SqlSearchStore",
    "create_search_store", "get_search_store", "reset_search_store",
]
