"""Shared test fixtures for the SMS dispatch pipeline."""
import pytest
from typing import Optional

from cache.backends import InMemoryCache, reset_cache
from config.settings import Settings
from core.bootstrap import build_pipeline
from database.store_factory import reset_store
from database.store_memory import InMemoryNotificationStore
from job_queue.message_queue import InMemoryMessageQueue, reset_message_queue
from models.schemas import GatewayOutcome
from search.search_factory import reset_search_store
from search.search_memory import InMemorySearchStore


class FakeGateway:
    """Records every send and answers with a fixed outcome (or raises)."""

    def __init__(self, success: bool = True, raises: Optional[Exception] = None,
                 error_code: str = "PROVIDER_ERROR", error_message: str = "Non-2xx response: 500"):
        self.success = success
        self.raises = raises
        self.error_code = error_code
        self.error_message = error_message
        self.calls: list[tuple[str, str, str]] = []
        self.closed = False

    async def send(self, phone_number: str, message: str, request_id: str) -> GatewayOutcome:
        self.calls.append((phone_number, message, request_id))
        if self.raises is not None:
            raise self.raises
        if self.success:
            return GatewayOutcome(success=True, request_id=request_id,
                                  comments="SMS sent successfully")
        return GatewayOutcome(success=False, request_id=request_id,
                              comments="Failed to send SMS",
                              error_code=self.error_code,
                              error_message=self.error_message)

    async def close(self):
        self.closed = True


class BrokenCache(InMemoryCache):
    """Cache whose every operation fails, to exercise degraded paths."""

    async def get(self, key):
        raise ConnectionError("cache down")

    async def set(self, key, value, ttl_seconds):
        raise ConnectionError("cache down")

    async def delete(self, *keys):
        raise ConnectionError("cache down")

    async def delete_pattern(self, pattern):
        raise ConnectionError("cache down")

    async def get_list(self, key):
        raise ConnectionError("cache down")

    async def set_list(self, key, values, ttl_seconds):
        raise ConnectionError("cache down")


@pytest.fixture(autouse=True)
def _reset_singletons():
    yield
    reset_store()
    reset_cache()
    reset_search_store()
    reset_message_queue()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def store() -> InMemoryNotificationStore:
    return InMemoryNotificationStore()


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache()


@pytest.fixture
def search_store() -> InMemorySearchStore:
    return InMemorySearchStore()


@pytest.fixture
def queue() -> InMemoryMessageQueue:
    return InMemoryMessageQueue(partitions=3, poll_interval=0.01)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def pipeline(settings, store, cache, search_store, queue, gateway):
    return build_pipeline(
        settings,
        store=store,
        cache=cache,
        search_store=search_store,
        queue=queue,
        gateway=gateway,
    )


@pytest.fixture
def broken_cache() -> BrokenCache:
    return BrokenCache()
