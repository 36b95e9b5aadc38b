"""Tests for the request ledger and its read-through cache."""
import pytest
from unittest.mock import AsyncMock

from core.errors import InvalidStatusTransition, NotFoundError, ValidationError
from core.ledger import RequestLedger
from core.projector import SearchProjector
from models.schemas import DispatchRequest, SmsStatus

PHONE = "+911234567890"


@pytest.fixture
def projector(search_store) -> SearchProjector:
    return SearchProjector(search_store)


@pytest.fixture
def ledger(store, cache, projector) -> RequestLedger:
    return RequestLedger(store, cache, projector)


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_then_get_round_trips(self, ledger):
        created = await ledger.create(PHONE, "Hello", "req-1")
        fetched = await ledger.get_by_id(created.id)
        assert fetched == created
        assert fetched.status == SmsStatus.PENDING

    @pytest.mark.asyncio
    async def test_create_indexes_document(self, ledger, search_store):
        created = await ledger.create(PHONE, "Hello", "req-1")
        doc = await search_store.get(str(created.id))
        assert doc is not None
        assert doc.request_id == "req-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("phone,message", [("", "Hello"), (PHONE, ""), (PHONE, "   ")])
    async def test_blank_fields_rejected(self, ledger, phone, message):
        with pytest.raises(ValidationError):
            await ledger.create(phone, message)

    @pytest.mark.asyncio
    async def test_indexing_failure_does_not_fail_create(self, store, cache, search_store):
        search_store.upsert = AsyncMock(side_effect=ConnectionError("search down"))
        projector = SearchProjector(search_store)
        ledger = RequestLedger(store, cache, projector)
        created = await ledger.create(PHONE, "Hello")
        assert await store.get_request(created.id) is not None
        assert projector.stats["failed"] == 1


class TestReadThroughCache:
    @pytest.mark.asyncio
    async def test_get_populates_cache(self, ledger, cache):
        created = await ledger.create(PHONE, "Hello")
        await ledger.get_by_id(created.id)
        cached = await cache.get(f"sms:{created.id}")
        assert DispatchRequest.model_validate_json(cached) == created

    @pytest.mark.asyncio
    async def test_second_get_skips_store(self, ledger, store):
        created = await ledger.create(PHONE, "Hello")
        await ledger.get_by_id(created.id)
        store.get_request = AsyncMock(side_effect=AssertionError("store hit"))
        assert (await ledger.get_by_id(created.id)).id == created.id

    @pytest.mark.asyncio
    async def test_missing_raises_not_found(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.get_by_id(12345)

    @pytest.mark.asyncio
    async def test_cache_failure_degrades_to_store(self, store, projector, broken_cache):
        ledger = RequestLedger(store, broken_cache, projector)
        created = await ledger.create(PHONE, "Hello")
        assert (await ledger.get_by_id(created.id)).message == "Hello"


class TestUpdateStatus:
    @pytest.mark.asyncio
    async def test_sent_sets_external_id_and_bumps_updated_at(self, ledger):
        created = await ledger.create(PHONE, "Hello", "req-1")
        updated = await ledger.update_status(created.id, SmsStatus.SENT, external_message_id="req-1")
        assert updated.status == SmsStatus.SENT
        assert updated.external_message_id == "req-1"
        assert updated.updated_at >= created.updated_at
        assert updated.created_at == created.created_at

    @pytest.mark.asyncio
    async def test_failed_sets_failure_fields(self, ledger):
        created = await ledger.create(PHONE, "Hello")
        updated = await ledger.update_status(created.id, SmsStatus.FAILED,
                                             failure_code="PROVIDER_ERROR",
                                             failure_comments="Non-2xx response: 500")
        assert updated.failure_code == "PROVIDER_ERROR"
        assert updated.failure_comments == "Non-2xx response: 500"

    @pytest.mark.asyncio
    async def test_update_invalidates_without_repopulating(self, ledger, cache):
        created = await ledger.create(PHONE, "Hello")
        await ledger.get_by_id(created.id)
        await ledger.update_status(created.id, SmsStatus.SENT, external_message_id="x")
        assert await cache.get(f"sms:{created.id}") is None
        assert (await ledger.get_by_id(created.id)).status == SmsStatus.SENT

    @pytest.mark.asyncio
    async def test_update_reprojects(self, ledger, search_store):
        created = await ledger.create(PHONE, "Hello")
        await ledger.update_status(created.id, SmsStatus.SENT, external_message_id="ext-1")
        doc = await search_store.find_by_external_message_id("ext-1")
        assert doc.status == "SENT"

    @pytest.mark.asyncio
    async def test_same_status_is_noop_transition(self, ledger):
        created = await ledger.create(PHONE, "Hello")
        await ledger.update_status(created.id, SmsStatus.SENT, external_message_id="x")
        again = await ledger.update_status(created.id, SmsStatus.SENT, external_message_id="x")
        assert again.status == SmsStatus.SENT

    @pytest.mark.asyncio
    async def test_illegal_transition_rejected(self, ledger):
        created = await ledger.create(PHONE, "Hello")
        await ledger.update_status(created.id, SmsStatus.SENT, external_message_id="x")
        with pytest.raises(InvalidStatusTransition):
            await ledger.update_status(created.id, SmsStatus.FAILED, failure_code="X")

    @pytest.mark.asyncio
    async def test_unknown_id(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.update_status(999, SmsStatus.SENT)


class TestLookupsAndCacheAdmin:
    @pytest.mark.asyncio
    async def test_find_by_request_id_and_phone(self, ledger):
        a = await ledger.create(PHONE, "one", "req-a")
        b = await ledger.create(PHONE, "two", "req-b")
        assert (await ledger.find_by_request_id("req-a")).id == a.id
        assert (await ledger.find_latest_by_phone_number(PHONE)).id == b.id

    @pytest.mark.asyncio
    async def test_list_by_status(self, ledger):
        a = await ledger.create(PHONE, "one")
        await ledger.create(PHONE, "two")
        await ledger.update_status(a.id, SmsStatus.FAILED, failure_code="X")
        assert [r.id for r in await ledger.list_by_status(SmsStatus.FAILED)] == [a.id]

    @pytest.mark.asyncio
    async def test_clear_cache(self, ledger, cache):
        created = await ledger.create(PHONE, "Hello")
        await ledger.get_by_id(created.id)
        assert await ledger.clear_cache(created.id) is True
        assert await ledger.clear_cache(created.id) is False

    @pytest.mark.asyncio
    async def test_clear_all_caches_spares_other_keys(self, ledger, cache):
        for i in range(3):
            created = await ledger.create(PHONE, f"msg {i}")
            await ledger.get_by_id(created.id)
        await cache.set("sms:request:0", "not a ledger entry", 60)
        await cache.set("blacklist:+911234567890", "true", 60)
        assert await ledger.clear_all_caches() == 3
        assert await cache.get("sms:request:0") == "not a ledger entry"
        assert await cache.get("blacklist:+911234567890") == "true"
