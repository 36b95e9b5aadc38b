"""Tests for the per-message pipeline state machine."""
import pytest
from unittest.mock import AsyncMock

from channels.base import PhoneRateLimiter
from core.bootstrap import build_pipeline
from core.errors import ErrorCodes
from job_queue.message_queue import Topics
from models.schemas import Delivered, Errored, Rejected, SmsResponseEnvelope, SmsStatus

PHONE = "+911234567890"


def _message(request_id: str = "abc", phone: str = PHONE, message: str = "Hello") -> dict:
    return {"phone_number": phone, "message": message, "request_id": request_id}


async def responses(queue) -> list[SmsResponseEnvelope]:
    return [SmsResponseEnvelope.model_validate(m.payload)
            for m in await queue.peek(Topics.RESPONSE, count=100)]


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_delivered_marks_sent_and_emits_success(self, pipeline, store, queue, gateway):
        row = await pipeline.ledger.create(PHONE, "Hello", "abc")

        outcome = await pipeline.orchestrator.handle(_message())

        assert outcome == Delivered(request_id="abc", ledger_id=row.id)
        assert gateway.calls == [(PHONE, "Hello", "abc")]
        saved = await store.get_request(row.id)
        assert saved.status == SmsStatus.SENT
        assert saved.external_message_id == "abc"

        [envelope] = await responses(queue)
        assert envelope.is_success
        assert envelope.payload.request_id == "abc"
        assert envelope.payload.ledger_id == row.id
        assert envelope.payload.comments == "SMS sent successfully"

    @pytest.mark.asyncio
    async def test_correlates_by_request_id_not_latest_phone(self, pipeline, store):
        first = await pipeline.ledger.create(PHONE, "first", "req-1")
        second = await pipeline.ledger.create(PHONE, "second", "req-2")

        await pipeline.orchestrator.handle(_message("req-1", message="first"))

        assert (await store.get_request(first.id)).status == SmsStatus.SENT
        assert (await store.get_request(second.id)).status == SmsStatus.PENDING

    @pytest.mark.asyncio
    async def test_falls_back_to_latest_by_phone(self, pipeline, store):
        row = await store.create_request(PHONE, "Hello")   # no request_id on the row

        outcome = await pipeline.orchestrator.handle(_message("abc"))

        assert outcome.ledger_id == row.id
        saved = await store.get_request(row.id)
        assert saved.status == SmsStatus.SENT
        assert saved.external_message_id == "abc"

    @pytest.mark.asyncio
    async def test_redelivery_is_idempotent(self, pipeline, store, gateway):
        row = await pipeline.ledger.create(PHONE, "Hello", "abc")
        await pipeline.orchestrator.handle(_message())
        outcome = await pipeline.orchestrator.handle(_message())
        assert isinstance(outcome, Delivered)
        assert len(gateway.calls) == 2
        assert (await store.get_request(row.id)).status == SmsStatus.SENT

    @pytest.mark.asyncio
    async def test_missing_ledger_row_still_acknowledged(self, pipeline, queue):
        outcome = await pipeline.orchestrator.handle(_message())
        assert outcome == Delivered(request_id="abc", ledger_id=None)
        [envelope] = await responses(queue)
        assert envelope.is_success


class TestRejections:
    @pytest.mark.asyncio
    async def test_blank_request_id_skips_blacklist(self, pipeline, store, queue, gateway):
        store.is_blacklisted = AsyncMock(return_value=False)

        outcome = await pipeline.orchestrator.handle(_message(request_id="  "))

        assert outcome == Rejected(ErrorCodes.INVALID_REQUEST, "Request ID is required")
        store.is_blacklisted.assert_not_awaited()
        assert gateway.calls == []
        [envelope] = await responses(queue)
        assert envelope.payload.error_code == ErrorCodes.INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_malformed_payload_is_invalid_request(self, pipeline, gateway):
        outcome = await pipeline.orchestrator.handle({"message": "no phone"})
        assert isinstance(outcome, Rejected)
        assert outcome.reason == ErrorCodes.INVALID_REQUEST
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_blacklisted_never_reaches_gateway(self, pipeline, store, queue, gateway):
        row = await pipeline.ledger.create(PHONE, "Hello", "abc")
        await pipeline.gate.add([PHONE])

        outcome = await pipeline.orchestrator.handle(_message())

        assert outcome == Rejected(ErrorCodes.PHONE_NUMBER_BLACKLISTED, "Phone number is blacklisted")
        assert gateway.calls == []
        assert (await store.get_request(row.id)).status == SmsStatus.PENDING
        [envelope] = await responses(queue)
        assert envelope.payload.error_code == ErrorCodes.PHONE_NUMBER_BLACKLISTED
        assert envelope.partition_key is None

    @pytest.mark.asyncio
    async def test_gate_failure_fails_open(self, pipeline, store, gateway):
        store.is_blacklisted = AsyncMock(side_effect=ConnectionError("db down"))
        outcome = await pipeline.orchestrator.handle(_message())
        assert isinstance(outcome, Delivered)
        assert len(gateway.calls) == 1
        assert pipeline.gate.stats["degraded"] == 1

    @pytest.mark.asyncio
    async def test_rate_limited(self, settings, store, cache, search_store, queue, gateway):
        pipeline = build_pipeline(settings, store=store, cache=cache, search_store=search_store,
                                  queue=queue, gateway=gateway,
                                  rate_limiter=PhoneRateLimiter(per_minute=1, per_hour=10))
        assert isinstance(await pipeline.orchestrator.handle(_message("r1")), Delivered)
        outcome = await pipeline.orchestrator.handle(_message("r2"))
        assert isinstance(outcome, Rejected)
        assert outcome.reason == ErrorCodes.RATE_LIMIT_EXCEEDED
        assert outcome.message == f"Rate limit exceeded for {PHONE}"
        assert len(gateway.calls) == 1


class TestFailures:
    @pytest.mark.asyncio
    async def test_gateway_failure_marks_failed(self, pipeline, store, queue, gateway):
        gateway.success = False
        row = await pipeline.ledger.create(PHONE, "Hello", "abc")

        outcome = await pipeline.orchestrator.handle(_message())

        assert outcome == Errored(ErrorCodes.PROVIDER_ERROR, "Non-2xx response: 500")
        saved = await store.get_request(row.id)
        assert saved.status == SmsStatus.FAILED
        assert saved.failure_code == ErrorCodes.PROVIDER_ERROR
        assert saved.failure_comments == "Non-2xx response: 500"
        [envelope] = await responses(queue)
        assert envelope.payload.error_code == ErrorCodes.PROVIDER_ERROR

    @pytest.mark.asyncio
    async def test_provider_code_is_forwarded(self, pipeline, queue, gateway):
        gateway.success = False
        gateway.error_code = ErrorCodes.SMS_SEND_FAILED

        outcome = await pipeline.orchestrator.handle(_message())

        assert outcome == Errored(ErrorCodes.SMS_SEND_FAILED, "Non-2xx response: 500")
        [envelope] = await responses(queue)
        assert envelope.payload.error_code == ErrorCodes.SMS_SEND_FAILED

    @pytest.mark.asyncio
    async def test_gateway_exception_is_processing_error(self, pipeline, store, queue, gateway):
        gateway.raises = RuntimeError("socket exploded")
        row = await pipeline.ledger.create(PHONE, "Hello", "abc")

        outcome = await pipeline.orchestrator.handle(_message())

        assert outcome == Errored(ErrorCodes.PROCESSING_ERROR, "socket exploded")
        assert (await store.get_request(row.id)).status == SmsStatus.PENDING
        [envelope] = await responses(queue)
        assert envelope.payload.error_code == ErrorCodes.PROCESSING_ERROR
        assert envelope.payload.error_message == "socket exploded"

    @pytest.mark.asyncio
    async def test_ledger_failure_is_swallowed(self, pipeline, queue):
        await pipeline.ledger.create(PHONE, "Hello", "abc")
        pipeline.ledger.update_status = AsyncMock(side_effect=ConnectionError("db down"))

        outcome = await pipeline.orchestrator.handle(_message())

        assert isinstance(outcome, Delivered)
        [envelope] = await responses(queue)
        assert envelope.is_success

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_processing_error(self, pipeline, queue):
        pipeline.gate.check = AsyncMock(side_effect=RuntimeError("kaboom"))

        outcome = await pipeline.orchestrator.handle(_message())

        assert isinstance(outcome, Errored)
        assert outcome.reason == ErrorCodes.PROCESSING_ERROR
        [envelope] = await responses(queue)
        assert envelope.payload.error_message == "Error processing SMS request: kaboom"

    @pytest.mark.asyncio
    async def test_never_raises_even_if_response_publish_fails(self, pipeline):
        pipeline.producer.send_response = AsyncMock(side_effect=ConnectionError("queue down"))
        outcome = await pipeline.orchestrator.handle(_message())
        assert isinstance(outcome, Errored)
        assert outcome.reason == ErrorCodes.PROCESSING_ERROR
