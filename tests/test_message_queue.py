"""Tests for the partitioned in-memory queue, the producer and the consumer."""
import asyncio
import zlib

import pytest

from job_queue.consumer import SmsDispatchConsumer, assign_partitions
from job_queue.message_queue import InMemoryMessageQueue, QueueMessage, Topics
from job_queue.producer import SmsProducer
from models.schemas import SmsRequestMessage, SmsResponseEnvelope


class TestPartitioning:
    def test_keyed_partition_is_crc32(self, queue):
        key = "+911234567890"
        assert queue.partition_for(Topics.REQUEST, key) == zlib.crc32(key.encode()) % 3

    def test_same_key_same_partition(self, queue):
        parts = {queue.partition_for(Topics.REQUEST, "+911234567890") for _ in range(10)}
        assert len(parts) == 1

    def test_unkeyed_is_round_robin(self, queue):
        parts = [queue.partition_for(Topics.RESPONSE, None) for _ in range(6)]
        assert parts == [0, 1, 2, 0, 1, 2]

    def test_round_robin_is_per_topic(self, queue):
        assert queue.partition_for("a", None) == 0
        assert queue.partition_for("b", None) == 0

    def test_partitions_must_be_positive(self):
        with pytest.raises(ValueError):
            InMemoryMessageQueue(partitions=0)


class TestQueueMessage:
    def test_redis_field_round_trip(self):
        msg = QueueMessage(topic="t", partition=1, payload={"a": 1}, key="k")
        back = QueueMessage.from_dict("t", 1, "5-0", msg.to_dict())
        assert back.payload == {"a": 1}
        assert back.key == "k"
        assert back.message_id == "5-0"

    def test_empty_key_becomes_none(self):
        msg = QueueMessage(topic="t", partition=0, payload={})
        assert QueueMessage.from_dict("t", 0, "1-0", msg.to_dict()).key is None


class TestInMemoryQueue:
    @pytest.mark.asyncio
    async def test_publish_read_ack(self, queue):
        published = await queue.publish(Topics.REQUEST, {"n": 1}, key="k")
        assert await queue.queue_length(Topics.REQUEST) == 1
        batch = await queue.read(Topics.REQUEST, [published.partition], block_ms=0)
        assert [m.payload for m in batch] == [{"n": 1}]
        await queue.ack(batch[0])
        assert queue.acked == batch
        assert await queue.queue_length(Topics.REQUEST) == 0

    @pytest.mark.asyncio
    async def test_order_preserved_within_partition(self, queue):
        for n in range(5):
            await queue.publish(Topics.REQUEST, {"n": n}, key="same-key")
        p = queue.partition_for(Topics.REQUEST, "same-key")
        batch = await queue.read(Topics.REQUEST, [p], count=10, block_ms=0)
        assert [m.payload["n"] for m in batch] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_read_only_owned_partitions(self, queue):
        msg = await queue.publish(Topics.REQUEST, {"n": 1}, key="k")
        others = [p for p in range(3) if p != msg.partition]
        assert await queue.read(Topics.REQUEST, others, block_ms=0) == []

    @pytest.mark.asyncio
    async def test_read_blocks_until_timeout(self, queue):
        loop = asyncio.get_running_loop()
        started = loop.time()
        assert await queue.read(Topics.REQUEST, [0], block_ms=50) == []
        assert loop.time() - started >= 0.04

    @pytest.mark.asyncio
    async def test_peek_does_not_consume(self, queue):
        await queue.publish(Topics.RESPONSE, {"n": 1})
        await queue.publish(Topics.RESPONSE, {"n": 2})
        assert len(await queue.peek(Topics.RESPONSE)) == 2
        assert await queue.queue_length(Topics.RESPONSE) == 2

    @pytest.mark.asyncio
    async def test_payload_is_copied(self, queue):
        payload = {"n": 1}
        msg = await queue.publish(Topics.REQUEST, payload, key="k")
        payload["n"] = 2
        assert msg.payload == {"n": 1}

    @pytest.mark.asyncio
    async def test_handler_error_still_acks(self, queue):
        msg = await queue.publish(Topics.REQUEST, {"n": 1}, key="k")

        async def boom(message):
            raise RuntimeError("handler failed")

        await queue.handle_and_ack(msg, boom)
        assert queue.acked == [msg]


class TestProducer:
    @pytest.mark.asyncio
    async def test_request_keyed_by_phone(self, queue):
        producer = SmsProducer(queue)
        msg = await producer.send_request(SmsRequestMessage(
            phone_number="+911234567890", message="Hello", request_id="abc"))
        assert msg.key == "+911234567890"
        assert msg.topic == Topics.REQUEST
        assert msg.payload == {"phone_number": "+911234567890", "message": "Hello",
                               "request_id": "abc"}

    @pytest.mark.asyncio
    async def test_success_keyed_by_request_id(self, queue):
        producer = SmsProducer(queue)
        msg = await producer.send_response(SmsResponseEnvelope.success("abc", "ok"))
        assert msg.key == "abc"
        assert msg.partition == zlib.crc32(b"abc") % 3

    @pytest.mark.asyncio
    async def test_error_unkeyed(self, queue):
        producer = SmsProducer(queue)
        msg = await producer.send_response(SmsResponseEnvelope.error("INVALID_REQUEST", "x"))
        assert msg.key is None
        assert msg.payload["payload"]["kind"] == "error"


class RecordingOrchestrator:
    def __init__(self, delay: float = 0.0):
        self.seen: list[dict] = []
        self.delay = delay

    async def handle(self, payload):
        if self.delay:
            await asyncio.sleep(self.delay)
        self.seen.append(payload)
        return None


class TestConsumer:
    def test_assignment_is_p_mod_w(self):
        assert assign_partitions(4, 2) == {0: [0, 2], 1: [1, 3]}
        assert assign_partitions(3, 1) == {0: [0, 1, 2]}

    def test_more_workers_than_partitions(self):
        assert assign_partitions(2, 5) == {0: [0], 1: [1]}

    @pytest.mark.asyncio
    async def test_drain_handles_and_acks_everything(self, queue):
        orchestrator = RecordingOrchestrator()
        consumer = SmsDispatchConsumer(orchestrator, queue, workers=2)
        for n in range(6):
            await queue.publish(Topics.REQUEST, {"n": n}, key=f"k{n}")
        assert await consumer.drain() == 6
        assert sorted(p["n"] for p in orchestrator.seen) == list(range(6))
        assert len(queue.acked) == 6
        assert await queue.queue_length(Topics.REQUEST) == 0

    @pytest.mark.asyncio
    async def test_per_key_order_under_drain(self, queue):
        orchestrator = RecordingOrchestrator()
        consumer = SmsDispatchConsumer(orchestrator, queue, workers=3)
        for n in range(5):
            await queue.publish(Topics.REQUEST, {"n": n}, key="+911234567890")
        await consumer.drain()
        assert [p["n"] for p in orchestrator.seen] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_background_workers_process_and_stop(self, queue):
        orchestrator = RecordingOrchestrator()
        consumer = SmsDispatchConsumer(orchestrator, queue, workers=2)
        tasks = await consumer.start_background()
        assert len(tasks) == 2
        for n in range(4):
            await queue.publish(Topics.REQUEST, {"n": n}, key=f"key-{n}")

        for _ in range(100):
            if len(orchestrator.seen) == 4:
                break
            await asyncio.sleep(0.02)

        await consumer.stop()
        assert len(orchestrator.seen) == 4
        assert all(t.done() for t in tasks)
