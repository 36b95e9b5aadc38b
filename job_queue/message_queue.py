"""
Message Queue — Partitioned topics with Redis Streams and in-memory backends.

Topic Topology (each topic has N partitions):
  sms:request     — Accepted SMS requests awaiting dispatch (keyed by phone number)
  sms:response    — Dispatch outcomes (success keyed by request_id, errors unkeyed)

Partitioning:
  keyed messages   → crc32(key) % N, so one key always lands on one partition
  unkeyed messages → round-robin per topic
Ordering holds within a partition only. Delivery is at-least-once.

Message Schema (Redis stream fields):
  {
      "message_id":  backend-assigned id (stream entry id in Redis),
      "key":         partition key or "",
      "payload":     JSON-encoded body,
      "created_at":  ISO timestamp when the message was published,
  }
"""
from __future__ import annotations

import asyncio
import itertools
import json
import time
import uuid
import zlib
import structlog
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Message Model
# ──────────────────────────────────────────────────────────────

@dataclass
class QueueMessage:
    """A unit of work on a topic partition."""
    topic: str
    partition: int
    payload: dict[str, Any]
    key: Optional[str] = None
    message_id: str = ""
    created_at: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> dict[str, str]:
        return {
            "key": self.key or "",
            "payload": json.dumps(self.payload),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, topic: str, partition: int, message_id: str,
                  data: dict[str, Any]) -> QueueMessage:
        payload = data.get("payload", "{}")
        if isinstance(payload, str):
            payload = json.loads(payload)
        return cls(
            topic=topic,
            partition=partition,
            payload=payload,
            key=data.get("key") or None,
            message_id=message_id,
            created_at=data.get("created_at", ""),
        )


# ──────────────────────────────────────────────────────────────
#  Topic Names
# ──────────────────────────────────────────────────────────────

class Topics:
    REQUEST = "sms:request"
    RESPONSE = "sms:response"


def stream_name(topic: str, partition: int) -> str:
    return f"{topic}:{partition}"


MessageHandler = Callable[[QueueMessage], Awaitable[Any]]


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class MessageQueue(ABC):
    """Abstract partitioned message queue interface."""

    def __init__(self, partitions: int = 3):
        if partitions < 1:
            raise ValueError("partitions must be >= 1")
        self.partitions = partitions
        self._round_robin: dict[str, itertools.count] = {}
        self._running = False

    def partition_for(self, topic: str, key: Optional[str]) -> int:
        """Stable partition for a key; round-robin for unkeyed messages."""
        if key:
            return zlib.crc32(key.encode("utf-8")) % self.partitions
        counter = self._round_robin.setdefault(topic, itertools.count())
        return next(counter) % self.partitions

    @abstractmethod
    async def connect(self):
        """Establish connection to the queue backend."""
        ...

    @abstractmethod
    async def close(self):
        """Gracefully shut down."""
        ...

    @abstractmethod
    async def publish(self, topic: str, payload: dict[str, Any],
                      key: Optional[str] = None) -> QueueMessage:
        """Append a message to the partition chosen for its key."""
        ...

    @abstractmethod
    async def read(
        self,
        topic: str,
        partitions: Iterable[int],
        consumer_group: str = "default",
        consumer_name: str = "",
        count: int = 10,
        block_ms: int = 2000,
    ) -> list[QueueMessage]:
        """
        Fetch up to `count` undelivered messages from the given partitions,
        in partition order. Waits up to block_ms when nothing is ready;
        block_ms=0 returns immediately.
        """
        ...

    @abstractmethod
    async def ack(self, message: QueueMessage, consumer_group: str = "default"):
        """Acknowledge processing of a message, advancing the group's offset."""
        ...

    @abstractmethod
    async def queue_length(self, topic: str, partition: Optional[int] = None) -> int:
        """Messages held on a topic (or one partition of it)."""
        ...

    @abstractmethod
    async def peek(self, topic: str, partition: Optional[int] = None,
                   count: int = 10) -> list[QueueMessage]:
        """Inspect messages without consuming them."""
        ...

    async def consume(
        self,
        topic: str,
        partitions: Iterable[int],
        handler: MessageHandler,
        consumer_group: str = "default",
        consumer_name: str = "",
        batch_size: int = 10,
    ):
        """
        Read and handle messages until stopped. Messages are handled one at
        a time and acknowledged whether or not the handler succeeds.
        """
        partitions = list(partitions)
        if not consumer_name:
            consumer_name = f"worker_{uuid.uuid4().hex[:8]}"

        self._running = True
        logger.info("consumer_started",
                    topic=topic,
                    partitions=partitions,
                    group=consumer_group,
                    consumer=consumer_name)

        while self._running:
            try:
                batch = await self.read(topic, partitions, consumer_group,
                                        consumer_name, count=batch_size)
                for message in batch:
                    await self.handle_and_ack(message, handler, consumer_group)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("consumer_error", topic=topic, error=str(e))
                await asyncio.sleep(1)

    async def handle_and_ack(self, message: QueueMessage, handler: MessageHandler,
                             consumer_group: str = "default"):
        try:
            await handler(message)
        except Exception as e:
            logger.error("message_handler_error",
                         topic=message.topic,
                         partition=message.partition,
                         message_id=message.message_id,
                         error=str(e))
        finally:
            await self.ack(message, consumer_group)

    def stop(self):
        self._running = False


# ──────────────────────────────────────────────────────────────
#  Redis Streams Implementation
# ──────────────────────────────────────────────────────────────

class RedisMessageQueue(MessageQueue):
    """
    Production queue backed by Redis Streams.

    - One stream per topic partition: "<topic>:<partition>"
    - Consumer groups track the acknowledged offset per partition
    """

    def __init__(self, redis_url: str = "redis://localhost:6379", partitions: int = 3):
        super().__init__(partitions)
        self._redis_url = redis_url
        self._redis = None
        self._groups: set[tuple[str, str]] = set()

    async def connect(self):
        import redis.asyncio as aioredis
        self._redis = aioredis.from_url(
            self._redis_url,
            decode_responses=True,
            max_connections=20,
        )
        await self._redis.ping()
        logger.info("redis_queue_connected", url=self._redis_url, partitions=self.partitions)

    async def close(self):
        self._running = False
        if self._redis:
            await self._redis.close()
            self._redis = None

    async def _ensure_group(self, stream: str, group: str):
        """Create consumer group if it doesn't exist."""
        if (stream, group) in self._groups:
            return
        from redis.exceptions import ResponseError
        try:
            await self._redis.xgroup_create(stream, group, id="0", mkstream=True)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
        self._groups.add((stream, group))

    async def publish(self, topic: str, payload: dict[str, Any],
                      key: Optional[str] = None) -> QueueMessage:
        partition = self.partition_for(topic, key)
        message = QueueMessage(topic=topic, partition=partition, payload=payload, key=key)
        message.message_id = await self._redis.xadd(stream_name(topic, partition), message.to_dict())
        logger.info("message_published",
                    topic=topic,
                    partition=partition,
                    message_id=message.message_id)
        return message

    async def read(
        self,
        topic: str,
        partitions: Iterable[int],
        consumer_group: str = "default",
        consumer_name: str = "",
        count: int = 10,
        block_ms: int = 2000,
    ) -> list[QueueMessage]:
        streams = {}
        for partition in partitions:
            name = stream_name(topic, partition)
            await self._ensure_group(name, consumer_group)
            streams[name] = ">"
        if not streams:
            return []

        response = await self._redis.xreadgroup(
            groupname=consumer_group,
            consumername=consumer_name or "default",
            streams=streams,
            count=count,
            block=block_ms or None,
        )

        messages = []
        for name, entries in response or []:
            partition = int(name.rsplit(":", 1)[1])
            for entry_id, fields in entries:
                messages.append(QueueMessage.from_dict(topic, partition, entry_id, fields))
        return messages

    async def ack(self, message: QueueMessage, consumer_group: str = "default"):
        await self._redis.xack(stream_name(message.topic, message.partition),
                               consumer_group, message.message_id)
        logger.debug("message_acked",
                     topic=message.topic,
                     partition=message.partition,
                     message_id=message.message_id)

    def _partitions(self, partition: Optional[int]) -> list[int]:
        return [partition] if partition is not None else list(range(self.partitions))

    async def queue_length(self, topic: str, partition: Optional[int] = None) -> int:
        total = 0
        for p in self._partitions(partition):
            total += await self._redis.xlen(stream_name(topic, p))
        return total

    async def peek(self, topic: str, partition: Optional[int] = None,
                   count: int = 10) -> list[QueueMessage]:
        messages = []
        for p in self._partitions(partition):
            entries = await self._redis.xrange(stream_name(topic, p), count=count)
            messages.extend(QueueMessage.from_dict(topic, p, entry_id, fields)
                            for entry_id, fields in entries)
        return messages[:count]


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

class InMemoryMessageQueue(MessageQueue):
    """
    Development/test queue backed by one asyncio.Queue per topic partition.
    Single-process only; every reader shares one offset per partition.
    """

    def __init__(self, partitions: int = 3, poll_interval: float = 0.05):
        super().__init__(partitions)
        self.poll_interval = poll_interval
        self._queues: dict[tuple[str, int], asyncio.Queue] = {}
        self._ids = itertools.count(1)
        self.acked: list[QueueMessage] = []

    def _get_queue(self, topic: str, partition: int) -> asyncio.Queue:
        if (topic, partition) not in self._queues:
            self._queues[(topic, partition)] = asyncio.Queue()
        return self._queues[(topic, partition)]

    async def connect(self):
        self._running = True
        logger.info("inmemory_queue_connected", partitions=self.partitions)

    async def close(self):
        self._running = False

    async def publish(self, topic: str, payload: dict[str, Any],
                      key: Optional[str] = None) -> QueueMessage:
        partition = self.partition_for(topic, key)
        message = QueueMessage(
            topic=topic,
            partition=partition,
            payload=json.loads(json.dumps(payload)),
            key=key,
            message_id=f"{next(self._ids)}-0",
        )
        await self._get_queue(topic, partition).put(message)
        logger.info("message_published",
                    topic=topic,
                    partition=partition,
                    message_id=message.message_id)
        return message

    def _drain(self, topic: str, partitions: list[int], count: int) -> list[QueueMessage]:
        messages = []
        for partition in partitions:
            q = self._get_queue(topic, partition)
            while not q.empty() and len(messages) < count:
                messages.append(q.get_nowait())
        return messages

    async def read(
        self,
        topic: str,
        partitions: Iterable[int],
        consumer_group: str = "default",
        consumer_name: str = "",
        count: int = 10,
        block_ms: int = 2000,
    ) -> list[QueueMessage]:
        partitions = list(partitions)
        deadline = time.monotonic() + block_ms / 1000.0
        while True:
            messages = self._drain(topic, partitions, count)
            if messages or time.monotonic() >= deadline:
                return messages
            await asyncio.sleep(self.poll_interval)

    async def ack(self, message: QueueMessage, consumer_group: str = "default"):
        self.acked.append(message)

    def _partitions(self, partition: Optional[int]) -> list[int]:
        return [partition] if partition is not None else list(range(self.partitions))

    async def queue_length(self, topic: str, partition: Optional[int] = None) -> int:
        return sum(self._get_queue(topic, p).qsize() for p in self._partitions(partition))

    async def peek(self, topic: str, partition: Optional[int] = None,
                   count: int = 10) -> list[QueueMessage]:
        items = []
        # asyncio.Queue doesn't support peek natively — drain and re-add
        for p in self._partitions(partition):
            q = self._get_queue(topic, p)
            held = []
            while not q.empty():
                held.append(q.get_nowait())
            for item in held:
                q.put_nowait(item)
            items.extend(held)
        return items[:count]


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

_instance: Optional[MessageQueue] = None


def create_message_queue(queue_config: dict[str, Any] = None) -> MessageQueue:
    """Factory: create the appropriate queue backend."""
    global _instance
    if _instance:
        return _instance

    config = queue_config or {}
    backend = config.get("backend", "memory")
    partitions = int(config.get("partitions", 3))

    if backend == "redis":
        url = config.get("redis_url", "redis://localhost:6379")
        _instance = RedisMessageQueue(redis_url=url, partitions=partitions)
    else:
        _instance = InMemoryMessageQueue(partitions=partitions)

    logger.info("message_queue_created", backend=backend, partitions=partitions)
    return _instance


def get_message_queue() -> MessageQueue:
    """Return the singleton queue instance."""
    global _instance
    if _instance is None:
        _instance = create_message_queue()
    return _instance


def reset_message_queue() -> None:
    """Reset the singleton (for testing)."""
    global _instance
    _instance = None
