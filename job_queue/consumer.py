"""
Queue Consumer — Pulls SMS requests from the request topic and drives dispatch.

Runs W worker tasks inside the application process. Partition p of the
request topic belongs to worker p % W, so each partition is read by exactly
one worker and handled strictly in order; different workers run in parallel.
For horizontal scaling, deploy multiple processes with the same consumer_group.

Topology:
  ┌──────────────┐       ┌──────────────────┐       ┌─────────────┐
  │ Ingress API  │──pub──▶│ sms:request:<p>  │──────▶│  Worker     │
  └──────────────┘       │ (Redis Stream)   │       │  p % W      │
                         └──────────────────┘       └──────┬──────┘
                                                           │ orchestrator
                         ┌──────────────────┐              │
                         │ sms:response:<p> │◀── envelope ─┘
                         └──────────────────┘
Every message is acknowledged after handling, whatever the outcome.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Optional

from job_queue.message_queue import MessageQueue, QueueMessage, Topics, get_message_queue

logger = structlog.get_logger()


def assign_partitions(partitions: int, workers: int) -> dict[int, list[int]]:
    """worker index → partitions it owns. Workers without partitions are omitted."""
    workers = max(1, workers)
    assignment: dict[int, list[int]] = {}
    for p in range(partitions):
        assignment.setdefault(p % workers, []).append(p)
    return assignment


class SmsDispatchConsumer:
    """
    Consumes request messages and hands each to the pipeline orchestrator.

    Usage:
        consumer = SmsDispatchConsumer(orchestrator, queue, workers=2)
        await consumer.start_background()   # returns immediately, runs as tasks
        await consumer.drain()              # process whatever is queued now
        await consumer.stop()
    """

    def __init__(
        self,
        orchestrator,  # core.orchestrator.PipelineOrchestrator (circular import)
        queue: MessageQueue = None,
        topic: str = Topics.REQUEST,
        consumer_group: str = "sms-dispatch-workers",
        consumer_name: str = "sms-worker",
        workers: int = 1,
    ):
        self.orchestrator = orchestrator
        self.queue = queue or get_message_queue()
        self.topic = topic
        self.consumer_group = consumer_group
        self.consumer_name = consumer_name
        self.workers = max(1, workers)
        self.assignment = assign_partitions(self.queue.partitions, self.workers)
        self._tasks: list[asyncio.Task] = []

    async def start_background(self) -> list[asyncio.Task]:
        """Start one task per worker. Returns the task handles."""
        for worker, partitions in self.assignment.items():
            task = asyncio.create_task(self.queue.consume(
                topic=self.topic,
                partitions=partitions,
                handler=self._handle_message,
                consumer_group=self.consumer_group,
                consumer_name=f"{self.consumer_name}-{worker}",
            ))
            self._tasks.append(task)
        logger.info("sms_consumer_started",
                    group=self.consumer_group,
                    workers=len(self._tasks),
                    assignment=self.assignment)
        return list(self._tasks)

    async def stop(self):
        """Gracefully stop all worker tasks."""
        self.queue.stop()
        for task in self._tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        logger.info("sms_consumer_stopped")

    async def drain(self, max_messages: Optional[int] = None) -> int:
        """
        Process everything currently queued, worker by worker, without
        blocking. Returns the number of messages handled.
        """
        handled = 0
        for worker, partitions in self.assignment.items():
            while max_messages is None or handled < max_messages:
                batch = await self.queue.read(
                    self.topic, partitions, self.consumer_group,
                    f"{self.consumer_name}-{worker}", count=10, block_ms=0,
                )
                if not batch:
                    break
                for message in batch:
                    await self.queue.handle_and_ack(message, self._handle_message,
                                                    self.consumer_group)
                    handled += 1
        return handled

    async def _handle_message(self, message: QueueMessage):
        logger.info("processing_sms_request",
                    partition=message.partition,
                    message_id=message.message_id,
                    key=message.key)
        outcome = await self.orchestrator.handle(message.payload)
        logger.info("sms_request_processed",
                    message_id=message.message_id,
                    outcome=type(outcome).__name__)
