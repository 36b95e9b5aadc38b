"""
Queue Producer — Publishes request messages and response envelopes.

Keying rules:
  request messages    → phone number (per-recipient ordering)
  success envelopes   → request_id
  error envelopes     → unkeyed (round-robin)
"""
from __future__ import annotations

import structlog

from job_queue.message_queue import MessageQueue, QueueMessage, Topics, get_message_queue
from models.schemas import SmsRequestMessage, SmsResponseEnvelope

logger = structlog.get_logger()


class SmsProducer:

    def __init__(
        self,
        queue: MessageQueue = None,
        request_topic: str = Topics.REQUEST,
        response_topic: str = Topics.RESPONSE,
    ):
        self.queue = queue or get_message_queue()
        self.request_topic = request_topic
        self.response_topic = response_topic

    async def send_request(self, message: SmsRequestMessage) -> QueueMessage:
        published = await self.queue.publish(
            self.request_topic,
            message.model_dump(mode="json"),
            key=message.phone_number,
        )
        logger.info("sms_request_published",
                    request_id=message.request_id,
                    phone_number=message.phone_number,
                    partition=published.partition)
        return published

    async def send_response(self, envelope: SmsResponseEnvelope) -> QueueMessage:
        published = await self.queue.publish(
            self.response_topic,
            envelope.model_dump(mode="json"),
            key=envelope.partition_key,
        )
        logger.info("sms_response_published",
                    success=envelope.is_success,
                    key=envelope.partition_key,
                    partition=published.partition)
        return published
