"""
Pipeline assembly — Wires stores, cache, queue and services from Settings.

Every collaborator can be injected; anything not passed is built from
configuration through the backend factories.
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass
from typing import Optional

from cache.backends import Cache, create_cache
from channels.base import PhoneRateLimiter
from channels.sms_gateway import GatewayAdapter, RetryingGateway, SmsGateway
from config.settings import Settings, get_settings
from core.blacklist import BlacklistGate
from core.ledger import RequestLedger
from core.orchestrator import PipelineOrchestrator
from core.projector import SearchProjector
from core.service import SmsService
from database.store_base import BaseNotificationStore
from database.store_factory import create_store
from job_queue.consumer import SmsDispatchConsumer
from job_queue.message_queue import MessageQueue, create_message_queue
from job_queue.producer import SmsProducer
from search.search_base import BaseSearchStore
from search.search_factory import create_search_store

logger = structlog.get_logger()


@dataclass
class Pipeline:
    settings: Settings
    store: BaseNotificationStore
    cache: Cache
    search_store: BaseSearchStore
    queue: MessageQueue
    gateway: SmsGateway
    gate: BlacklistGate
    projector: SearchProjector
    ledger: RequestLedger
    producer: SmsProducer
    orchestrator: PipelineOrchestrator
    consumer: SmsDispatchConsumer
    service: SmsService

    @property
    def uses_sql(self) -> bool:
        return (self.settings.database.store_backend == "sql"
                or self.settings.search.backend == "sql")

    async def close(self):
        await self.consumer.stop()
        await self.gateway.close()
        await self.queue.close()
        await self.cache.close()


def build_gateway(settings: Settings) -> SmsGateway:
    gateway: SmsGateway = GatewayAdapter(
        url=settings.provider.url,
        api_key=settings.provider.key,
        timeout_seconds=settings.provider.timeout_seconds,
    )
    if settings.sms.retry_enabled:
        gateway = RetryingGateway(
            gateway,
            max_attempts=settings.sms.max_retries,
            delay_seconds=settings.sms.retry_delay_ms / 1000.0,
        )
    return gateway


def build_pipeline(
    settings: Optional[Settings] = None,
    *,
    store: Optional[BaseNotificationStore] = None,
    cache: Optional[Cache] = None,
    search_store: Optional[BaseSearchStore] = None,
    queue: Optional[MessageQueue] = None,
    gateway: Optional[SmsGateway] = None,
    rate_limiter: Optional[PhoneRateLimiter] = None,
) -> Pipeline:
    settings = settings or get_settings()

    store = store or create_store({"store_backend": settings.database.store_backend})
    cache = cache or create_cache({
        "backend": settings.cache.backend,
        "redis_url": settings.cache.redis_url,
    })
    search_store = search_store or create_search_store({"backend": settings.search.backend})
    queue = queue or create_message_queue({
        "backend": settings.queue.backend,
        "redis_url": settings.queue.redis_url,
        "partitions": settings.queue.partitions,
    })
    gateway = gateway or build_gateway(settings)
    if rate_limiter is None and settings.sms.rate_limit.enabled:
        rate_limiter = PhoneRateLimiter(
            per_minute=settings.sms.rate_limit.per_minute,
            per_hour=settings.sms.rate_limit.per_hour,
        )

    gate = BlacklistGate(store, cache, ttl_seconds=settings.cache.blacklist_ttl_seconds)
    projector = SearchProjector(search_store)
    ledger = RequestLedger(store, cache, projector, ttl_seconds=settings.cache.request_ttl_seconds)
    producer = SmsProducer(
        queue,
        request_topic=settings.queue.request_topic,
        response_topic=settings.queue.response_topic,
    )
    orchestrator = PipelineOrchestrator(gate, gateway, ledger, producer, rate_limiter=rate_limiter)
    consumer = SmsDispatchConsumer(
        orchestrator,
        queue,
        topic=settings.queue.request_topic,
        consumer_group=settings.queue.consumer_group,
        workers=settings.queue.workers,
    )
    service = SmsService(
        ledger, producer, projector, gate,
        max_message_length=settings.sms.max_message_length,
    )

    logger.info("pipeline_built",
                store=type(store).__name__,
                cache=type(cache).__name__,
                search=type(search_store).__name__,
                queue=type(queue).__name__,
                rate_limited=rate_limiter is not None,
                retrying=isinstance(gateway, RetryingGateway))

    return Pipeline(
        settings=settings,
        store=store,
        cache=cache,
        search_store=search_store,
        queue=queue,
        gateway=gateway,
        gate=gate,
        projector=projector,
        ledger=ledger,
        producer=producer,
        orchestrator=orchestrator,
        consumer=consumer,
        service=service,
    )
