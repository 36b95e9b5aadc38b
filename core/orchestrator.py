"""
Pipeline Orchestrator — Drives one request message through dispatch.

States:
  RECEIVED → VALIDATED → GATED → DISPATCHED → RECORDED → ACKNOWLEDGED

Every path ends in ACKNOWLEDGED with exactly one envelope published to the
response topic. handle() never raises; it returns Delivered, Rejected or
Errored, and the consumer acknowledges the message in every case
(best-effort processing, no poison-message loop).
"""
from __future__ import annotations

import structlog
from enum import Enum
from typing import Any, Optional, Union

from pydantic import ValidationError as PayloadValidationError

from channels.base import PhoneRateLimiter
from channels.sms_gateway import SmsGateway
from core.blacklist import BlacklistGate
from core.errors import (
    BlacklistRejection, ErrorCodes, GatewayError, NotificationError, ProcessingError,
    RateLimitExceeded, ValidationError,
)
from core.ledger import RequestLedger
from job_queue.producer import SmsProducer
from models.schemas import (
    Delivered, Errored, GatewayOutcome, ProcessingOutcome, Rejected,
    SmsRequestMessage, SmsResponseEnvelope, SmsStatus,
)

logger = structlog.get_logger()


class PipelineState(str, Enum):
    RECEIVED = "RECEIVED"
    VALIDATED = "VALIDATED"
    GATED = "GATED"
    DISPATCHED = "DISPATCHED"
    RECORDED = "RECORDED"
    ACKNOWLEDGED = "ACKNOWLEDGED"


class PipelineOrchestrator:

    def __init__(
        self,
        gate: BlacklistGate,
        gateway: SmsGateway,
        ledger: RequestLedger,
        producer: SmsProducer,
        rate_limiter: Optional[PhoneRateLimiter] = None,
    ):
        self.gate = gate
        self.gateway = gateway
        self.ledger = ledger
        self.producer = producer
        self.rate_limiter = rate_limiter

    async def handle(self, payload: Union[SmsRequestMessage, dict[str, Any]]) -> ProcessingOutcome:
        state = PipelineState.RECEIVED
        try:
            request = self._parse(payload)
            if request is None or not request.request_id.strip():
                return await self._reject(ValidationError("Request ID is required"))
            state = PipelineState.VALIDATED
            log = logger.bind(request_id=request.request_id, phone_number=request.phone_number)

            if self.rate_limiter and not self.rate_limiter.allow(request.phone_number):
                return await self._reject(RateLimitExceeded(request.phone_number))

            decision = await self.gate.check(request.phone_number)
            if decision.degraded:
                log.warning("blacklist_gate_failed_open")
            if decision.blocked:
                log.info("sms_blocked_by_blacklist")
                return await self._reject(BlacklistRejection(request.phone_number))
            state = PipelineState.GATED

            try:
                outcome = await self.gateway.send(request.phone_number, request.message,
                                                  request.request_id)
            except Exception as e:
                log.error("sms_gateway_raised", error=str(e))
                return await self._fail(ProcessingError(str(e)))
            state = PipelineState.DISPATCHED

            ledger_id = await self._record(request, outcome)
            state = PipelineState.RECORDED

            if outcome.success:
                await self._emit(SmsResponseEnvelope.success(
                    request_id=outcome.request_id,
                    comments=outcome.comments,
                    phone_number=request.phone_number,
                    ledger_id=ledger_id,
                ))
                log.info("sms_dispatched", ledger_id=ledger_id)
                return Delivered(request_id=outcome.request_id, ledger_id=ledger_id)

            error = GatewayError(outcome.error_message or outcome.comments,
                                 provider_code=outcome.error_code or ErrorCodes.PROVIDER_ERROR)
            log.warning("sms_dispatch_failed", ledger_id=ledger_id, error_code=error.provider_code)
            return await self._fail(error)

        except Exception as e:
            error = ProcessingError(f"Error processing SMS request: {e}")
            logger.error("sms_pipeline_error", state=state.value, error=str(e), exc_info=True)
            try:
                await self._emit(SmsResponseEnvelope.error(error.code, error.message))
            except Exception as publish_error:
                logger.error("sms_error_envelope_lost", error=str(publish_error))
            return Errored(error.code, error.message)

    @staticmethod
    def _parse(payload) -> Optional[SmsRequestMessage]:
        if isinstance(payload, SmsRequestMessage):
            return payload
        try:
            return SmsRequestMessage.model_validate(payload)
        except PayloadValidationError as e:
            logger.warning("sms_request_malformed", errors=e.error_count())
            return None

    async def _reject(self, error: NotificationError) -> Rejected:
        await self._emit(SmsResponseEnvelope.error(error.code, error.message))
        return Rejected(error.code, error.message)

    async def _fail(self, error: NotificationError) -> Errored:
        code = error.provider_code if isinstance(error, GatewayError) else error.code
        await self._emit(SmsResponseEnvelope.error(code, error.message))
        return Errored(code, error.message)

    async def _emit(self, envelope: SmsResponseEnvelope):
        await self.producer.send_response(envelope)
        logger.debug("pipeline_state", state=PipelineState.ACKNOWLEDGED.value,
                     success=envelope.is_success)

    async def _record(self, request: SmsRequestMessage, outcome: GatewayOutcome) -> Optional[int]:
        """Apply the gateway outcome to the ledger row. Failures are logged, not raised."""
        try:
            row = await self.ledger.find_by_request_id(request.request_id)
            if row is None:
                row = await self.ledger.find_latest_by_phone_number(request.phone_number)
        except Exception as e:
            logger.error("ledger_lookup_failed", request_id=request.request_id, error=str(e))
            return None

        if row is None:
            logger.warning("ledger_row_missing", request_id=request.request_id)
            return None

        try:
            if outcome.success:
                await self.ledger.update_status(
                    row.id, SmsStatus.SENT,
                    external_message_id=outcome.external_message_id,
                )
            else:
                await self.ledger.update_status(
                    row.id, SmsStatus.FAILED,
                    failure_code=outcome.error_code or ErrorCodes.PROVIDER_ERROR,
                    failure_comments=outcome.error_message,
                )
        except Exception as e:
            logger.error("ledger_update_failed", ledger_id=row.id, error=str(e))
        return row.id
