"""
SMS Gateway — The only component that talks to the SMS provider.

Provides:
- SmsGateway: the send interface the pipeline depends on
- GatewayAdapter: one awaited HTTP POST per send, normalized to a GatewayOutcome
- RetryingGateway: optional tenacity wrapper, wired only when retries are enabled

Provider contract:
  POST <provider.url>
  headers: {"key": <provider.key>}
  body: [{"deliverychannel": "sms",
          "channels": {"sms": {"text": <message>}},
          "destination": [{"msisdn": [<phone>], "correlationId": <request_id>}]}]
Any 2xx is an acceptance. The request_id doubles as the external message id.
"""
from __future__ import annotations

import abc
import structlog
from typing import Any, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_fixed

from core.errors import ErrorCodes, ValidationError
from models.schemas import GatewayOutcome

logger = structlog.get_logger()


class SmsGateway(abc.ABC):

    @abc.abstractmethod
    async def send(self, phone_number: str, message: str, request_id: str) -> GatewayOutcome:
        ...

    async def close(self) -> None:
        return None


def build_payload(phone_number: str, message: str, request_id: str) -> list[dict[str, Any]]:
    return [{
        "deliverychannel": "sms",
        "channels": {"sms": {"text": message}},
        "destination": [{"msisdn": [phone_number], "correlationId": request_id}],
    }]


class GatewayAdapter(SmsGateway):
    """httpx client for the provider's JSON send endpoint."""

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        return self._client

    async def send(self, phone_number: str, message: str, request_id: str) -> GatewayOutcome:
        if request_id is None or not request_id.strip():
            raise ValueError("Request ID cannot be blank")
        if not message or not message.strip():
            raise ValidationError("Message cannot be empty")

        logger.info("sms_provider_send", phone_number=phone_number, request_id=request_id)
        client = await self._get_client()
        try:
            resp = await client.post(
                self.url,
                json=build_payload(phone_number, message, request_id),
                headers={"key": self.api_key},
                timeout=self.timeout_seconds,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error("sms_provider_unreachable", request_id=request_id,
                         error=str(e) or type(e).__name__)
            return GatewayOutcome(
                success=False,
                request_id=request_id,
                comments="Failed to send SMS",
                error_code=ErrorCodes.PROVIDER_ERROR,
                error_message=f"Provider call failed: {str(e) or type(e).__name__}",
            )

        if resp.is_success:
            logger.info("sms_provider_accepted", phone_number=phone_number, request_id=request_id)
            return GatewayOutcome(
                success=True,
                request_id=request_id,
                comments="SMS sent successfully",
            )

        logger.error("sms_provider_rejected", request_id=request_id,
                     status=resp.status_code, body=resp.text[:500])
        return GatewayOutcome(
            success=False,
            request_id=request_id,
            comments="Failed to send SMS",
            error_code=ErrorCodes.PROVIDER_ERROR,
            error_message=f"Non-2xx response: {resp.status_code}",
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class RetryingGateway(SmsGateway):
    """
    Re-sends while the provider returns a failure outcome, up to
    max_attempts, with a fixed delay. Exceptions are not retried.
    After the last attempt the final failure outcome is returned.
    """

    def __init__(self, inner: SmsGateway, max_attempts: int = 3, delay_seconds: float = 1.0):
        self.inner = inner
        self.max_attempts = max(1, max_attempts)
        self.delay_seconds = delay_seconds

    async def send(self, phone_number: str, message: str, request_id: str) -> GatewayOutcome:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay_seconds),
            retry=retry_if_result(lambda outcome: not outcome.success),
            retry_error_callback=lambda state: state.outcome.result(),
            before_sleep=lambda state: logger.warning(
                "sms_provider_retry", request_id=request_id, attempt=state.attempt_number,
            ),
        )
        return await retrying(self.inner.send, phone_number, message, request_id)

    async def close(self) -> None:
        await self.inner.close()
