"""Outbound SMS channel: provider gateway and send-side rate limiting."""
from channels.base import TokenBucketRateLimiter, PhoneRateLimiter
from channels.sms_gateway import SmsGateway, GatewayAdapter, RetryingGateway, build_payload

__all__ = [
    "TokenBucketRateLimiter", "PhoneRateLimiter",
    "SmsGateway", "GatewayAdapter", "RetryingGateway", "build_payload",
]
