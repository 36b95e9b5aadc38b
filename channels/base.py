"""
Channel infrastructure — Rate limiting for outbound sends.

Provides:
- TokenBucketRateLimiter: non-blocking token bucket with configurable burst
- PhoneRateLimiter: per-phone-number minute and hour buckets
"""
from __future__ import annotations

import time
import structlog
from typing import Any

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
#  TOKEN BUCKET RATE LIMITER
# ══════════════════════════════════════════════════════════════

class TokenBucketRateLimiter:
    """
    Token bucket rate limiter.
    Tokens refill at `rate` per second up to `burst` capacity.
    """

    def __init__(self, rate: float = 10.0, burst: int = 10):
        self.rate = rate
        self.burst = burst
        self._tokens: float = float(burst)
        self._last_refill = time.monotonic()

    def try_acquire(self) -> bool:
        """Take a token without waiting."""
        self._refill()
        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return True
        return False

    def available(self) -> float:
        self._refill()
        return self._tokens

    @property
    def is_full(self) -> bool:
        return self.available() >= self.burst

    def _refill(self):
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(self.burst, self._tokens + elapsed * self.rate)
        self._last_refill = now


# ══════════════════════════════════════════════════════════════
#  PER-PHONE LIMITER
# ══════════════════════════════════════════════════════════════

class PhoneRateLimiter:
    """
    Two token buckets per phone number: `per_minute` sends refilling over
    a minute and `per_hour` sends refilling over an hour. A send is allowed
    only when both buckets have a token; a rejected send consumes neither.

    Every `sweep_interval` calls, numbers whose buckets have refilled to
    capacity are forgotten. A fresh pair of full buckets behaves the same,
    so tracking stays proportional to recently active numbers.
    """

    def __init__(self, per_minute: int = 100, per_hour: int = 1000,
                 sweep_interval: int = 1000):
        self.per_minute = per_minute
        self.per_hour = per_hour
        self.sweep_interval = max(1, sweep_interval)
        self._buckets: dict[str, tuple[TokenBucketRateLimiter, TokenBucketRateLimiter]] = {}
        self._rejected = 0
        self._calls = 0

    def _for(self, phone_number: str) -> tuple[TokenBucketRateLimiter, TokenBucketRateLimiter]:
        buckets = self._buckets.get(phone_number)
        if buckets is None:
            buckets = (
                TokenBucketRateLimiter(rate=self.per_minute / 60.0, burst=self.per_minute),
                TokenBucketRateLimiter(rate=self.per_hour / 3600.0, burst=self.per_hour),
            )
            self._buckets[phone_number] = buckets
        return buckets

    def allow(self, phone_number: str) -> bool:
        self._calls += 1
        if self._calls % self.sweep_interval == 0:
            self.sweep()

        minute, hour = self._for(phone_number)
        if minute.available() < 1.0 or hour.available() < 1.0:
            self._rejected += 1
            logger.warning("sms_rate_limited", phone_number=phone_number)
            return False
        minute.try_acquire()
        hour.try_acquire()
        return True

    def sweep(self) -> int:
        """Drop numbers whose buckets are both full. Returns how many were dropped."""
        idle = [phone for phone, (minute, hour) in self._buckets.items()
                if minute.is_full and hour.is_full]
        for phone in idle:
            del self._buckets[phone]
        if idle:
            logger.debug("rate_limiter_swept", dropped=len(idle), tracked=len(self._buckets))
        return len(idle)

    def stats(self) -> dict[str, Any]:
        return {"tracked_numbers": len(self._buckets), "rejected": self._rejected}
