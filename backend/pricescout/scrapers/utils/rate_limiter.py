"""Token bucket rate limiter for per-host request pacing."""

import asyncio
import time
from typing import Dict
from urllib.parse import urlparse

import structlog

logger = structlog.get_logger(__name__)


class TokenBucket:
    """Token bucket that starts full and refills at a constant rate.

    Each page load consumes one token; callers wait for a refill when the
    bucket is empty.
    """

    def __init__(self, rate: float, capacity: float):
        """Initialize token bucket.

        Args:
            rate: Tokens per second (e.g., 0.5 = 30 RPM)
            capacity: Maximum tokens in bucket (burst capacity)
        """
        self.rate = rate
        self.capacity = capacity
        self.tokens = capacity
        self.last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> float:
        """Take tokens from the bucket, sleeping until enough are available.

        Returns:
            Total seconds spent waiting
        """
        waited = 0.0
        async with self._lock:
            while True:
                self._refill()
                if self.tokens >= tokens:
                    self.tokens -= tokens
                    return waited
                wait_time = (tokens - self.tokens) / self.rate
                waited += wait_time
                await asyncio.sleep(wait_time)


class HostRateLimiter:
    """Per-host rate limiter shared by every crawl session.

    Sessions for the same platform run with different identities, but they
    still hit the same storefront, so pacing is keyed by host name rather
    than by session.
    """

    HOST_LIMITS_RPM = {
        "www.lazada.com.ph": 20,
        "my.lazada.com.ph": 20,
        "www.zalora.com.ph": 20,
        "shopee.ph": 12,
    }

    DEFAULT_RPM = 10

    def __init__(self, limits_rpm: Dict[str, int] = None):
        self._limits = dict(self.HOST_LIMITS_RPM)
        if limits_rpm:
            self._limits.update(limits_rpm)
        self._buckets: Dict[str, TokenBucket] = {}

    def _get_bucket(self, host: str) -> TokenBucket:
        if host not in self._buckets:
            rpm = self._limits.get(host, self.DEFAULT_RPM)
            # Capacity allows small bursts (10% of RPM, min 2)
            self._buckets[host] = TokenBucket(rate=rpm / 60.0, capacity=max(2.0, rpm / 10.0))
        return self._buckets[host]

    async def acquire(self, url: str) -> None:
        """Wait until a request to the host of ``url`` is allowed."""
        host = urlparse(url).netloc or url
        waited = await self._get_bucket(host).acquire()
        if waited > 0:
            logger.debug("rate_limit_wait", host=host, waited_seconds=round(waited, 2))

    def get_current_rate(self, host: str) -> float:
        """Return the configured limit for ``host`` in requests per minute."""
        return self._get_bucket(host).rate * 60.0


class NoRateLimiter(HostRateLimiter):
    """Rate limiter that never waits, for tests and local debugging."""

    async def acquire(self, url: str) -> None:
        return None
