"""Rate limiting using token bucket algorithm."""

import asyncio
import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any

from .catalog_types import Endpoint, endpoint_key
from .config import EndpointRateLimit, RateLimitingConfig
from .exceptions import QuotaExceededError
from .metrics import Metrics

logger = logging.getLogger(__name__)

# Sleep slightly past the computed wait so the bucket has refilled on wake-up
WAIT_PADDING = 0.01


@dataclass
class TokenBucket:
    """Token bucket for rate limiting."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def full(cls, refill_rate: float, max_tokens: float) -> "TokenBucket":
        """Create a bucket filled to capacity."""
        return cls(
            max_tokens=float(max_tokens),
            refill_rate=float(refill_rate),
            tokens=float(max_tokens),
            last_refill=time.monotonic(),
        )

    def consume(self, tokens: float = 1.0) -> bool:
        """
        Try to consume tokens from the bucket.

        Args:
            tokens: Number of tokens to consume

        Returns:
            True if tokens were consumed, False otherwise
        """
        self._refill()

        if self.tokens >= tokens:
            self.tokens -= tokens
            return True

        return False

    def refund(self, tokens: float = 1.0) -> None:
        """Give back tokens consumed by an admission that was rolled back."""
        self.tokens = min(self.max_tokens, self.tokens + tokens)

    def _refill(self) -> None:
        """Refill tokens based on elapsed time."""
        now = time.monotonic()
        elapsed = now - self.last_refill

        # Add tokens based on elapsed time
        new_tokens = elapsed * self.refill_rate
        self.tokens = min(self.max_tokens, self.tokens + new_tokens)
        self.last_refill = now

    def time_until_available(self, tokens: float = 1.0) -> float:
        """
        Calculate seconds until enough tokens are available.

        Args:
            tokens: Number of tokens needed

        Returns:
            Seconds to wait, or 0 if tokens are available now
        """
        self._refill()

        if self.tokens >= tokens:
            return 0.0

        tokens_needed = tokens - self.tokens
        return tokens_needed / self.refill_rate

    def reset(self) -> None:
        self.tokens = self.max_tokens
        self.last_refill = time.monotonic()


class RateLimiter:
    """
    Thread-safe rate limiter using token bucket algorithm.

    One global bucket plus lazily created per-endpoint buckets. An admission
    consumes from both; if the endpoint bucket is empty the global token is
    refunded.
    """

    def __init__(self, config: RateLimitingConfig | None = None, metrics: Metrics | None = None):
        self.config = config or RateLimitingConfig()
        self.enabled = self.config.enabled
        self.metrics = metrics or Metrics(enabled=False)
        self.global_bucket = TokenBucket.full(
            self.config.requests_per_second, self.config.burst_size
        )
        self.endpoint_configs: dict[str, EndpointRateLimit] = dict(self.config.per_endpoint)
        self.endpoint_buckets: dict[str, TokenBucket] = {}
        self._lock = Lock()

    def configure_endpoint(
        self,
        endpoint: Endpoint | str,
        requests_per_second: float,
        burst_size: int,
    ) -> None:
        """
        Register or replace the limit for an endpoint.

        Args:
            endpoint: Endpoint identifier
            requests_per_second: Refill rate
            burst_size: Bucket capacity
        """
        key = endpoint_key(endpoint)
        with self._lock:
            self.endpoint_configs[key] = EndpointRateLimit(
                requests_per_second=requests_per_second, burst_size=burst_size
            )
            self.endpoint_buckets.pop(key, None)

    def _endpoint_bucket(self, key: str) -> TokenBucket | None:
        """Get or lazily create the bucket for an endpoint. Caller holds the lock."""
        bucket = self.endpoint_buckets.get(key)
        if bucket is None:
            limit = self.endpoint_configs.get(key)
            if limit is None:
                return None
            bucket = TokenBucket.full(limit.requests_per_second, limit.burst_size)
            self.endpoint_buckets[key] = bucket
        return bucket

    def check_limit(self, endpoint: Endpoint | str) -> bool:
        """
        Try to admit one request.

        Args:
            endpoint: Endpoint identifier

        Returns:
            True if the request was admitted
        """
        if not self.enabled:
            return True

        key = endpoint_key(endpoint)
        with self._lock:
            if not self.global_bucket.consume():
                return False

            bucket = self._endpoint_bucket(key)
            if bucket is not None and not bucket.consume():
                self.global_bucket.refund()
                return False

            return True

    def time_until_available(self, endpoint: Endpoint | str) -> float:
        """Seconds until both the global and the endpoint bucket have a token."""
        key = endpoint_key(endpoint)
        with self._lock:
            wait = self.global_bucket.time_until_available()
            bucket = self._endpoint_bucket(key)
            if bucket is not None:
                wait = max(wait, bucket.time_until_available())
            return wait

    async def wait_if_needed(self, endpoint: Endpoint | str) -> float:
        """
        Wait until a request to the endpoint is admitted.

        Args:
            endpoint: Endpoint identifier

        Returns:
            Seconds spent waiting

        Raises:
            QuotaExceededError: If no token is admitted within config.max_wait
        """
        if not self.enabled or self.check_limit(endpoint):
            return 0.0

        key = endpoint_key(endpoint)
        self.metrics.increment("ratelimit.waits", tags={"endpoint": key})
        waited = 0.0

        # Concurrent waiters wake together and race for the refilled tokens;
        # the ones that lose go back to waiting.
        while True:
            wait = self.time_until_available(key)
            if waited + wait > self.config.max_wait:
                logger.warning(
                    "Rate limit for %s not cleared within %.1fs", key, self.config.max_wait
                )
                raise QuotaExceededError(key, retry_after=wait)

            logger.debug("Rate limit reached for %s, waiting %.3fs", key, wait)
            await asyncio.sleep(wait + WAIT_PADDING)
            waited += wait + WAIT_PADDING

            if self.check_limit(key):
                return waited

    def get_remaining(self, endpoint: Endpoint | str | None = None) -> dict[str, Any]:
        """
        Get remaining tokens globally and for an endpoint.

        Args:
            endpoint: Optional endpoint identifier

        Returns:
            Dictionary with global and endpoint token counts
        """
        with self._lock:
            self.global_bucket._refill()
            result: dict[str, Any] = {
                "global": {
                    "remaining": int(self.global_bucket.tokens),
                    "max": int(self.global_bucket.max_tokens),
                }
            }

            if endpoint is not None:
                bucket = self._endpoint_bucket(endpoint_key(endpoint))
                if bucket:
                    bucket._refill()
                    result["endpoint"] = {
                        "remaining": int(bucket.tokens),
                        "max": int(bucket.max_tokens),
                    }

            return result

    def reset(self, endpoint: Endpoint | str | None = None) -> None:
        """
        Reset rate limit buckets.

        Args:
            endpoint: Optional endpoint to reset (global bucket and all endpoints if None)
        """
        with self._lock:
            if endpoint is not None:
                self.endpoint_buckets.pop(endpoint_key(endpoint), None)
                return

            self.global_bucket.reset()
            self.endpoint_buckets.clear()
