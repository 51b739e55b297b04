"""Composition of rate limiting, retry, circuit breaking and error mapping."""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .catalog_types import Endpoint, endpoint_key
from .circuit_breaker import CircuitBreakerRegistry
from .error_mapper import ErrorMapper
from .exceptions import MarketplaceError
from .metrics import Metrics
from .rate_limit import RateLimiter
from .retry import RetryStrategy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestExecutor:
    """
    Single entry point for every outbound call.

    Order of application:
        rate limiter admission -> retry loop -> circuit breaker -> raw call,
        with raw failures mapped to typed errors inside the breaker.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        retry_strategy: RetryStrategy,
        breakers: CircuitBreakerRegistry,
        error_mapper: ErrorMapper | None = None,
        metrics: Metrics | None = None,
    ):
        self.rate_limiter = rate_limiter
        self.retry_strategy = retry_strategy
        self.breakers = breakers
        self.error_mapper = error_mapper or retry_strategy.error_mapper
        self.metrics = metrics or Metrics(enabled=False)

    async def execute_request(
        self,
        endpoint: Endpoint | str,
        operation: str,
        raw_call: Callable[[], Awaitable[T]],
        idempotency_key: str | None = None,
    ) -> T:
        """
        Run a raw call under the full resilience stack.

        Args:
            endpoint: Endpoint identifier (selects rate limit bucket and breaker)
            operation: Operation name for logs and errors
            raw_call: Zero-argument coroutine function performing the HTTP call
            idempotency_key: Optional key for retried writes

        Returns:
            Result of raw_call

        Raises:
            MarketplaceError: Typed final failure
        """
        key = endpoint_key(endpoint)
        breaker = self.breakers.get(key)
        self.metrics.increment("requests.total", tags={"endpoint": key})

        async def mapped_call() -> T:
            try:
                return await raw_call()
            except MarketplaceError:
                raise
            except Exception as exc:
                raise self.error_mapper.map(exc, operation, endpoint=key) from exc

        async def guarded_call() -> T:
            return await breaker.execute(mapped_call, operation)

        try:
            await self.rate_limiter.wait_if_needed(key)
            result = await self.retry_strategy.execute(
                guarded_call,
                operation,
                idempotency_key=idempotency_key,
                circuit_breaker=breaker,
            )
        except MarketplaceError as e:
            self.metrics.increment("requests.failed", tags={"endpoint": key, "kind": e.kind.value})
            logger.error("%s failed: %s", operation, e.message)
            raise

        self.metrics.increment("requests.success", tags={"endpoint": key})
        return result
