"""Retry with exponential backoff, full jitter and a per-error-kind policy table."""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any, TypeVar

from .circuit_breaker import CircuitBreaker
from .config import RetryConfig
from .error_mapper import ErrorMapper
from .exceptions import ErrorKind, MarketplaceError
from .metrics import Metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_MIN_DELAY = 5.0
QUOTA_MIN_DELAY = 10.0

NON_RETRYABLE_KINDS = (
    ErrorKind.AUTH_FAILED,
    ErrorKind.TOKEN_EXPIRED,
    ErrorKind.INVALID_CREDENTIALS,
    ErrorKind.NOT_FOUND,
    ErrorKind.OUT_OF_STOCK,
    ErrorKind.INVALID_REQUEST,
    ErrorKind.VALIDATION_ERROR,
    ErrorKind.CIRCUIT_OPEN,
    ErrorKind.SYNC_CONFLICT,
    ErrorKind.BATCH_PARTIAL_FAILURE,
)


@dataclass
class RetryPolicy:
    """Retry behaviour for one error kind."""

    retryable: bool
    max_retries: int | None = None
    min_delay: float | None = None  # seconds


def default_policies(config: RetryConfig) -> dict[ErrorKind, RetryPolicy]:
    """Build the default policy table for a retry configuration."""
    policies = {
        ErrorKind.TIMEOUT: RetryPolicy(True, config.max_retries),
        ErrorKind.NETWORK_ERROR: RetryPolicy(True, config.max_retries),
        ErrorKind.RATE_LIMIT: RetryPolicy(True, config.max_retries, RATE_LIMIT_MIN_DELAY),
        ErrorKind.QUOTA_EXCEEDED: RetryPolicy(True, config.max_retries, QUOTA_MIN_DELAY),
        ErrorKind.API_ERROR: RetryPolicy(True, config.max_retries // 2),
    }
    for kind in NON_RETRYABLE_KINDS:
        policies[kind] = RetryPolicy(False)
    return policies


class RetryStrategy:
    """
    Runs a call, retrying failures according to the policy table.

    A failure is retried only when its kind's policy allows it, the error
    itself is flagged retryable, the attempt limit has not been reached, the
    retry budget is not exhausted and the endpoint's circuit is not open.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        error_mapper: ErrorMapper | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        metrics: Metrics | None = None,
    ):
        self.config = config or RetryConfig()
        self.error_mapper = error_mapper or ErrorMapper()
        self.circuit_breaker = circuit_breaker
        self.metrics = metrics or Metrics(enabled=False)
        self.policies = default_policies(self.config)

    def set_retry_policy(self, kind: ErrorKind, policy: RetryPolicy) -> None:
        """Override the policy for an error kind."""
        self.policies[kind] = policy

    def get_retry_policy(self, error: MarketplaceError) -> RetryPolicy:
        """Policy for an error, falling back to the error's own retryable flag."""
        policy = self.policies.get(error.kind)
        if policy is not None:
            return policy
        return RetryPolicy(error.retryable, self.config.max_retries)

    def calculate_delay(self, attempt: int) -> float:
        """
        Backoff delay for a zero-based attempt number.

        Args:
            attempt: Number of retries already performed

        Returns:
            Delay in seconds, uniformly jittered in [0, delay] when jitter is on
        """
        delay = min(
            self.config.max_delay,
            self.config.initial_delay * (self.config.backoff_multiplier**attempt),
        )
        if self.config.jitter:
            return random.uniform(0, delay)
        return delay

    def should_retry(
        self,
        error: MarketplaceError,
        attempt: int,
        circuit_breaker: CircuitBreaker | None = None,
    ) -> bool:
        """Decide whether another attempt is allowed."""
        breaker = circuit_breaker or self.circuit_breaker
        if breaker is not None and breaker.is_open():
            logger.debug("Skipping retry: circuit open for %s", breaker.endpoint)
            return False

        policy = self.get_retry_policy(error)
        if not policy.retryable or not error.retryable:
            logger.debug("Error is not retryable: %s", error.kind.value)
            return False

        max_retries = self.config.max_retries if policy.max_retries is None else policy.max_retries
        if attempt >= max_retries:
            logger.debug("Max retries reached (%d/%d)", attempt, max_retries)
            return False

        return True

    def retry_delay(self, error: MarketplaceError, attempt: int) -> float:
        """Delay before the next attempt, honouring retry_after and policy floors."""
        if error.retry_after is not None:
            delay = error.retry_after
        else:
            delay = self.calculate_delay(attempt)

        policy = self.get_retry_policy(error)
        if policy.min_delay is not None:
            delay = max(delay, policy.min_delay)
        return delay

    async def execute(
        self,
        fn: Callable[[], Awaitable[T]],
        operation: str = "operation",
        idempotency_key: str | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ) -> T:
        """
        Execute fn with retries.

        Args:
            fn: Zero-argument coroutine function
            operation: Operation name for logging
            idempotency_key: Optional key identifying the logical request
            circuit_breaker: Breaker consulted before each retry (defaults to
                the strategy's own)

        Returns:
            Result of fn

        Raises:
            MarketplaceError: The final typed error once retries stop
        """
        start = time.monotonic()
        attempt = 0

        while True:
            logger.debug(
                "Executing %s (attempt %d, idempotency_key=%s)", operation, attempt, idempotency_key
            )
            try:
                result = await fn()
            except Exception as exc:
                error = self.error_mapper.map(exc, operation)

                if not self.should_retry(error, attempt, circuit_breaker):
                    if error is exc:
                        raise
                    raise error from exc

                delay = self.retry_delay(error, attempt)

                budget = self.config.retry_budget
                if budget is not None:
                    elapsed = time.monotonic() - start
                    if elapsed + delay > budget:
                        logger.warning(
                            "Retry budget exceeded for %s (elapsed %.2fs, budget %.2fs)",
                            operation,
                            elapsed,
                            budget,
                        )
                        if error is exc:
                            raise
                        raise error from exc

                logger.warning(
                    "%s failed (%s), retrying in %.2fs (attempt %d)",
                    operation,
                    error.kind.value,
                    delay,
                    attempt + 1,
                )
                self.metrics.increment("requests.retried", tags={"kind": error.kind.value})

                await asyncio.sleep(delay)
                attempt += 1
                continue

            if attempt > 0:
                logger.info(
                    "%s succeeded after %d retries (%.2fs)",
                    operation,
                    attempt,
                    time.monotonic() - start,
                )
            return result

    def get_stats(self) -> dict[str, Any]:
        """Config and policy table, for observability."""
        return {
            "config": self.config.model_dump(),
            "policies": {kind.value: asdict(policy) for kind, policy in self.policies.items()},
        }
