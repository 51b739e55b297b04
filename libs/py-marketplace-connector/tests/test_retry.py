"""Tests for retry with backoff and the per-kind policy table."""

import time

import httpx
import pytest

from marketplace_connector.circuit_breaker import CircuitBreaker
from marketplace_connector.config import CircuitBreakerConfig, RetryConfig
from marketplace_connector.exceptions import (
    ApiError,
    AuthenticationError,
    ErrorKind,
    NetworkError,
    NotFoundError,
    RateLimitError,
    RequestTimeoutError,
)
from marketplace_connector.retry import (
    QUOTA_MIN_DELAY,
    RATE_LIMIT_MIN_DELAY,
    RetryPolicy,
    RetryStrategy,
)


def flaky(failures: int, error: Exception):
    """Coroutine function that fails `failures` times, then returns "ok"."""
    calls = {"count": 0}

    async def fn():
        calls["count"] += 1
        if calls["count"] <= failures:
            raise error
        return "ok"

    fn.calls = calls
    return fn


@pytest.fixture
def strategy():
    return RetryStrategy(
        RetryConfig(max_retries=3, initial_delay=0.05, backoff_multiplier=2.0, jitter=False)
    )


class TestRetryExecution:
    """Tests for RetryStrategy.execute."""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self, strategy):
        """Two timeouts then success returns the result after the summed backoff."""
        fn = flaky(2, RequestTimeoutError("slow"))

        start = time.monotonic()
        result = await strategy.execute(fn, "test")
        elapsed = time.monotonic() - start

        assert result == "ok"
        assert fn.calls["count"] == 3
        assert elapsed >= 0.05 + 0.1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, strategy):
        """The last error propagates once max_retries is reached."""
        fn = flaky(10, NetworkError("down"))

        with pytest.raises(NetworkError):
            await strategy.execute(fn, "test")

        assert fn.calls["count"] == 4

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(self, strategy):
        """Auth failures are never retried."""
        fn = flaky(1, AuthenticationError("bad signature"))

        with pytest.raises(AuthenticationError):
            await strategy.execute(fn, "test")

        assert fn.calls["count"] == 1

    @pytest.mark.asyncio
    async def test_raw_exceptions_are_mapped(self, strategy):
        """Raw httpx errors are classified and re-raised as typed errors."""
        request = httpx.Request("GET", "https://api.test/v1/products")
        fn = flaky(10, httpx.ConnectError("refused", request=request))

        with pytest.raises(NetworkError) as exc_info:
            await strategy.execute(fn, "test")

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_retry_budget_stops_early(self):
        """A retry that would exceed the budget is not attempted."""
        strategy = RetryStrategy(
            RetryConfig(max_retries=5, initial_delay=0.2, jitter=False, retry_budget=0.1)
        )
        fn = flaky(10, RequestTimeoutError("slow"))

        with pytest.raises(RequestTimeoutError):
            await strategy.execute(fn, "test")

        assert fn.calls["count"] == 1

    @pytest.mark.asyncio
    async def test_open_circuit_stops_retries(self, strategy):
        """No retry is attempted once the endpoint circuit is open."""
        breaker = CircuitBreaker("/products", CircuitBreakerConfig(failure_threshold=1))
        breaker.record_failure()
        fn = flaky(10, NetworkError("down"))

        with pytest.raises(NetworkError):
            await strategy.execute(fn, "test", circuit_breaker=breaker)

        assert fn.calls["count"] == 1


class TestRetryPolicies:
    """Tests for the policy table and delay calculation."""

    def test_default_policy_table(self, strategy):
        """Transient kinds are retryable, client errors are not."""
        policies = strategy.policies

        assert policies[ErrorKind.TIMEOUT].retryable is True
        assert policies[ErrorKind.NETWORK_ERROR].retryable is True
        assert policies[ErrorKind.RATE_LIMIT].min_delay == RATE_LIMIT_MIN_DELAY
        assert policies[ErrorKind.QUOTA_EXCEEDED].min_delay == QUOTA_MIN_DELAY
        assert policies[ErrorKind.API_ERROR].max_retries == 1
        for kind in (ErrorKind.AUTH_FAILED, ErrorKind.NOT_FOUND, ErrorKind.VALIDATION_ERROR):
            assert policies[kind].retryable is False

    def test_exponential_backoff(self, strategy):
        """Delays double per attempt without jitter."""
        assert [strategy.calculate_delay(a) for a in range(3)] == pytest.approx([0.05, 0.1, 0.2])

    def test_backoff_capped_at_max_delay(self):
        """Delays never exceed max_delay."""
        strategy = RetryStrategy(RetryConfig(initial_delay=1.0, max_delay=3.0, jitter=False))

        assert strategy.calculate_delay(10) == 3.0

    def test_jitter_stays_in_range(self):
        """Full jitter picks a delay between zero and the computed backoff."""
        strategy = RetryStrategy(RetryConfig(initial_delay=1.0, jitter=True))

        for _ in range(20):
            assert 0 <= strategy.calculate_delay(2) <= 4.0

    def test_retry_after_and_policy_floor(self, strategy):
        """retry_after is honoured but never below the policy minimum."""
        assert strategy.retry_delay(RateLimitError("slow down", retry_after=30), 0) == 30
        assert strategy.retry_delay(RateLimitError("slow down", retry_after=1), 0) == RATE_LIMIT_MIN_DELAY

    def test_should_retry_respects_error_flag(self, strategy):
        """An error flagged non-retryable is not retried even for a retryable kind."""
        assert strategy.should_retry(ApiError("5xx"), 0) is True
        assert strategy.should_retry(ApiError("unknown", retryable=False), 0) is False

    def test_override_policy(self, strategy):
        """Policies can be overridden per kind."""
        strategy.set_retry_policy(ErrorKind.NOT_FOUND, RetryPolicy(True, 1))

        assert strategy.should_retry(NotFoundError("gone", retryable=True), 0) is True
        assert strategy.should_retry(NotFoundError("gone", retryable=True), 1) is False

    def test_stats(self, strategy):
        """Test stats export."""
        stats = strategy.get_stats()

        assert stats["config"]["max_retries"] == 3
        assert stats["policies"]["timeout"]["retryable"] is True
