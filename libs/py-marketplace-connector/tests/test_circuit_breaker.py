"""Tests for the per-endpoint circuit breaker."""

import asyncio

import pytest

from marketplace_connector.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)
from marketplace_connector.config import CircuitBreakerConfig
from marketplace_connector.exceptions import ApiError, CircuitOpenError


@pytest.fixture
def breaker():
    """Breaker with threshold 3, window 1s, reset 0.5s, one half-open success."""
    return CircuitBreaker(
        "/products",
        CircuitBreakerConfig(
            failure_threshold=3,
            failure_window=1.0,
            reset_timeout=0.5,
            half_open_success_threshold=1,
        ),
    )


async def failing():
    raise ApiError("boom")


async def succeeding():
    return "ok"


async def trip(breaker, times=3):
    for _ in range(times):
        with pytest.raises(ApiError):
            await breaker.execute(failing)


class TestCircuitBreaker:
    """State machine transitions."""

    @pytest.mark.asyncio
    async def test_starts_closed_and_passes_calls(self, breaker):
        """A fresh breaker lets calls through."""
        assert breaker.state == CircuitState.CLOSED
        assert await breaker.execute(succeeding) == "ok"

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, breaker):
        """Three failures inside the window open the circuit."""
        await trip(breaker)

        assert breaker.state == CircuitState.OPEN
        assert breaker.is_open() is True

    @pytest.mark.asyncio
    async def test_open_rejects_without_invoking(self, breaker):
        """While open, calls fail fast and fn is never called."""
        await trip(breaker)
        calls = []

        async def tracked():
            calls.append(1)
            return "ok"

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(tracked)

        assert calls == []
        assert exc_info.value.endpoint == "/products"
        assert 0 < exc_info.value.retry_after <= 0.5

    @pytest.mark.asyncio
    async def test_half_open_after_reset_timeout(self, breaker):
        """The first read after the reset timeout reports HALF_OPEN."""
        await trip(breaker)

        await asyncio.sleep(0.6)

        assert breaker.state == CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self, breaker):
        """A successful trial call closes the circuit."""
        await trip(breaker)
        await asyncio.sleep(0.6)

        assert await breaker.execute(succeeding) == "ok"

        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker):
        """A failing trial call reopens the circuit."""
        await trip(breaker)
        await asyncio.sleep(0.6)

        await trip(breaker, times=1)

        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_failures_outside_window_are_forgotten(self, breaker):
        """Failures older than the window do not count toward the threshold."""
        await trip(breaker, times=2)
        await asyncio.sleep(1.1)
        await trip(breaker, times=1)

        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_disabled_breaker_never_opens(self):
        """With the breaker disabled every call passes through."""
        breaker = CircuitBreaker("/orders", CircuitBreakerConfig(enabled=False, failure_threshold=1))

        await trip(breaker, times=3)

        assert breaker.is_open() is False

    @pytest.mark.asyncio
    async def test_reset(self, breaker):
        """Test forcing the breaker closed."""
        await trip(breaker)

        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats().failures == 0

    @pytest.mark.asyncio
    async def test_stats(self, breaker):
        """Test stats snapshot."""
        await breaker.execute(succeeding)
        await trip(breaker, times=1)

        stats = breaker.get_stats().to_dict()

        assert stats["endpoint"] == "/products"
        assert stats["state"] == "closed"
        assert stats["failures"] == 1
        assert stats["successes"] == 1
        assert stats["last_failure"] is not None


class TestCircuitBreakerRegistry:
    """Tests for CircuitBreakerRegistry."""

    def test_one_breaker_per_endpoint(self):
        """The same endpoint always returns the same breaker."""
        registry = CircuitBreakerRegistry()

        assert registry.get("/products") is registry.get("/products")
        assert registry.get("/products") is not registry.get("/orders")

    @pytest.mark.asyncio
    async def test_endpoints_are_isolated(self):
        """Opening one endpoint's breaker leaves the others closed."""
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1))

        await trip(registry.get("/orders"), times=1)

        assert registry.get("/orders").state == CircuitState.OPEN
        assert registry.get("/products").state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_reset_all(self):
        """Test resetting every breaker."""
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1))
        await trip(registry.get("/orders"), times=1)

        registry.reset()

        assert registry.get_all_stats()["/orders"]["state"] == "closed"
