"""
Per-endpoint circuit breaker.

State transitions are evaluated lazily on access: an Open breaker reports
HalfOpen on the first read after the reset timeout has elapsed. There is no
background timer.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from enum import Enum
from threading import Lock
from typing import Any, TypeVar

from .catalog_types import Endpoint, endpoint_key
from .config import CircuitBreakerConfig
from .exceptions import CircuitOpenError
from .metrics import Metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerStats:
    """Snapshot of a breaker for observability."""

    endpoint: str
    state: CircuitState
    failures: int
    successes: int
    last_failure: float | None
    last_success: float | None
    state_changed_at: float

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


class CircuitBreaker:
    """
    Three-state circuit breaker for one endpoint.

    - CLOSED: calls pass through; failures inside the rolling window are counted
      and reaching the threshold opens the circuit.
    - OPEN: calls are rejected with CircuitOpenError without being invoked.
    - HALF_OPEN: trial calls pass; enough successes close the circuit, any
      failure reopens it.
    """

    def __init__(
        self,
        endpoint: Endpoint | str,
        config: CircuitBreakerConfig | None = None,
        metrics: Metrics | None = None,
    ):
        self.endpoint = endpoint_key(endpoint)
        self.config = config or CircuitBreakerConfig()
        self.metrics = metrics or Metrics(enabled=False)

        self._state = CircuitState.CLOSED
        self._failure_timestamps: list[float] = []
        self._failures = 0
        self._successes = 0
        self._last_failure: float | None = None
        self._last_success: float | None = None
        self._changed_monotonic = time.monotonic()
        self._changed_wall = time.time()
        self._lock = Lock()

    # ========================================================================
    # State
    # ========================================================================

    def _transition(self, new_state: CircuitState) -> None:
        """Move to a new state. Caller holds the lock."""
        old_state = self._state
        self._state = new_state
        self._changed_monotonic = time.monotonic()
        self._changed_wall = time.time()
        self._failures = 0
        self._successes = 0

        if new_state == CircuitState.CLOSED:
            self._failure_timestamps.clear()

        self.metrics.set("circuit.state", new_state.value, tags={"endpoint": self.endpoint})
        if new_state == CircuitState.OPEN:
            logger.warning(
                "Circuit %s -> %s for %s (reset in %.1fs)",
                old_state.value,
                new_state.value,
                self.endpoint,
                self.config.reset_timeout,
            )
        else:
            logger.info("Circuit %s -> %s for %s", old_state.value, new_state.value, self.endpoint)

    def _refresh_state(self) -> None:
        """Apply the lazy OPEN -> HALF_OPEN transition. Caller holds the lock."""
        if self._state == CircuitState.OPEN and self._open_remaining() <= 0:
            self._transition(CircuitState.HALF_OPEN)

    def _open_remaining(self) -> float:
        elapsed = time.monotonic() - self._changed_monotonic
        return max(0.0, self.config.reset_timeout - elapsed)

    def _prune_failures(self, now: float) -> None:
        cutoff = now - self.config.failure_window
        self._failure_timestamps = [ts for ts in self._failure_timestamps if ts > cutoff]

    @property
    def state(self) -> CircuitState:
        """Current state, applying the lazy half-open transition."""
        with self._lock:
            self._refresh_state()
            return self._state

    def is_open(self) -> bool:
        """True if calls would currently be rejected."""
        if not self.config.enabled:
            return False
        return self.state == CircuitState.OPEN

    # ========================================================================
    # Execution
    # ========================================================================

    async def execute(self, fn: Callable[[], Awaitable[T]], operation: str = "operation") -> T:
        """
        Call fn through the breaker.

        Args:
            fn: Zero-argument coroutine function performing the call
            operation: Operation name for logging

        Returns:
            Result of fn

        Raises:
            CircuitOpenError: If the circuit is open (fn is not invoked)
            Exception: Whatever fn raised, unchanged
        """
        if not self.config.enabled:
            return await fn()

        with self._lock:
            self._refresh_state()
            if self._state == CircuitState.OPEN:
                remaining = self._open_remaining()
                rejected = True
            else:
                rejected = False

        if rejected:
            logger.debug("Circuit open for %s, rejecting %s", self.endpoint, operation)
            self.metrics.increment("circuit.rejected", tags={"endpoint": self.endpoint})
            raise CircuitOpenError(self.endpoint, retry_after=remaining)

        try:
            result = await fn()
        except Exception:
            self.record_failure()
            raise

        self.record_success()
        return result

    def record_success(self) -> None:
        """Record a successful call."""
        with self._lock:
            self._successes += 1
            self._last_success = time.time()

            if (
                self._state == CircuitState.HALF_OPEN
                and self._successes >= self.config.half_open_success_threshold
            ):
                self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        """Record a failed call."""
        with self._lock:
            now = time.monotonic()
            self._failures += 1
            self._last_failure = time.time()
            self._failure_timestamps.append(now)
            self._prune_failures(now)

            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and len(self._failure_timestamps) >= self.config.failure_threshold
            ):
                self._transition(CircuitState.OPEN)

    # ========================================================================
    # Observability / control
    # ========================================================================

    def get_stats(self) -> CircuitBreakerStats:
        """Get a snapshot of breaker counters and state."""
        with self._lock:
            self._refresh_state()
            return CircuitBreakerStats(
                endpoint=self.endpoint,
                state=self._state,
                failures=self._failures,
                successes=self._successes,
                last_failure=self._last_failure,
                last_success=self._last_success,
                state_changed_at=self._changed_wall,
            )

    def reset(self) -> None:
        """Force the breaker back to CLOSED and clear its history."""
        with self._lock:
            self._transition(CircuitState.CLOSED)
            self._last_failure = None
            self._last_success = None


class CircuitBreakerRegistry:
    """Holds one breaker per endpoint, created on first use."""

    def __init__(self, config: CircuitBreakerConfig | None = None, metrics: Metrics | None = None):
        self.config = config or CircuitBreakerConfig()
        self.metrics = metrics
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = Lock()

    def get(self, endpoint: Endpoint | str) -> CircuitBreaker:
        """Get or create the breaker for an endpoint."""
        key = endpoint_key(endpoint)
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(key, self.config, self.metrics)
                self._breakers[key] = breaker
            return breaker

    def get_all_stats(self) -> dict[str, dict[str, Any]]:
        """Stats of every breaker created so far."""
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.endpoint: b.get_stats().to_dict() for b in breakers}

    def reset(self, endpoint: Endpoint | str | None = None) -> None:
        """Reset one breaker, or all of them."""
        with self._lock:
            if endpoint is None:
                targets = list(self._breakers.values())
            else:
                breaker = self._breakers.get(endpoint_key(endpoint))
                targets = [breaker] if breaker else []
        for breaker in targets:
            breaker.reset()
