"""In-process counters and gauges for connector observability."""

import time
from collections import defaultdict
from threading import Lock
from typing import Any


def _metric_key(name: str, tags: dict[str, str] | None) -> str:
    if not tags:
        return name
    suffix = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
    return f"{name}[{suffix}]"


class Metrics:
    """
    Thread-safe metrics store.

    Counters accumulate, gauges hold the last value set. A disabled instance
    accepts every call and records nothing.
    """

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._counters: dict[str, float] = defaultdict(float)
        self._gauges: dict[str, Any] = {}
        self._start_time = time.time()
        self._lock = Lock()

    def increment(self, name: str, value: float = 1, tags: dict[str, str] | None = None) -> None:
        """Increment a counter."""
        if not self.enabled:
            return
        with self._lock:
            self._counters[_metric_key(name, tags)] += value

    def set(self, name: str, value: Any, tags: dict[str, str] | None = None) -> None:
        """Set a gauge."""
        if not self.enabled:
            return
        with self._lock:
            self._gauges[_metric_key(name, tags)] = value

    def get(self, name: str, tags: dict[str, str] | None = None) -> Any:
        """Get a counter or gauge value (0 when never recorded)."""
        key = _metric_key(name, tags)
        with self._lock:
            if key in self._gauges:
                return self._gauges[key]
            return self._counters.get(key, 0)

    def get_all(self) -> dict[str, Any]:
        """Snapshot of all metrics."""
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "uptime_seconds": time.time() - self._start_time,
            }

    def reset(self) -> None:
        """Clear all metrics."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._start_time = time.time()
