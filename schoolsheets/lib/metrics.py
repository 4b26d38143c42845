"""Request and upstream counters.

One ``ServiceMetrics`` instance is created per manager and handed to the
sheets client so upstream calls and cache lookups land in the same
counters that ``/stats`` reports.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

__all__ = ["PhaseTimer", "ServiceMetrics"]


@dataclass
class PhaseTimer:
    """Timer for tracking duration of a refresh or fetch."""

    name: str
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    def stop(self) -> float:
        """Stop the timer and return duration in seconds."""
        self.end_time = time.time()
        return self.duration

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        end = self.end_time or time.time()
        return end - self.start_time


class ServiceMetrics:
    """Thread-safe counters for dataset accesses and upstream calls.

    Example:
        metrics = ServiceMetrics()
        metrics.record_request(hit=False)
        metrics.record_api_call()
        metrics.to_dict()["cacheMisses"]  # 1
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started = time.monotonic()
        self.reset()

    def reset(self) -> None:
        """Zero every counter. Intended for tests."""
        with self._lock:
            self.total_requests = 0
            self.cache_hits = 0
            self.cache_misses = 0
            self.api_calls = 0
            self.errors = 0
            self.last_api_call: Optional[datetime] = None

    def record_request(self, *, hit: bool) -> None:
        with self._lock:
            self.total_requests += 1
            if hit:
                self.cache_hits += 1
            else:
                self.cache_misses += 1

    def record_error(self, *, request: bool = True) -> None:
        """Count a failure; ``request=False`` for actions that are not reads."""
        with self._lock:
            if request:
                self.total_requests += 1
            self.errors += 1

    def record_api_call(self) -> None:
        with self._lock:
            self.api_calls += 1
            self.last_api_call = datetime.now(timezone.utc)

    def restore(self, *, api_calls: int, last_api_call: Optional[str]) -> None:
        """Restore upstream counters saved alongside a snapshot."""
        with self._lock:
            self.api_calls = max(self.api_calls, int(api_calls))
            if last_api_call and self.last_api_call is None:
                self.last_api_call = datetime.fromisoformat(last_api_call)

    @property
    def hit_rate(self) -> str:
        """Hit percentage over all requests, e.g. ``"66.67%"``."""
        if self.total_requests == 0:
            return "0%"
        return f"{self.cache_hits / self.total_requests * 100:.2f}%"

    @property
    def uptime(self) -> float:
        return time.monotonic() - self._started

    def persisted_subset(self) -> Dict[str, Any]:
        """Counters written with a snapshot document."""
        with self._lock:
            return {
                "apiCalls": self.api_calls,
                "lastApiCall": self.last_api_call.isoformat() if self.last_api_call else None,
            }

    def to_dict(self) -> Dict[str, Any]:
        """Counters in the ``/stats`` wire shape."""
        with self._lock:
            return {
                "totalRequests": self.total_requests,
                "cacheHits": self.cache_hits,
                "cacheMisses": self.cache_misses,
                "apiCalls": self.api_calls,
                "errors": self.errors,
                "lastApiCall": self.last_api_call.isoformat() if self.last_api_call else None,
                "cacheHitRate": self.hit_rate,
                "uptime": round(self.uptime, 3),
            }
