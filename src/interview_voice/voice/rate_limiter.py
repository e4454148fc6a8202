"""Per-provider sliding-window request limiter.

One limiter instance belongs to one provider and is the only state shared
between concurrently running pipelines, so every operation holds a lock.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimit:
    remaining: int
    reset_time_ms: float


@dataclass(frozen=True)
class ProviderStatus:
    """One row of the health/status query."""

    stage: str
    name: str
    configured: bool
    available: bool
    remaining: int
    reset_time_ms: float

    def to_dict(self) -> dict[str, object]:
        return {
            "stage": self.stage,
            "name": self.name,
            "configured": self.configured,
            "available": self.available,
            "rate_limit": {"remaining": self.remaining, "reset_time_ms": self.reset_time_ms},
        }


class RateLimiter:
    """Keeps the timestamps of dispatched requests within the last ``window_ms``."""

    def __init__(
        self,
        max_requests: int = 50,
        window_ms: int = 60_000,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 0:
            raise ValueError("max_requests must be >= 0")
        if window_ms <= 0:
            raise ValueError("window_ms must be > 0")
        self._max_requests = max_requests
        self._window_ms = window_ms
        self._clock = clock
        self._requests: list[float] = []
        self._lock = threading.Lock()

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_ms(self) -> int:
        return self._window_ms

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _purge(self, now_ms: float) -> None:
        # Caller holds the lock.
        self._requests = [t for t in self._requests if now_ms - t < self._window_ms]

    def can_make_request(self) -> bool:
        with self._lock:
            self._purge(self._now_ms())
            return len(self._requests) < self._max_requests

    def record_request(self) -> None:
        with self._lock:
            self._requests.append(self._now_ms())

    def try_acquire(self) -> bool:
        """Records a request if the window has room; check and record happen under one lock."""
        with self._lock:
            now = self._now_ms()
            self._purge(now)
            if len(self._requests) >= self._max_requests:
                return False
            self._requests.append(now)
            return True

    def request_count(self) -> int:
        with self._lock:
            self._purge(self._now_ms())
            return len(self._requests)

    def get_remaining_requests(self) -> int:
        with self._lock:
            self._purge(self._now_ms())
            return max(0, self._max_requests - len(self._requests))

    def get_wait_time_ms(self) -> float:
        """Milliseconds until the oldest retained request leaves the window."""
        with self._lock:
            now = self._now_ms()
            self._purge(now)
            if not self._requests:
                return 0.0
            return max(0.0, self._window_ms - (now - min(self._requests)))

    def snapshot(self) -> RateLimit:
        return RateLimit(
            remaining=self.get_remaining_requests(),
            reset_time_ms=self.get_wait_time_ms(),
        )
