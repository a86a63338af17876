"""
Sliding-window rate limiter keyed by caller identity.

Every check records the request it checks: checking is consumption.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable


def _prune(window: deque[float], cutoff: float) -> None:
    while window and window[0] <= cutoff:
        window.popleft()


@dataclass(frozen=True)
class RateLimitStatus:
    allowed: bool
    remaining: int
    count: int


class SlidingWindowRateLimiter:

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._windows: dict[str, deque[float]] = {}
        self._last_sweep = 0.0
        self._lock = threading.Lock()

    def check(self, identity: str, max_requests: int, window_ms: int) -> RateLimitStatus:
        """Record one request for ``identity`` and report whether it fits the window."""
        now = self._clock()
        cutoff = now - window_ms / 1000.0

        with self._lock:
            window = self._windows.setdefault(identity, deque())
            _prune(window, cutoff)
            window.append(now)
            count = len(window)
            if now - self._last_sweep >= window_ms / 1000.0:
                self._sweep(cutoff)
                self._last_sweep = now

        return RateLimitStatus(
            allowed=count <= max_requests,
            remaining=max(0, max_requests - count),
            count=count,
        )

    def _sweep(self, cutoff: float) -> None:
        """Drop identities whose window has emptied. Caller holds the lock."""
        for identity in list(self._windows):
            window = self._windows[identity]
            _prune(window, cutoff)
            if not window:
                del self._windows[identity]

    def tracked_identities(self) -> int:
        with self._lock:
            return len(self._windows)

    def usage(self, identity: str) -> int:
        with self._lock:
            return len(self._windows.get(identity, ()))

    def reset(self, identity: str | None = None) -> None:
        with self._lock:
            if identity is None:
                self._windows.clear()
            else:
                self._windows.pop(identity, None)
