"""
Per-client sliding window rate limiting for the anchor and verify
endpoints. In-process only; each worker enforces its own window.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: Optional[float] = None


class RateLimiter:
    """
    Sliding window limiter keyed by client id.

    Client ids come from unauthenticated headers, so keys whose window has
    emptied are dropped by a sweep that runs at most once per window.
    """

    def __init__(self, rpm: int, window_seconds: int = 60):
        self._limit = max(1, rpm)
        self._window = window_seconds
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = time.monotonic()

    @property
    def limit(self) -> int:
        return self._limit

    def __len__(self) -> int:
        return len(self._hits)

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def check(self, key: str) -> RateLimitResult:
        now = time.monotonic()
        window_start = now - self._window

        with self._lock:
            if now - self._last_sweep >= self._window:
                self._sweep(window_start)
                self._last_sweep = now

            q = self._hits.setdefault(key, deque())
            while q and q[0] < window_start:
                q.popleft()

            if len(q) >= self._limit:
                return RateLimitResult(allowed=False, remaining=0, retry_after=max(0.0, q[0] + self._window - now))

            q.append(now)
            return RateLimitResult(allowed=True, remaining=self._limit - len(q))

    def cleanup_expired(self) -> int:
        """Drop expired hits and idle keys; returns the number of keys removed."""
        with self._lock:
            self._last_sweep = time.monotonic()
            return self._sweep(self._last_sweep - self._window)

    def _sweep(self, window_start: float) -> int:
        idle = []
        for key, q in self._hits.items():
            while q and q[0] < window_start:
                q.popleft()
            if not q:
                idle.append(key)
        for key in idle:
            del self._hits[key]
        return len(idle)

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key:
                self._hits.pop(key, None)
            else:
                self._hits.clear()
