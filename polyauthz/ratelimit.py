"""
Request counters for context (RuBAC) rules

The decision engine never counts requests itself. A caller such as a
rate-limiting middleware records hits here and passes the resulting counts
in ``RequestContext.counters`` where ``rate_limit`` rules read them.
"""

import threading
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict


class SlidingWindowCounter:
    """Thread-safe per-key sliding window request counter"""

    def __init__(self, window_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def _trim(self, hits: Deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def hit(self, key: str) -> int:
        """Record a request for key and return the count inside the window"""
        with self._lock:
            now = self._clock()
            hits = self._hits[key]
            self._trim(hits, now)
            hits.append(now)
            return len(hits)

    def count(self, key: str) -> int:
        """Requests for key inside the window, without recording one"""
        with self._lock:
            hits = self._hits.get(key)
            if not hits:
                return 0
            self._trim(hits, self._clock())
            if not hits:
                del self._hits[key]
            return len(hits)

    def purge(self) -> int:
        """Drop keys with no hits left inside the window; returns how many were dropped"""
        with self._lock:
            now = self._clock()
            expired = []
            for key, hits in self._hits.items():
                self._trim(hits, now)
                if not hits:
                    expired.append(key)
            for key in expired:
                del self._hits[key]
            return len(expired)

    def __len__(self) -> int:
        """Number of keys currently tracked"""
        with self._lock:
            return len(self._hits)

    def reset(self, key: str) -> None:
        """Reset the counter for a specific key"""
        with self._lock:
            self._hits.pop(key, None)
