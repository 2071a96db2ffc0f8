"""
Per-client request limiting for POST /records.

Each client key keeps the timestamps of its admitted requests inside the
current window. A request is admitted while fewer than `rpm` timestamps are
younger than the window; otherwise the caller is told how long until the
oldest one ages out.
"""

import bisect
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: Optional[float] = None


class RateLimiter:

    def __init__(self, rpm: int, window_seconds: int = 60, clock: Callable[[], float] = time.time):
        self._limit = max(1, rpm)
        self._window = window_seconds
        self._clock = clock
        self._admitted: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, stamps: List[float], now: float) -> int:
        cut = bisect.bisect_left(stamps, now - self._window)
        del stamps[:cut]
        return cut

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def check(self, key: str) -> RateLimitResult:
        """Admit one request for `key` if the window has room, recording it."""
        now = self._clock()
        with self._lock:
            stamps = self._admitted.setdefault(key, [])
            self._prune(stamps, now)
            if len(stamps) >= self._limit:
                wait = stamps[0] + self._window - now
                return RateLimitResult(False, 0, max(0.0, wait))
            stamps.append(now)
            return RateLimitResult(True, self._limit - len(stamps))

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._admitted.clear()
            else:
                self._admitted.pop(key, None)

    def cleanup_expired(self) -> int:
        """Drop aged-out timestamps and empty keys; returns how many timestamps went."""
        now = self._clock()
        with self._lock:
            removed = sum(self._prune(stamps, now) for stamps in self._admitted.values())
            for key in [k for k, stamps in self._admitted.items() if not stamps]:
                del self._admitted[key]
        return removed
