"""Fixed-window, per-client submission rate limiter.

State lives in process memory only.  Expired windows are swept as they are
touched and the least recently seen clients are evicted once
``max_clients`` is reached, so memory stays bounded.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from emailqc.config import settings


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    remaining: int
    reset_at: float


@dataclass
class _Window:
    count: int
    expires_at: float


class RateLimiter:
    def __init__(
        self,
        limit: Optional[int] = None,
        window_seconds: Optional[float] = None,
        max_clients: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit if limit is not None else settings.rate_limit_max_requests
        self.window_seconds = (
            window_seconds if window_seconds is not None else settings.rate_limit_window_seconds
        )
        self.max_clients = max(
            1, max_clients if max_clients is not None else settings.rate_limit_max_clients
        )
        self._clock = clock
        self._windows: OrderedDict[str, _Window] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def check(self, key: str) -> RateDecision:
        """Count one request from *key* and say whether it is allowed."""
        now = self._clock()
        with self._lock:
            self._sweep(now)
            window = self._windows.get(key)

            if window is None:
                window = _Window(count=1, expires_at=now + self.window_seconds)
                self._windows[key] = window
                self._evict_overflow()
                return RateDecision(True, self.limit - 1, window.expires_at)

            self._windows.move_to_end(key)
            if window.count >= self.limit:
                return RateDecision(False, 0, window.expires_at)

            window.count += 1
            return RateDecision(True, self.limit - window.count, window.expires_at)

    def _sweep(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if window.expires_at <= now]
        for key in expired:
            del self._windows[key]

    def _evict_overflow(self) -> None:
        while len(self._windows) > self.max_clients:
            self._windows.popitem(last=False)
