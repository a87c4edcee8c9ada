"""
Rate limiter — fixed window per key.

  - First request (or first after reset_at) opens a window: count=1, allowed
  - Within the window, count > max_requests = exceeded
  - Exactly max_requests requests pass per window

Expired windows are swept by a background cleanup so memory tracks active keys.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable

import structlog

logger = structlog.get_logger()


@dataclass
class Window:
    count: int
    reset_at: float


class RateLimiter:
    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, Window] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def is_exceeded(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                self._windows[key] = Window(count=1, reset_at=now + self.window_seconds)
                return False

            window.count += 1
            return window.count > self.max_requests

    def cleanup(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, w in self._windows.items() if now >= w.reset_at]
            for k in expired:
                del self._windows[k]
        if expired:
            logger.debug("ratelimit_cleanup", removed=len(expired))
        return len(expired)

    async def run_cleanup(self) -> None:
        self.cleanup()
