"""
Client-side throttling for the Riot Games API.

RateLimiter keeps every request inside the key's per-second and per-window
budgets. RequestSequencer runs one call at a time with a minimum gap between
dispatches; the sync uses it for match detail fetches so a batch never bursts
the upstream limit.
"""

import threading
import time
from collections import deque
from typing import Any, Callable, Optional, TypeVar

T = TypeVar("T")


class RateLimiter:
    """
    Thread-safe rate limiter for Riot Games API.
    Handles both per-second and per-window rate limits.
    """

    def __init__(self, max_per_second=20, max_per_window=100, window_seconds=120,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.max_per_second = max_per_second
        self.max_per_window = max_per_window
        self.window_seconds = window_seconds
        self.second_requests = deque()
        self.window_requests = deque()
        self.lock = threading.Lock()
        self._clock = clock
        self._sleep = sleep

    def wait_if_needed(self):
        """Wait if necessary to respect rate limits."""
        with self.lock:
            while True:
                now = self._clock()
                # Clean window
                while self.window_requests and self.window_requests[0] <= now - self.window_seconds:
                    self.window_requests.popleft()
                # Check window
                if len(self.window_requests) >= self.max_per_window:
                    self._sleep(self.window_requests[0] + self.window_seconds - now + 0.01)
                    continue
                # Clean second
                while self.second_requests and self.second_requests[0] <= now - 1:
                    self.second_requests.popleft()
                # Check second
                if len(self.second_requests) >= self.max_per_second:
                    self._sleep(self.second_requests[0] + 1 - now + 0.01)
                    continue
                break

    def record_request(self):
        """Record that a request was made."""
        with self.lock:
            now = self._clock()
            self.window_requests.append(now)
            self.second_requests.append(now)

    def acquire(self):
        """Wait for budget, then count the request against it."""
        self.wait_if_needed()
        self.record_request()


class RequestSequencer:
    """
    Single-worker dispatcher with a minimum interval between calls.

    Calls from several threads are serialised; each waits until
    `min_interval` seconds have passed since the previous dispatch started.
    """

    def __init__(self, min_interval: float = 0.1,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_dispatch: Optional[float] = None
        self.dispatched = 0

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        with self._lock:
            if self._last_dispatch is not None and self.min_interval:
                wait = self._last_dispatch + self.min_interval - self._clock()
                if wait > 0:
                    self._sleep(wait)
            self._last_dispatch = self._clock()
            self.dispatched += 1
            return func(*args, **kwargs)
