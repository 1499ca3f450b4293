from __future__ import annotations

import time
from collections import deque
from typing import Callable, Deque


class RateLimitError(RuntimeError):
    """The next permit frees up later than the caller is willing to wait."""


class SlidingWindowRateLimiter:
    """
    Per-process cap on Lemon Squeezy License API calls.

    The License API allows 60 requests per minute. A warm Lambda container
    keeps one limiter across invocations, so each call records when it ran
    and a call that finds the window full waits for the oldest permit to
    expire. Waits longer than `max_wait` raise RateLimitError instead, which
    the client reports as the provider being unavailable.
    """

    def __init__(
        self,
        max_calls: int = 60,
        per_seconds: float = 60.0,
        *,
        max_wait: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_calls <= 0 or per_seconds <= 0:
            raise ValueError("max_calls and per_seconds must be > 0")
        self._per_seconds = per_seconds
        self._max_wait = max(0.0, max_wait)
        self._clock = clock
        self._sleep = sleep
        # Only the last `max_calls` start times matter
        self._starts: Deque[float] = deque(maxlen=max_calls)

    def acquire(self) -> float:
        """Take a permit and return the seconds spent waiting for it."""
        now = self._clock()
        delay = 0.0
        if len(self._starts) == self._starts.maxlen:
            delay = max(0.0, self._starts[0] + self._per_seconds - now)
        if delay > self._max_wait:
            raise RateLimitError(f"License API quota used up, next slot in {delay:.1f}s")
        if delay:
            self._sleep(delay)
        self._starts.append(now + delay)
        return delay
