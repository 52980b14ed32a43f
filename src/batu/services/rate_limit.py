"""
batu.services.rate_limit

Per-key fixed-window request limiter (in-process).
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset_at: float

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }


class FixedWindowRateLimiter:
    def __init__(
        self,
        *,
        limit: int,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._limit = limit
        self._window = window_seconds
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}
        self._next_sweep = clock() + window_seconds

    def _sweep(self, now: float) -> None:
        # At most once per window, drop every window that has already rolled over.
        if now < self._next_sweep:
            return
        self._windows = {
            k: (start, count) for k, (start, count) in self._windows.items() if now - start < self._window
        }
        self._next_sweep = now + self._window

    def hit(self, key: str) -> RateLimitResult:
        now = self._clock()
        self._sweep(now)
        start, count = self._windows.get(key, (now, 0))
        if now - start >= self._window:
            start, count = now, 0

        reset_at = start + self._window
        if count >= self._limit:
            self._windows[key] = (start, count)
            return RateLimitResult(False, self._limit, 0, reset_at)

        count += 1
        self._windows[key] = (start, count)
        return RateLimitResult(True, self._limit, self._limit - count, reset_at)

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._windows.clear()
        else:
            self._windows.pop(key, None)

    def __len__(self) -> int:
        return len(self._windows)
