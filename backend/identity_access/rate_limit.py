"""
Fixed-window rate limiter keyed by an opaque token (e.g. "login:<email>:<ip>").

In-process only; each app instance keeps its own counters. Good enough to slow
down password guessing and token enumeration on a single node.
"""
from __future__ import annotations

from dataclasses import dataclass
import math
import threading
import time
from typing import Callable, Dict


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    def __init__(
        self,
        *,
        limit: int,
        interval_seconds: float,
        max_tokens: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 1 or interval_seconds <= 0:
            raise ValueError("invalid_rate_limit")
        self.limit = limit
        self.interval_seconds = interval_seconds
        self._max_tokens = max_tokens
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if w.reset_at <= now]
        for key in expired:
            del self._windows[key]
        # Bound memory: drop the windows closest to reset first.
        overflow = len(self._windows) - self._max_tokens
        if overflow > 0:
            for key, _ in sorted(self._windows.items(), key=lambda kv: kv[1].reset_at)[:overflow]:
                del self._windows[key]

    def hit(self, token: str) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            window = self._windows.get(token)
            if window is None or window.reset_at <= now:
                self._prune(now)
                window = _Window(count=0, reset_at=now + self.interval_seconds)
                self._windows[token] = window
            window.count += 1
            allowed = window.count <= self.limit
            remaining = max(0, self.limit - window.count)
            return RateLimitResult(allowed=allowed, limit=self.limit, remaining=remaining, reset_at=window.reset_at)

    def retry_after(self, result: RateLimitResult) -> int:
        """Whole seconds until the window of `result` resets."""
        return max(0, math.ceil(result.reset_at - self._clock()))

    def reset(self, token: str | None = None) -> None:
        with self._lock:
            if token is None:
                self._windows.clear()
            else:
                self._windows.pop(token, None)


# Shared limiters used by the web adapters.
LOGIN_LIMITER = RateLimiter(limit=10, interval_seconds=15 * 60)
TOKEN_VALIDATION_LIMITER = RateLimiter(limit=30, interval_seconds=60)
