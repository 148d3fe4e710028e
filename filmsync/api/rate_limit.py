"""
In-memory fixed-window rate limiting for API routes.

Each API process keeps its own counters, which is enough to stop rapid-fire
requests from one client against one instance.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from fastapi import HTTPException, Request

from filmsync.api.config import get_sync_rate_limit, get_sync_rate_window


@dataclass
class RateLimitResult:
    """Outcome of a rate limit check."""

    allowed: bool
    remaining: int
    reset_in: int  # seconds until the window resets


class RateLimiter:
    """Fixed-window counter per client key."""

    def __init__(self, limit: int, window_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[str, Tuple[int, float]] = {}

    def check(self, key: str) -> RateLimitResult:
        """Count one request for ``key`` and report whether it is allowed."""
        now = self._clock()
        with self._lock:
            self._evict_expired(now)
            count, reset_at = self._windows.get(key, (0, now + self.window_seconds))
            count += 1
            self._windows[key] = (count, reset_at)
        reset_in = max(0, int(reset_at - now + 0.999))
        if count > self.limit:
            return RateLimitResult(allowed=False, remaining=0, reset_in=reset_in)
        return RateLimitResult(allowed=True, remaining=self.limit - count, reset_in=reset_in)

    def reset(self) -> None:
        """Forget all counters."""
        with self._lock:
            self._windows.clear()

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._windows.items() if reset_at <= now]
        for key in expired:
            del self._windows[key]


def get_client_ip(request: Request) -> str:
    """Client address, honouring the usual proxy headers."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client is not None:
        return request.client.host
    return "unknown"


sync_rate_limiter = RateLimiter(get_sync_rate_limit(), get_sync_rate_window())


def enforce_sync_rate_limit(request: Request) -> None:
    """FastAPI dependency guarding the full-sync endpoint."""
    result = sync_rate_limiter.check(f"sync:{get_client_ip(request)}")
    if not result.allowed:
        raise HTTPException(
            status_code=429,
            detail="Too many requests. Please try again later.",
            headers={"Retry-After": str(result.reset_in), "X-RateLimit-Remaining": "0"},
        )
