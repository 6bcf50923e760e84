"""Fixed-window rate limiting.

Each limiter keeps key -> window in memory for this process only; several
workers each enforce their own independent limit. The clock is injectable
(seconds since the epoch, like time.time) so tests can move time by hand.
"""

from __future__ import annotations

import dataclasses
import math
import threading
import time
from typing import Callable, Optional

from fastapi.responses import JSONResponse
from starlette.requests import Request

SWEEP_INTERVAL_SECONDS = 5 * 60

Clock = Callable[[], float]
KeyFunc = Callable[[Request], str]


def client_ip(request: Request) -> str:
    """Client address, preferring proxy headers (Cloudflare, nginx, generic)."""
    headers = request.headers
    forwarded = headers.get("x-forwarded-for")
    ip = (
        headers.get("cf-connecting-ip")
        or headers.get("x-real-ip")
        or (forwarded.split(",")[0].strip() if forwarded else None)
        or (request.client.host if request.client else None)
        or "unknown"
    )
    return ip


def ip_key(request: Request) -> str:
    return f"ip:{client_ip(request)}"


@dataclasses.dataclass
class _Window:
    count: int
    reset_time: float


@dataclasses.dataclass
class RateLimitResult:
    is_limited: bool
    remaining: int
    reset_time: float
    count: int
    _increment: Callable[[], None] = dataclasses.field(repr=False)

    def increment(self) -> None:
        """Count the request against the window. Call only once the request is accepted."""
        self._increment()


class RateLimiter:
    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        key_func: KeyFunc = ip_key,
        clock: Clock = time.time,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.key_func = key_func
        self.clock = clock
        self.sweep_interval = sweep_interval
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._windows)

    def check(self, request: Request, user_id: Optional[str] = None) -> RateLimitResult:
        key = self.key_func(request) + (f":user:{user_id}" if user_id else "")
        return self.check_key(key)

    def check_key(self, key: str) -> RateLimitResult:
        now = self.clock()
        with self._lock:
            if now - self._last_sweep >= self.sweep_interval:
                self._sweep_locked(now)

            window = self._windows.get(key)
            if window is None or now > window.reset_time:
                window = _Window(count=0, reset_time=now + self.window_seconds)
                self._windows[key] = window

            count = window.count

        def increment() -> None:
            with self._lock:
                window.count += 1

        return RateLimitResult(
            is_limited=count >= self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_time=window.reset_time,
            count=count,
            _increment=increment,
        )

    def sweep(self) -> int:
        """Drop expired windows; returns how many were removed."""
        with self._lock:
            return self._sweep_locked(self.clock())

    def _sweep_locked(self, now: float) -> int:
        expired = [key for key, w in self._windows.items() if now > w.reset_time]
        for key in expired:
            del self._windows[key]
        self._last_sweep = now
        return len(expired)


@dataclasses.dataclass
class DualLimitResult:
    user_limit: RateLimitResult
    ip_limit: RateLimitResult

    @property
    def is_blocked(self) -> bool:
        return self.user_limit.is_limited or self.ip_limit.is_limited

    @property
    def blocking(self) -> RateLimitResult:
        return self.user_limit if self.user_limit.is_limited else self.ip_limit

    def increment(self) -> None:
        self.user_limit.increment()
        self.ip_limit.increment()


def check_dual(
    request: Request,
    user_limiter: RateLimiter,
    ip_limiter: RateLimiter,
    user_id: Optional[str] = None,
) -> DualLimitResult:
    """Check a per-user and a per-IP limiter together."""
    return DualLimitResult(
        user_limit=user_limiter.check(request, user_id),
        ip_limit=ip_limiter.check(request),
    )


class RateLimitRegistry:
    """The process-wide set of limiters, kept on app.state."""

    def __init__(self, clock: Clock = time.time):
        hour = 60 * 60
        day = 24 * hour
        self.chapter_upload = RateLimiter(100, hour, clock=clock)
        self.chapter_upload_by_ip = RateLimiter(250, hour, clock=clock)
        self.series_submission = RateLimiter(2, day, clock=clock)
        self.series_submission_by_ip = RateLimiter(10, day, clock=clock)
        self.general = RateLimiter(100, 15 * 60, clock=clock)

    def all(self) -> list[RateLimiter]:
        return [
            self.chapter_upload,
            self.chapter_upload_by_ip,
            self.series_submission,
            self.series_submission_by_ip,
            self.general,
        ]


def rate_limit_headers(result: RateLimitResult, now: Optional[float] = None) -> dict[str, str]:
    now = time.time() if now is None else now
    return {
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(math.ceil(result.reset_time)),
        "Retry-After": str(max(0, math.ceil(result.reset_time - now))),
    }


def rate_limit_response(
    result: RateLimitResult,
    message: str = "Too many requests",
    now: Optional[float] = None,
) -> JSONResponse:
    return JSONResponse(
        {"error": message, "type": "RATE_LIMIT_EXCEEDED"},
        status_code=429,
        headers=rate_limit_headers(result, now),
    )
