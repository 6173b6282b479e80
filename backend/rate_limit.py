"""
Fixed-window request rate limiting.

Every client address gets max_requests per window. Excess requests are
rejected with 429 straight away; nothing is queued.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Expired windows are swept once the table grows past this many clients
SWEEP_THRESHOLD = 10_000


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_after: float  # seconds until the current window closes


class FixedWindowRateLimiter:
    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> RateLimitResult:
        """Count one request for key and report whether it is admitted."""
        now = self._clock()
        with self._lock:
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0

            count += 1
            self._windows[key] = (started, count)

            if len(self._windows) > SWEEP_THRESHOLD:
                self._sweep(now)

        reset_after = max(0.0, self.window_seconds - (now - started))
        return RateLimitResult(
            allowed=count <= self.max_requests,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_after=reset_after,
        )

    def _sweep(self, now: float) -> None:
        expired = [key for key, (started, _) in self._windows.items() if now - started >= self.window_seconds]
        for key in expired:
            del self._windows[key]

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


def client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies app.state.rate_limiter to every request ahead of routing.

    The limiter is looked up per request so it can be replaced at runtime.
    """

    async def dispatch(self, request: Request, call_next):
        limiter: FixedWindowRateLimiter = request.app.state.rate_limiter
        key = client_key(request)
        result = limiter.hit(key)

        if not result.allowed:
            logger.info(f"Rate limit exceeded for client {key} on {request.method} {request.url.path}")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"detail": "Too many requests, please try again later."},
                headers={
                    "Retry-After": str(math.ceil(result.reset_after)),
                    "X-RateLimit-Limit": str(result.limit),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        return response
