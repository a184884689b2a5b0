"""
core/ratelimit.py
-----------------
Fixed-window rate limiting exposed as FastAPI dependencies.
Limits the number of requests a client can make within a time window.
"""

import math
import threading
import time

from fastapi import HTTPException, Request

from insighthub.core.config import settings
from insighthub.core.logging import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Counts requests per client key inside a fixed window.

    Behavior:
        - The first request of a key opens a window of ``window_seconds``.
        - Requests beyond ``max_requests`` inside the window are rejected.
        - An expired window is reset on the next request.
    """

    def __init__(self, name: str, max_requests: int, window_seconds: int):
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._windows: dict[str, list] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> float:
        """
        Register a request for ``key``.

        Returns:
            0 when allowed, otherwise the seconds until the window resets.
        """
        now = time.monotonic()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now - window[1] > self.window_seconds:
                self._windows[key] = [1, now]
                return 0
            window[0] += 1
            if window[0] > self.max_requests:
                return window[1] + self.window_seconds - now
            return 0

    def cleanup(self) -> int:
        now = time.monotonic()
        with self._lock:
            stale = [k for k, (_, start) in self._windows.items()
                     if now - start > self.window_seconds * 2]
            for k in stale:
                del self._windows[k]
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def __call__(self, request: Request) -> None:
        client = request.client.host if request.client else "unknown"
        retry_after = self.hit(client)
        if retry_after:
            logger.warning(f"Rate limit '{self.name}' hit for {client}")
            raise HTTPException(
                status_code=429,
                detail="Too many requests",
                headers={"Retry-After": str(max(1, math.ceil(retry_after)))},
            )


api_rate_limiter = RateLimiter("api", settings.RATE_LIMIT_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS)
auth_rate_limiter = RateLimiter("auth", settings.RATE_LIMIT_AUTH_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS)
