"""
core/cache.py
-------------
In-process TTL cache for read-heavy resources (current organization, user
profile, dashboard detail). Mutations invalidate with a single `delete` or
`delete_pattern` call.
"""

import re
import threading
import time
from typing import Any, Callable, Optional

from insighthub.core.logging import get_logger

logger = get_logger(__name__)


class MemoryCache:
    """Thread-safe key/value cache with optional per-entry TTL."""

    def __init__(self):
        self._entries: dict[str, tuple[Any, float, Optional[float]]] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        with self._lock:
            self._entries[key] = (value, time.monotonic(), ttl_seconds)

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, created, ttl = entry
            if ttl is not None and time.monotonic() - created > ttl:
                del self._entries[key]
                return None
            return value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching the regular expression ``pattern``."""
        regex = re.compile(pattern)
        with self._lock:
            doomed = [k for k in self._entries if regex.search(k)]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def cleanup(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = time.monotonic()
        with self._lock:
            expired = [k for k, (_, created, ttl) in self._entries.items()
                       if ttl is not None and now - created > ttl]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug(f"Cache cleanup removed {len(expired)} expired entries")
        return len(expired)


cache = MemoryCache()


class cache_keys:
    @staticmethod
    def user(user_id) -> str:
        return f"user:{user_id}"

    @staticmethod
    def organization(org_id) -> str:
        return f"org:{org_id}"

    @staticmethod
    def dashboard(dashboard_id) -> str:
        return f"dashboard:{dashboard_id}"

    @staticmethod
    def dashboard_widgets(dashboard_id) -> str:
        return f"dashboard:{dashboard_id}:widgets"

    @staticmethod
    def org_analytics(org_id, period: str) -> str:
        return f"org:{org_id}:analytics:{period}"

    @staticmethod
    def org_users(org_id) -> str:
        return f"org:{org_id}:users"


def cache_or_fetch(key: str, fetch_fn: Callable[[], Any], ttl_seconds: float = 300) -> Any:
    """Return the cached value for ``key`` or compute, store and return it."""
    cached = cache.get(key)
    if cached is not None:
        return cached
    value = fetch_fn()
    if value is not None:
        cache.set(key, value, ttl_seconds)
    return value
