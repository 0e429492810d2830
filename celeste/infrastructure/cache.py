"""Process-scoped TTL cache for per-user behavioral data.

Entries are advisory: a stale entry means a slightly outdated escalation level
or a repeated computation, never a wrong answer. Bounded LRU-style by
cachetools with a fixed per-entry TTL.
"""

from __future__ import annotations

import threading
from typing import Any

from cachetools import TTLCache

from celeste.config import CACHE_MAX_ENTRIES, CACHE_TTL_SECONDS

_MISSING = object()

KEY_PREFIXES = ("behavioral", "resistance", "profile")


def behavioral_key(user_id: str) -> str:
    return f"behavioral:{user_id}"


def resistance_key(user_id: str) -> str:
    return f"resistance:{user_id}"


def profile_key(user_id: str) -> str:
    return f"profile:{user_id}"


class BehavioralCache:
    """TTLCache wrapper that keeps hit/miss statistics."""

    def __init__(self, maxsize: int = CACHE_MAX_ENTRIES, ttl: float = CACHE_TTL_SECONDS) -> None:
        self._cache: TTLCache[str, Any] = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = threading.Lock()
        self.maxsize = maxsize
        self.ttl = ttl
        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            value = self._cache.get(key, _MISSING)
            if value is _MISSING:
                self.misses += 1
                return default
            self.hits += 1
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._cache[key] = value

    def invalidate_user(self, user_id: str) -> None:
        """Drop every cached entry for a user."""
        with self._lock:
            for prefix in KEY_PREFIXES:
                self._cache.pop(f"{prefix}:{user_id}", None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        return len(self._cache)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self.hits + self.misses
            return {
                "size": len(self._cache),
                "maxsize": self.maxsize,
                "ttl": self.ttl,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(self.hits / total, 3) if total else 0.0,
            }
