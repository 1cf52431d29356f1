from __future__ import annotations

import os
import threading
from typing import Any

from cachetools import TTLCache


def drive_status_key(drive_id: str) -> str:
    return f"DRIVE_STATUS:{str(drive_id or '').strip()}"


class _StatusCache:
    """Short-lived read cache for drive status snapshots; writers invalidate by drive."""

    def __init__(self):
        try:
            ttl = int(os.getenv("STATUS_CACHE_TTL_SECONDS", "5") or "5")
            max_items = int(os.getenv("STATUS_CACHE_MAX_ITEMS", "2000") or "2000")
        except ValueError:
            ttl, max_items = 5, 2000
        ttl = max(1, min(300, ttl))
        max_items = max(100, min(100_000, max_items))
        self._cache = TTLCache(maxsize=max_items, ttl=ttl)
        self._lock = threading.RLock()

    def get(self, key: str) -> Any:
        with self._lock:
            return self._cache.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._cache[key] = value

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


_cache = _StatusCache()


def cache_get(key: str) -> Any:
    return _cache.get(key)


def cache_set(key: str, value: Any) -> None:
    _cache.set(key, value)


def cache_invalidate(key: str) -> bool:
    return _cache.invalidate(key)


def cache_clear() -> None:
    _cache.clear()
