"""Simple TTL cache helpers for frequently accessed data."""
from __future__ import annotations

import threading
from typing import Any, Generic, Optional, TypeVar

from cachetools import TTLCache

from .config import get_settings

T = TypeVar("T")

ROOMS_BOARD_KEY = "rooms-board"


class SimpleTTLCache(Generic[T]):
    """TTL cache safe to share between request threads and the event worker."""

    def __init__(self, ttl: int, maxsize: int = 256) -> None:
        self._cache: TTLCache[str, T] = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            return self._cache.get(key)

    def set(self, key: str, value: T) -> None:
        with self._lock:
            self._cache[key] = value

    def pop(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


# Serialized rooms board, refreshed by RoomsSnapshotChanged events.
rooms_board_cache: SimpleTTLCache[list[dict[str, Any]]] = SimpleTTLCache(ttl=get_settings().room_cache_ttl)
