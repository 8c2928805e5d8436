"""Small in-memory TTL cache shared by the HTTP-facing services."""

from __future__ import annotations

import threading
import time
from typing import Callable, Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """Thread-safe mapping whose entries expire ``ttl_seconds`` after insertion.

    Every read and write takes the internal lock, so one instance can be shared
    between asyncio tasks and worker threads.
    """

    def __init__(
        self,
        ttl_seconds: float,
        *,
        max_entries: int = 1_024,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must not be negative")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[K, tuple[float, V]] = {}
        self._lock = threading.Lock()

    def get(self, key: K) -> V | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= now:
                del self._entries[key]
                return None
            return value

    def set(self, key: K, value: V) -> None:
        now = self._clock()
        with self._lock:
            if len(self._entries) >= self._max_entries and key not in self._entries:
                self._evict(now)
            self._entries[key] = (now + self._ttl, value)

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def discard(self, key: K) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if len(self._entries) >= self._max_entries:
            # Oldest insertion goes first; dicts keep insertion order.
            oldest = next(iter(self._entries))
            del self._entries[oldest]
