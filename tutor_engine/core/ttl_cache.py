"""Thread-safe, process-wide TTL cache for advisory values.

Entries expire after a fixed TTL. Expired entries are dropped when read, and a
full sweep runs on write once the cache holds more than ``max_entries``.
Nothing may depend on a value being present: a cold or cleared cache behaves
exactly like a miss.
"""

import threading
from time import monotonic
from typing import Any, Callable


class TTLCache:
    """Key → value cache with a fixed time-to-live."""

    def __init__(self, ttl_seconds: float, max_entries: int = 1000, clock: Callable[[], float] = monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[Any, float]] = {}

    def get(self, key: str) -> Any | None:
        """Cached value, or None when absent or expired."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, stored_at = entry
            if now - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = (value, now)
            if len(self._entries) > self.max_entries:
                self._sweep(now)

    def _sweep(self, now: float) -> int:
        expired = [k for k, (_, ts) in self._entries.items() if now - ts >= self.ttl_seconds]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def sweep(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        with self._lock:
            return self._sweep(self._clock())

    def invalidate(self, prefix: str) -> None:
        """Remove all entries whose key starts with ``prefix``."""
        with self._lock:
            for k in [k for k in self._entries if k.startswith(prefix)]:
                del self._entries[k]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
