"""In-memory TTL cache.

Entries expire lazily: nothing runs in the background, an expired entry
is dropped the next time it is looked up.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

__all__ = ["CacheEntry", "TTLCache"]

_MISSING = object()


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: float  # on the cache's clock


class TTLCache:
    """Key/value store with a uniform time-to-live.

    Thread-safe for single-key reads and writes.

    Example:
        cache = TTLCache(ttl=60)
        cache.set("profile", dataset)
        cache.get("profile")  # dataset, until 60s have passed
    """

    def __init__(
        self,
        ttl: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def lookup(self, key: str) -> Tuple[bool, Any]:
        """Return ``(found, value)``; cached ``None`` counts as found."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False, None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                return False, None
            return True, entry.value

    def get(self, key: str, default: Any = None) -> Any:
        found, value = self.lookup(key)
        return value if found else default

    def set(self, key: str, value: Any) -> CacheEntry:
        entry = CacheEntry(value=value, expires_at=self._clock() + self.ttl)
        with self._lock:
            self._entries[key] = entry
        return entry

    def expires_at(self, key: str) -> Optional[float]:
        """Expiry of a live entry as a wall-clock epoch timestamp."""
        with self._lock:
            entry = self._entries.get(key, _MISSING)
            if entry is _MISSING:
                return None
            remaining = entry.expires_at - self._clock()
        if remaining <= 0:
            return None
        return time.time() + remaining

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        """Drop every entry and return how many were held."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    def keys(self) -> List[str]:
        """Keys of entries that have not expired."""
        now = self._clock()
        with self._lock:
            return [k for k, e in self._entries.items() if e.expires_at > now]

    def __len__(self) -> int:
        return len(self.keys())
