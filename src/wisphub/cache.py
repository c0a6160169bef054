"""
In-memory TTL cache used by the HTTP access layer.

Entries expire lazily: an expired entry is purged the next time it is read,
or by an explicit ``cleanup()`` sweep. Each cache instance owns its own
statistics.
"""

import threading
import time
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Optional


@dataclass
class CacheEntry:
    """A cached value and its absolute expiry time (clock seconds)."""
    value: Any
    expires_at: float


@dataclass
class CacheStats:
    """Snapshot of cache counters."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    clears: int = 0
    size: int = 0
    hit_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TTLCache:
    """
    Thread-safe key/value store with per-entry TTL.

    Args:
        clock: Callable returning the current time in seconds. Defaults to
            ``time.monotonic``; tests pass a fake clock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0
        self._clears = 0

    def set(self, key: str, value: Any, ttl_ms: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_ms`` milliseconds."""
        expires_at = self._clock() + ttl_ms / 1000.0
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=expires_at)
            self._sets += 1

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.expires_at <= self._clock():
                del self._entries[key]
                self._misses += 1
                self._deletes += 1
                return None

            self._hits += 1
            return entry.value

    def delete(self, key: str) -> bool:
        """Remove ``key``; returns whether anything was removed."""
        with self._lock:
            if key in self._entries:
                del self._entries[key]
                self._deletes += 1
                return True
            return False

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._clears += 1

    def cleanup(self) -> int:
        """Eagerly purge every expired entry and return how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
            for key in expired:
                del self._entries[key]
            self._deletes += len(expired)
        return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            reads = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                sets=self._sets,
                deletes=self._deletes,
                clears=self._clears,
                size=len(self._entries),
                hit_rate=self._hits / reads if reads else 0.0,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
