"""
PM-Fit Backend - TTL Cache

In-memory key/value cache with expiry checked on read and on every store.
Scoped to the process: nothing here is shared across instances.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Optional


# Share of entries dropped when the cache is full
EVICTION_FRACTION = 0.25


@dataclass
class CacheEntry:
    value: Any
    stored_at: float
    expires_at: float


class TTLCache:
    """Cache-aside store with get / set / has_expired semantics."""

    def __init__(
        self,
        ttl_seconds: float,
        *,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry] = {}

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return default
        return entry.value

    def set(self, key: Hashable, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            return
        # Keys never read again would otherwise only leave on len()
        self.purge_expired()
        if self.max_entries is not None and key not in self._entries and len(self._entries) >= self.max_entries:
            self._evict()
        now = self._clock()
        self._entries[key] = CacheEntry(value=value, stored_at=now, expires_at=now + ttl)

    def has_expired(self, key: Hashable) -> bool:
        """True if the key is missing or past its expiry."""
        entry = self._entries.get(key)
        return entry is None or entry.expires_at <= self._clock()

    def delete(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _evict(self) -> None:
        """Remove the oldest quarter of entries (at least one)."""
        if self.max_entries is None or len(self._entries) < self.max_entries:
            return
        oldest = sorted(self._entries.items(), key=lambda item: item[1].stored_at)
        count = max(1, int(len(oldest) * EVICTION_FRACTION))
        for key, _ in oldest[:count]:
            del self._entries[key]

    def __contains__(self, key: Hashable) -> bool:
        return not self.has_expired(key)

    def __len__(self) -> int:
        self.purge_expired()
        return len(self._entries)
