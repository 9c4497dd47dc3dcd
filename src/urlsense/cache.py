# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Detection result cache: TTL expiry, batched oldest-first eviction, stats.

Pure Python module: no network dependencies.

Keys are normalized URLs (see normalize.py).  Results are copied on every
read and write so callers can mutate what they get back without touching the
cached state.

Thread-safe: a single store-wide lock guards entries and counters.  Critical
sections are short and never await, so the same lock serves threads and the
event loop alike.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from . import DetectionResult

logger = logging.getLogger("urlsense.cache")

DEFAULT_MAX_SIZE = 1000
DEFAULT_TTL_SECONDS = 300.0
DEFAULT_EVICT_BATCH = 10
DEFAULT_SWEEP_INTERVAL = 300.0

# Per-entry bookkeeping overhead used by the memory estimate
_ENTRY_OVERHEAD_BYTES = 100


# ---------------------------------------------------------------------------
# Cache entry
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class CacheEntry:
    """A cached detection result with its lifetime bookkeeping."""

    result: DetectionResult
    timestamp: float  # creation time (cache clock)
    expires_at: float
    access_count: int = 0

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


# ---------------------------------------------------------------------------
# Cache stats (observability)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Point-in-time snapshot of cache counters."""

    size: int
    hits: int
    misses: int
    evictions: int
    expirations: int
    oldest_age: float  # seconds
    newest_age: float  # seconds
    memory_bytes: int  # rough estimate

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> dict:
        return {
            "size": self.size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "oldest_age": self.oldest_age,
            "newest_age": self.newest_age,
            "memory_bytes": self.memory_bytes,
        }


# ---------------------------------------------------------------------------
# DetectionCache
# ---------------------------------------------------------------------------


class DetectionCache:
    """Normalized URL → DetectionResult store.

    When full, inserting a new key evicts a whole batch of the oldest entries
    (by creation time) so eviction cost is amortized over many inserts.
    Expired entries disappear lazily on access and eagerly whenever a sweep
    runs (at most once per ``sweep_interval``, piggybacked on get/set).
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        *,
        evict_batch: int = DEFAULT_EVICT_BATCH,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_size = max(1, max_size)
        self._default_ttl = default_ttl
        self._evict_batch = max(1, evict_batch)
        self._sweep_interval = sweep_interval
        self._enabled = enabled
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._last_sweep = clock()

    # -- Properties --

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    @property
    def max_size(self) -> int:
        return self._max_size

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def configure(self, *, default_ttl: float | None = None, enabled: bool | None = None) -> None:
        """Adjust TTL or toggle the cache.  Existing entries keep their expiry."""
        with self._lock:
            if default_ttl is not None:
                self._default_ttl = default_ttl
            if enabled is not None:
                self._enabled = enabled
                if not enabled:
                    self._entries.clear()

    # -- Lookup --

    def get(self, key: str) -> DetectionResult | None:
        """Return a copy of the cached result, or None if missing/expired."""
        with self._lock:
            if not self._enabled:
                self._misses += 1
                return None

            now = self._clock()
            self._maybe_sweep(now)

            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired(now):
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                logger.debug("Cache TTL expired: %s", key)
                return None

            entry.access_count += 1
            self._hits += 1
            return entry.result.copy()

    def has(self, key: str) -> bool:
        """True when *key* is present and unexpired.  Does not touch counters."""
        with self._lock:
            if not self._enabled:
                return False
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    # -- Store --

    def set(self, key: str, result: DetectionResult, ttl: float | None = None) -> None:
        """Store a copy of *result* under *key* for *ttl* seconds (default TTL if None)."""
        with self._lock:
            if not self._enabled:
                return

            now = self._clock()
            self._maybe_sweep(now)

            if key not in self._entries and len(self._entries) >= self._max_size:
                removed = self._evict_oldest_locked(self._evict_batch)
                logger.debug("Cache full: evicted %d oldest entries", removed)

            lifetime = self._default_ttl if ttl is None else ttl
            self._entries[key] = CacheEntry(
                result=result.copy(),
                timestamp=now,
                expires_at=now + lifetime,
            )

    def refresh(self, key: str, ttl: float | None = None) -> bool:
        """Extend an entry's lifetime from now.  Returns False if *key* is absent."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            entry.expires_at = self._clock() + (self._default_ttl if ttl is None else ttl)
            return True

    # -- Invalidation --

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Drop every entry and reset all counters."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._expirations = 0
            self._last_sweep = self._clock()
        logger.debug("Cache cleared")

    def sweep(self) -> int:
        """Remove all expired entries now.  Returns the number removed."""
        with self._lock:
            return self._sweep_locked(self._clock())

    def evict_oldest(self, count: int) -> int:
        with self._lock:
            return self._evict_oldest_locked(count)

    def evict_least_used(self, count: int) -> int:
        """Evict the *count* entries with the fewest hits (oldest first on ties)."""
        with self._lock:
            if count <= 0:
                return 0
            victims = sorted(
                self._entries.items(),
                key=lambda kv: (kv[1].access_count, kv[1].timestamp),
            )[:count]
            for key, _ in victims:
                del self._entries[key]
            self._evictions += len(victims)
            return len(victims)

    # -- Stats --

    def stats(self) -> CacheStats:
        with self._lock:
            now = self._clock()
            oldest_age = newest_age = 0.0
            if self._entries:
                stamps = [e.timestamp for e in self._entries.values()]
                oldest_age = now - min(stamps)
                newest_age = now - max(stamps)
            return CacheStats(
                size=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                expirations=self._expirations,
                oldest_age=oldest_age,
                newest_age=newest_age,
                memory_bytes=self._estimate_memory_locked(),
            )

    # -- Internals (caller holds the lock) --

    def _maybe_sweep(self, now: float) -> None:
        if self._sweep_interval > 0 and now - self._last_sweep >= self._sweep_interval:
            removed = self._sweep_locked(now)
            if removed:
                logger.debug("Cache sweep removed %d expired entries", removed)

    def _sweep_locked(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self._expirations += len(expired)
        self._last_sweep = now
        return len(expired)

    def _evict_oldest_locked(self, count: int) -> int:
        if count <= 0:
            return 0
        victims = sorted(self._entries.items(), key=lambda kv: kv[1].timestamp)[:count]
        for key, _ in victims:
            del self._entries[key]
        self._evictions += len(victims)
        return len(victims)

    def _estimate_memory_locked(self) -> int:
        total = 0
        for key, entry in self._entries.items():
            total += len(key) * 2
            total += len(json.dumps(entry.result.to_dict(), default=str)) * 2
            total += _ENTRY_OVERHEAD_BYTES
        return total
