"""Cache backend implementations.

Provides:
- MemoryCache: In-memory cache with TTL and explicit invalidation
- Cache: Abstract base class for custom backends

Caches are always injected into the collaborator that owns them; there is no
module-level instance.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A single cache entry with expiration."""

    value: Any
    expires_at: float | None = None  # Clock reading, None = no expiration

    def is_expired(self, now: float) -> bool:
        """Check if entry has expired."""
        if self.expires_at is None:
            return False
        return now >= self.expires_at


@dataclass
class CacheStats:
    """Hit/miss counters."""

    hits: int = 0
    misses: int = 0
    invalidations: int = 0


class Cache(ABC):
    """Abstract base class for cache implementations."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Get value from cache."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Set value in cache with optional TTL in seconds."""
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check if key exists and is not expired."""
        pass

    @abstractmethod
    def invalidate(self, key: str) -> bool:
        """Drop one key. Returns True if it was present."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Clear all cached values."""
        pass


class MemoryCache(Cache):
    """In-memory cache with TTL support.

    Thread-safe implementation suitable for single-process deployments.
    Performs lazy cleanup of expired entries on access.

    Args:
        max_size: Maximum number of entries (default 10000)
        default_ttl: Default TTL in seconds (default None = no expiration)
        cleanup_interval: Cleanup expired entries every N operations (default 100)
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        max_size: int = 10000,
        default_ttl: float | None = None,
        cleanup_interval: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cache: dict[str, CacheEntry] = {}
        self._lock = Lock()
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._cleanup_interval = cleanup_interval
        self._clock = clock
        self._operation_count = 0
        self._stats = CacheStats()

    def get(self, key: str) -> Any | None:
        self._maybe_cleanup()

        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats.misses += 1
                return None

            if entry.is_expired(self._clock()):
                del self._cache[key]
                self._stats.misses += 1
                return None

            self._stats.hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        self._maybe_cleanup()

        ttl = ttl if ttl is not None else self._default_ttl
        expires_at = self._clock() + ttl if ttl else None

        with self._lock:
            # Evict oldest if at capacity
            if len(self._cache) >= self._max_size and key not in self._cache:
                self._evict_oldest()

            self._cache[key] = CacheEntry(value=value, expires_at=expires_at)

    def add(self, key: str, value: Any = True, ttl: float | None = None) -> bool:
        """Set ``key`` only if absent or expired. Returns True if it was stored."""
        ttl = ttl if ttl is not None else self._default_ttl
        now = self._clock()
        with self._lock:
            entry = self._cache.get(key)
            if entry is not None and not entry.is_expired(now):
                self._stats.hits += 1
                return False
            if len(self._cache) >= self._max_size and key not in self._cache:
                self._evict_oldest()
            self._cache[key] = CacheEntry(value=value, expires_at=now + ttl if ttl else None)
            self._stats.misses += 1
            return True

    def exists(self, key: str) -> bool:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._cache[key]
                return False
            return True

    def invalidate(self, key: str) -> bool:
        with self._lock:
            if key in self._cache:
                del self._cache[key]
                self._stats.invalidations += 1
                return True
            return False

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with ``prefix``. Returns the number removed."""
        with self._lock:
            keys = [k for k in self._cache if k.startswith(prefix)]
            for key in keys:
                del self._cache[key]
            self._stats.invalidations += len(keys)
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._stats = CacheStats()

    def _maybe_cleanup(self) -> None:
        """Periodically clean up expired entries."""
        self._operation_count += 1
        if self._operation_count >= self._cleanup_interval:
            self._operation_count = 0
            self._cleanup_expired()

    def _cleanup_expired(self) -> None:
        """Remove all expired entries."""
        now = self._clock()
        with self._lock:
            expired_keys = [k for k, v in self._cache.items() if v.is_expired(now)]
            for key in expired_keys:
                del self._cache[key]

    def _evict_oldest(self) -> None:
        """Evict oldest entry (FIFO). Must be called with lock held."""
        if self._cache:
            oldest_key = next(iter(self._cache))
            del self._cache[oldest_key]

    @property
    def stats(self) -> CacheStats:
        """Get cache statistics."""
        return self._stats

    @property
    def size(self) -> int:
        """Current number of entries."""
        return len(self._cache)
