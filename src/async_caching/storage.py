"""
Storage backends for versioned cache entries.

Provides InMemCache (in-memory), RedisCache, and the CacheBackend protocol.
Every backend stores a CacheEntry (value + version) under an opaque string key
and leaves expiry to its own TTL handling.
"""

from __future__ import annotations

import pickle
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Iterator, Protocol

import redis


# ============================================================================
# Cache Entry - value paired with the version that produced it
# ============================================================================


@dataclass(frozen=True)
class CacheEntry:
    """A cached value and the version it was generated for."""

    value: Any
    version: Any

    def __iter__(self) -> Iterator[Any]:
        # Allows `value, version = entry`
        yield self.value
        yield self.version


def normalize_ttl(expires_in: int | float | timedelta | None) -> int:
    """Convert an expiry to whole seconds. 0 means no expiration."""
    if expires_in is None:
        return 0
    if isinstance(expires_in, timedelta):
        expires_in = expires_in.total_seconds()
    if expires_in < 0:
        raise ValueError(f"expires_in must be >= 0, got {expires_in!r}")
    return int(expires_in)


# ============================================================================
# Backend Protocol - Common interface for all backends
# ============================================================================


class CacheBackend(Protocol):
    """
    Protocol for cache storage backends.

    The store only needs `read` and `write`; `delete` and `clear` are there
    for housekeeping and tests. Keys are opaque strings and the
    (value, version) pairing must be preserved exactly.

    Example:
        class MyBackend:
            def read(self, key: str) -> CacheEntry | None: ...
            def write(self, key: str, entry: CacheEntry, ttl: int = 0) -> None: ...
            def delete(self, key: str) -> None: ...
            def clear(self) -> None: ...
    """

    def read(self, key: str) -> CacheEntry | None:
        """Return the entry for key, or None if missing or expired."""
        ...

    def write(self, key: str, entry: CacheEntry, ttl: int = 0) -> None:
        """Store entry with TTL in seconds. ttl=0 means no expiration."""
        ...

    def delete(self, key: str) -> None:
        """Delete key from cache."""
        ...

    def clear(self) -> None:
        """Drop every entry owned by this backend."""
        ...


def validate_cache_backend(cache: Any) -> bool:
    """
    Validate that an object implements the CacheBackend protocol.

    Returns:
        True if valid, False otherwise
    """
    required_methods = ["read", "write"]
    return all(
        hasattr(cache, method) and callable(getattr(cache, method))
        for method in required_methods
    )


# ============================================================================
# InMemCache - In-memory storage with TTL
# ============================================================================


@dataclass
class _Slot:
    entry: CacheEntry
    expires_at: float  # Unix timestamp, inf for no expiry

    def is_live(self) -> bool:
        return time.time() < self.expires_at


class InMemCache:
    """
    Thread-safe in-memory backend with TTL support.

    Attributes:
        _data: internal slot map
        _lock: re-entrant lock to protect concurrent access
    """

    def __init__(self):
        self._data: dict[str, _Slot] = {}
        self._lock = threading.RLock()

    def read(self, key: str) -> CacheEntry | None:
        """Return entry if key still live, otherwise drop it."""
        with self._lock:
            slot = self._data.get(key)
            if slot is None:
                return None

            if not slot.is_live():
                del self._data[key]
                return None

            return slot.entry

    def write(self, key: str, entry: CacheEntry, ttl: int = 0) -> None:
        """Store entry for ttl seconds (0=forever)."""
        if not isinstance(entry, CacheEntry):
            entry = CacheEntry(*entry)
        ttl = normalize_ttl(ttl)
        expires_at = time.time() + ttl if ttl > 0 else float("inf")

        with self._lock:
            self._data[key] = _Slot(entry=entry, expires_at=expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def cleanup_expired(self) -> int:
        """Remove expired entries. Returns count of removed entries."""
        with self._lock:
            expired_keys = [
                key for key, slot in self._data.items() if not slot.is_live()
            ]
            for key in expired_keys:
                del self._data[key]
            return len(expired_keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


# ============================================================================
# RedisCache - Redis-backed storage
# ============================================================================


class RedisCache:
    """
    Redis-backed backend. Entries are pickled (value, version) pairs and TTL
    is delegated to Redis with SETEX.

    Client errors are not caught here: an unavailable Redis surfaces to the
    caller of Store.fetch.

    Example:
        import redis
        client = redis.Redis(host='localhost', port=6379)
        cache = RedisCache(client, prefix="app:")
        cache.write("user:123", CacheEntry({"name": "John"}, 1700000000), ttl=60)
    """

    def __init__(self, redis_client: redis.Redis, prefix: str = ""):
        """
        Initialize Redis cache.

        Args:
            redis_client: Redis client instance
            prefix: Key prefix for namespacing
        """
        self.client = redis_client
        self.prefix = prefix

    def _make_key(self, key: str) -> str:
        """Add prefix to key."""
        return f"{self.prefix}{key}"

    def read(self, key: str) -> CacheEntry | None:
        data = self.client.get(self._make_key(key))
        if data is None:
            return None
        value, version = pickle.loads(data)
        return CacheEntry(value=value, version=version)

    def write(self, key: str, entry: CacheEntry, ttl: int = 0) -> None:
        value, version = entry
        data = pickle.dumps((value, version))
        ttl = normalize_ttl(ttl)
        if ttl > 0:
            self.client.setex(self._make_key(key), ttl, data)
        else:
            self.client.set(self._make_key(key), data)

    def delete(self, key: str) -> None:
        self.client.delete(self._make_key(key))

    def clear(self) -> None:
        """Delete every key under this cache's prefix."""
        if not self.prefix:
            raise ValueError("Refusing to clear a RedisCache without a prefix")
        keys = list(self.client.scan_iter(match=f"{self.prefix}*"))
        if keys:
            self.client.delete(*keys)
