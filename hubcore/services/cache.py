"""
ResponseCache - Bounded in-memory cache for remote call results.

Features:
- Deterministic cache keys built from method name and parameters
- TTL (Time To Live) per entry, checked lazily on read
- Strict insertion-order (FIFO) eviction: reads never protect an entry
- Hit/miss/eviction statistics
"""

import asyncio
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Generic, Mapping, TypeVar

from loguru import logger

from hubcore.services.errors import ConfigurationError

T = TypeVar("T")

MAX_KEY_LENGTH = 250


@dataclass
class CacheConfig:
    """Configuration for the response cache."""

    max_age_seconds: int = 300  # Default TTL
    max_entries: int = 1000  # Capacity before FIFO eviction

    def __post_init__(self) -> None:
        if self.max_age_seconds <= 0:
            raise ConfigurationError("Cache max_age_seconds must be a positive integer")
        if self.max_entries <= 0:
            raise ConfigurationError("Cache max_entries must be a positive integer")

    @property
    def default_ttl(self) -> timedelta:
        return timedelta(seconds=self.max_age_seconds)


@dataclass
class CacheEntry(Generic[T]):
    """A single cache entry with metadata."""

    value: T
    stored_at: datetime
    ttl: timedelta

    def is_expired(self, now: datetime) -> bool:
        """Check if entry is past its TTL."""
        return now - self.stored_at > self.ttl


def _canonicalize(value: Any) -> Any:
    """Recursively sort mapping keys and drop None-valued mapping fields."""
    if isinstance(value, Mapping):
        return {
            str(k): _canonicalize(v)
            for k, v in sorted(value.items(), key=lambda item: str(item[0]))
            if v is not None
        }
    if isinstance(value, (list, tuple)):
        return [_canonicalize(v) for v in value]
    return value


def build_cache_key(method: str, params: Mapping[str, Any] | None = None) -> str:
    """
    Build a deterministic cache key.

    ``build_cache_key("getRepo", {"a": 1, "b": 2})`` and
    ``build_cache_key("getRepo", {"b": 2, "a": 1})`` are equal. Keys longer
    than 250 characters are replaced by ``method:<md5 hex>``.
    """
    serialized = json.dumps(
        _canonicalize(params or {}),
        separators=(",", ":"),
        sort_keys=True,
        default=str,
    )
    key = f"{method}:{serialized}"

    # Hash long keys
    if len(key) > MAX_KEY_LENGTH:
        digest = hashlib.md5(serialized.encode()).hexdigest()
        return f"{method}:{digest}"

    return key


class ResponseCache:
    """
    Async-compatible response cache with TTL and FIFO eviction.

    Usage:
        cache = ResponseCache(CacheConfig(max_age_seconds=60, max_entries=500))

        key = build_cache_key("GET:getRepository", {"owner": "o", "repo": "r"})
        value = await cache.get(key)
        if value is None:
            value = await fetch()
            await cache.set(key, value)
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
        debug: bool = False,
    ):
        self.config = config or CacheConfig()
        # dict preserves insertion order; reads never reorder it
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._clock = clock
        self._debug = debug
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    async def get(self, key: str, default: Any = None) -> Any:
        """
        Return the fresh value for ``key``, or ``default`` on a miss.

        A stored None is a hit; pass a sentinel ``default`` to tell the two
        apart. Expired entries are dropped.
        """
        async with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_expired(self._clock()):
                self._entries.pop(key)
                self._stats.expirations += 1
                self._log("expired", key)
                entry = None

            if entry is None:
                self._stats.misses += 1
                self._log("miss", key)
                return default

            self._stats.hits += 1
            self._log("hit", key)
            return entry.value

    async def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        """
        Store ``value`` under ``key``.

        Args:
            key: Cache key
            value: Data to cache
            ttl: Time to live (uses the configured max age if not specified)
        """
        ttl = self.config.default_ttl if ttl is None else ttl
        entry = CacheEntry(value=value, stored_at=self._clock(), ttl=ttl)

        async with self._lock:
            # Overwriting keeps the key's original insertion position
            is_new = key not in self._entries
            if is_new and len(self._entries) >= self.config.max_entries:
                self._evict_oldest()

            self._entries[key] = entry
            self._log("set", key, f"ttl={ttl.total_seconds()}s")

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if key not in self._entries:
                return False
            del self._entries[key]
            self._log("delete", key)
            return True

    async def invalidate(self, pattern: str) -> int:
        """
        Drop every key containing ``pattern``.

        Returns:
            How many entries were dropped
        """
        async with self._lock:
            matching = [key for key in self._entries if pattern in key]
            for key in matching:
                self._entries.pop(key)

            if matching:
                self._log("invalidate", pattern, f"{len(matching)} entries")
            return len(matching)

    async def clear(self) -> None:
        """Drop everything and start counting from zero."""
        async with self._lock:
            dropped = len(self._entries)
            self._entries.clear()
            self._stats = CacheStats()
            self._log("clear", "*", f"{dropped} entries")

    def keys(self) -> list[str]:
        """Keys in insertion order, oldest first."""
        return list(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _evict_oldest(self) -> None:
        if not self._entries:
            return

        oldest = next(iter(self._entries))
        self._entries.pop(oldest)
        self._stats.evictions += 1
        self._log("evict", oldest)

    def get_stats(self) -> "CacheStats":
        self._stats.size = len(self._entries)
        self._stats.max_size = self.config.max_entries
        return self._stats

    def _log(self, action: str, key: str, detail: str = "") -> None:
        if self._debug:
            suffix = f" ({detail})" if detail else ""
            logger.debug(f"[ResponseCache] {action.upper()}: {key[:50]}{suffix}")


@dataclass
class CacheStats:
    """Counters since creation or the last clear()."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
