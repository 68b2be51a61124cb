"""
TTL caches for GridWatch.

One generic in-memory cache with per-entry TTL and hit/miss accounting, plus
thin facades that shape keys for API responses, query results and arbitrary
objects.

Expiry is lazy: an expired entry stays in the map until a read, has(),
size(), keys() or get_stats() notices it and evicts it. There is no
background sweeper.

Usage:
    from gridwatch.monitoring.cache import ApiResponseCache

    cache = ApiResponseCache(default_ttl=300)
    cache.set_response("/api/projects", {"page": 1, "status": "active"}, payload)
    cache.get_response("/api/projects", {"status": "active", "page": 1})  # hit
"""

import json
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Generic, Literal, Optional, TypeVar

import structlog

if TYPE_CHECKING:
    from gridwatch.config.settings import Settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 300.0

TTLProfile = Literal["static", "dynamic", "volatile"]

_TTL_PROFILES: dict[str, float] = {
    "static": 3600.0,
    "dynamic": 600.0,
    "volatile": 60.0,
}


@dataclass
class CacheEntry(Generic[T]):
    """A cached value with its TTL bookkeeping."""

    data: T
    created_at: float
    ttl: float
    hit_count: int = 0
    last_accessed_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


def _canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str, separators=(",", ":"))


class MemoryCache:
    """
    Keyed in-memory store with per-entry TTL and lazy expiry.

    Args:
        default_ttl: TTL in seconds used when set() is given none (default: 300)
        clock: Time source returning epoch seconds
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0
        self._clears = 0
        self._lock = threading.RLock()

    def get(self, key: str) -> Any:
        """Return the live value for ``key`` or None. Expired entries count as misses."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            now = self._clock()
            if entry.is_expired(now):
                del self._entries[key]
                self._misses += 1
                self._deletes += 1
                return None

            entry.hit_count += 1
            entry.last_accessed_at = now
            self._hits += 1
            hits = entry.hit_count

        logger.debug("cache_hit", key=key, hits=hits)
        return entry.data

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store ``value``, replacing any existing entry and resetting its stats."""
        now = self._clock()
        entry = CacheEntry(
            data=value,
            created_at=now,
            ttl=self.default_ttl if ttl is None else ttl,
            hit_count=0,
            last_accessed_at=now,
        )
        with self._lock:
            self._entries[key] = entry
            self._sets += 1

        logger.debug("cache_set", key=key, ttl=entry.ttl)

    def delete(self, key: str) -> bool:
        with self._lock:
            if key not in self._entries:
                return False
            del self._entries[key]
            self._deletes += 1

        logger.debug("cache_delete", key=key)
        return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._clears += 1
        logger.info("cache_cleared")

    def has(self, key: str) -> bool:
        """Check for a live entry without touching hit statistics."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return False
            return True

    def size(self) -> int:
        """Number of live entries."""
        with self._lock:
            self._sweep_expired()
            return len(self._entries)

    def keys(self) -> list[str]:
        with self._lock:
            self._sweep_expired()
            return list(self._entries)

    def get_metadata(self, key: str) -> Optional[dict[str, float]]:
        """Return ttl, hits, last_accessed and age for a live entry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            now = self._clock()
            if entry.is_expired(now):
                del self._entries[key]
                return None

            return {
                "ttl": entry.ttl,
                "hits": entry.hit_count,
                "last_accessed": entry.last_accessed_at,
                "age": now - entry.created_at,
            }

    def get_stats(self) -> dict[str, float]:
        """Counters plus hit rate (percent) and live size."""
        with self._lock:
            self._sweep_expired()
            lookups = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "sets": self._sets,
                "deletes": self._deletes,
                "clears": self._clears,
                "hit_rate": (self._hits / lookups) * 100 if lookups else 0,
                "size": len(self._entries),
            }

    def _sweep_expired(self) -> None:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]

        if expired:
            logger.debug("cache_expired_entries_cleaned", count=len(expired))


# =============================================================================
# Keyed facades
# =============================================================================


class ApiResponseCache:
    """
    Cache for API responses keyed by endpoint and parameters.

    Parameters are canonicalized with sorted keys so that ordering never
    causes a miss.
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache = MemoryCache(default_ttl, clock=clock)

    @staticmethod
    def generate_key(endpoint: str, params: Optional[dict[str, Any]] = None) -> str:
        params = params or {}
        query = "&".join(
            f"{name}={_canonical_json(params[name])}" for name in sorted(params)
        )
        return f"{endpoint}:{query}"

    def set_response(
        self,
        endpoint: str,
        params: Optional[dict[str, Any]],
        response: Any,
        ttl: Optional[float] = None,
    ) -> None:
        self.cache.set(self.generate_key(endpoint, params), response, ttl)

    def get_response(self, endpoint: str, params: Optional[dict[str, Any]] = None) -> Any:
        return self.cache.get(self.generate_key(endpoint, params))

    def clear_endpoint(self, endpoint: str) -> int:
        """Delete every cached response for ``endpoint``."""
        prefix = f"{endpoint}:"
        keys = [key for key in self.cache.keys() if key.startswith(prefix)]
        for key in keys:
            self.cache.delete(key)

        logger.info("api_cache_endpoint_cleared", endpoint=endpoint, keys_cleared=len(keys))
        return len(keys)

    def get_stats(self) -> dict[str, float]:
        return self.cache.get_stats()


class QueryCache:
    """Cache for query results keyed by query text and bound parameters."""

    def __init__(
        self,
        default_ttl: float = 600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache = MemoryCache(default_ttl, clock=clock)

    @staticmethod
    def generate_key(query: str, params: Any = None) -> str:
        return f"query:{query}:{_canonical_json(params if params is not None else [])}"

    def set_query(self, query: str, params: Any, result: Any, ttl: Optional[float] = None) -> None:
        self.cache.set(self.generate_key(query, params), result, ttl)

    def get_query(self, query: str, params: Any = None) -> Any:
        return self.cache.get(self.generate_key(query, params))

    def clear(self) -> None:
        self.cache.clear()

    def get_stats(self) -> dict[str, float]:
        return self.cache.get_stats()


class ObjectCache:
    """Generic object cache keyed by a sequence of key parts."""

    PREFIX = "object:"

    def __init__(
        self,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache = MemoryCache(default_ttl, clock=clock)

    @classmethod
    def generate_key(cls, key_parts: list[Any] | tuple[Any, ...]) -> str:
        return f"{cls.PREFIX}{_canonical_json(list(key_parts))}"

    def set_object(self, key_parts: list[Any] | tuple[Any, ...], data: Any, ttl: Optional[float] = None) -> None:
        self.cache.set(self.generate_key(key_parts), data, ttl)

    def get_object(self, key_parts: list[Any] | tuple[Any, ...]) -> Any:
        return self.cache.get(self.generate_key(key_parts))

    def invalidate(self, key_parts: list[Any] | tuple[Any, ...]) -> bool:
        return self.cache.delete(self.generate_key(key_parts))

    def clear(self) -> int:
        """Delete every object entry, leaving foreign keys in a shared cache alone."""
        keys = [key for key in self.cache.keys() if key.startswith(self.PREFIX)]
        for key in keys:
            self.cache.delete(key)
        return len(keys)

    def get_stats(self) -> dict[str, float]:
        return self.cache.get_stats()


# =============================================================================
# Utilities
# =============================================================================


def generate_cache_key(*parts: Any) -> str:
    """Join key parts with ':'; dicts and lists are JSON encoded."""
    return ":".join(
        _canonical_json(part) if isinstance(part, (dict, list, tuple)) else str(part)
        for part in parts
    )


def optimal_ttl(kind: Optional[TTLProfile] = None) -> float:
    """TTL in seconds suited to how often the data changes."""
    return _TTL_PROFILES.get(kind or "", DEFAULT_TTL_SECONDS)


def should_bypass_cache(settings: "Settings") -> bool:
    """Caches are bypassed only in development with bypass_cache enabled."""
    return settings.is_development and settings.bypass_cache
