"""
Content-addressed response cache.

Idempotent operations (enhancement, scoring, suggestions) are memoized under
a fingerprint of their normalized parameters, so requests that differ only
in key order, list order, surrounding whitespace or letter case share an
entry.

Usage:
    cache = ResponseCache()
    cached = cache.get("enhancement", {"prompt": prompt, "context": context})
    if cached is None:
        result = await expensive_call()
        cache.set("enhancement", {"prompt": prompt, "context": context}, result)
"""

import dataclasses
import hashlib
import json
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from promptforge.exceptions import InvalidCacheKeyError

logger = logging.getLogger(__name__)

# Time to live per operation class, in seconds
DEFAULT_TTLS: dict[str, float] = {
    "enhancement": 24 * 60 * 60,
    "scoring": 12 * 60 * 60,
    "completion": 6 * 60 * 60,
    "suggestions": 30 * 60,
}
DEFAULT_TTL = DEFAULT_TTLS["completion"]

KEY_LENGTH = 32


def _canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), allow_nan=False)


def normalize(value: Any) -> Any:
    """Recursively normalize cache parameters.

    Strings are trimmed and lower-cased, lists (and tuples and sets) are
    normalized then sorted, mapping keys are sorted, dataclasses are
    treated as mappings.

    Raises:
        InvalidCacheKeyError: If a value cannot be represented stably
    """
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower()
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidCacheKeyError(f"Non-finite number in cache parameters: {value}")
        return value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return normalize(dataclasses.asdict(value))
    if isinstance(value, dict):
        normalized = {}
        for key in sorted(value, key=str):
            if not isinstance(key, str):
                raise InvalidCacheKeyError(
                    f"Cache parameter keys must be strings, got {type(key).__name__}"
                )
            normalized[key] = normalize(value[key])
        return normalized
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [normalize(item) for item in value]
        return sorted(items, key=_canonical_json)
    raise InvalidCacheKeyError(
        f"Cannot derive a cache key from {type(value).__name__} value"
    )


def cache_key(operation: str, params: Any) -> str:
    """Fingerprint ``params`` for ``operation``.

    Returns:
        First 32 hex characters of SHA-256 over ``operation:canonical_json``

    Raises:
        InvalidCacheKeyError: If ``params`` cannot be normalized
    """
    try:
        serialized = _canonical_json(normalize(params))
    except InvalidCacheKeyError as e:
        e.operation = operation
        raise
    digest = hashlib.sha256(f"{operation}:{serialized}".encode()).hexdigest()
    return digest[:KEY_LENGTH]


@dataclass
class CacheEntry:
    """A cached value and its bookkeeping."""

    data: Any
    created_at: float
    ttl: float
    operation: str
    hit_count: int = 0

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


@dataclass
class CacheStats:
    """Snapshot of cache effectiveness."""

    hits: int
    misses: int
    hit_rate: float
    total_entries: int
    approx_memory_kb: float

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


class ResponseCache:
    """Thread-safe TTL cache keyed by parameter fingerprints.

    Entries are evicted on TTL only: lazily on read, and in a sweep on every
    write. Concurrent writes of the same key are last-write-wins.

    Args:
        ttls: Per-operation TTL overrides (seconds)
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        ttls: dict[str, float] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttls = {**DEFAULT_TTLS, **(ttls or {})}
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def ttl_for(self, operation: str) -> float:
        return self._ttls.get(operation, DEFAULT_TTL)

    def get(self, operation: str, params: Any) -> Any | None:
        """Return the cached value, or None on a miss or expired entry.

        Raises:
            InvalidCacheKeyError: If ``params`` cannot be fingerprinted
        """
        key = cache_key(operation, params)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            entry.hit_count += 1
            self._hits += 1
            data = entry.data

        logger.debug(f"Cache hit for {operation}: {key}")
        return data

    def set(self, operation: str, params: Any, data: Any, ttl: float | None = None) -> None:
        """Store ``data`` under the fingerprint of ``params``.

        Raises:
            InvalidCacheKeyError: If ``params`` cannot be fingerprinted
        """
        key = cache_key(operation, params)
        with self._lock:
            now = self._clock()
            self._sweep(now)
            self._entries[key] = CacheEntry(
                data=data,
                created_at=now,
                ttl=ttl if ttl is not None else self.ttl_for(operation),
                operation=operation,
            )
        logger.debug(f"Cached {operation}: {key}")

    def has(self, operation: str, params: Any) -> bool:
        """Whether a live entry exists (does not count as a hit or miss)."""
        key = cache_key(operation, params)
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def delete(self, operation: str, params: Any) -> bool:
        """Remove an entry. Returns True if one was removed."""
        key = cache_key(operation, params)
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        """Remove all entries and reset the hit/miss counters.

        Returns:
            Number of entries removed
        """
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
            self._hits = 0
            self._misses = 0
        logger.info(f"Cache cleared ({removed} entries)")
        return removed

    def _sweep(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired cache entries")

    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            hit_rate = round(self._hits / total * 100, 2) if total else 0.0
            size = sum(len(json.dumps(e.data, default=str)) for e in self._entries.values())
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                hit_rate=hit_rate,
                total_entries=len(self._entries),
                approx_memory_kb=round(size / 1024, 2),
            )

    def popular_entries(self, limit: int = 10) -> list[dict[str, Any]]:
        """Most-read live entries, highest hit count first."""
        with self._lock:
            now = self._clock()
            live = [
                (key, entry) for key, entry in self._entries.items() if not entry.is_expired(now)
            ]
        live.sort(key=lambda item: item[1].hit_count, reverse=True)
        return [
            {
                "key": key,
                "operation": entry.operation,
                "hit_count": entry.hit_count,
                "age_seconds": round(now - entry.created_at, 3),
            }
            for key, entry in live[:limit]
        ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
