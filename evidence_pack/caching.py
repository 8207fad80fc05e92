"""Provider response caching.

Provider calls are memoized by a fingerprint over the active signal set, the
provider type and the query options. Entries expire after a TTL and the cache
evicts least recently used entries past its capacity.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .config import CacheConfig, get_cache_config
from .types import Evidence, ProviderType, Signal

logger = logging.getLogger(__name__)


def fingerprint(
    signals: Iterable[Signal],
    provider: ProviderType,
    options: Optional[Dict[str, Any]] = None,
) -> str:
    """Create a cache key for one provider query.

    The key is order-independent over the signal set.

    Args:
        signals: Active signals for the query
        provider: Provider being queried
        options: Query options that change the result (limits, patterns)

    Returns:
        SHA256 hex digest (32 chars)
    """
    triples = sorted((s.type.value, s.value, round(s.confidence, 4)) for s in signals)
    payload = {
        "provider": provider.value,
        "signals": triples,
        "options": options or {},
    }
    key_data = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(key_data.encode()).hexdigest()[:32]


@dataclass
class CacheEntry:
    """A single cache entry with metadata."""

    evidence: Tuple[Evidence, ...]
    created_at: float
    last_accessed: float
    access_count: int = 1


class EvidenceCache:
    """LRU cache for provider responses with TTL support.

    Thread-safe. A write for a key that is already present overwrites it,
    so two identical queries racing on a miss simply store the same result.

    Example:
        >>> cache = EvidenceCache(max_size=128, ttl_seconds=300)
        >>> key = fingerprint(signals, ProviderType.SEARCH)
        >>> cache.set(key, evidence)
        >>> cache.get(key)  # Returns the cached list
    """

    def __init__(
        self,
        max_size: Optional[int] = None,
        ttl_seconds: Optional[float] = None,
        config: Optional[CacheConfig] = None,
    ) -> None:
        """Initialize the cache.

        Args:
            max_size: Maximum number of entries before LRU eviction
            ttl_seconds: Entry lifetime in seconds (0 or None = no expiration)
            config: Defaults for unspecified arguments (default: global config)

        Raises:
            ValueError: If max_size or ttl_seconds is negative
        """
        config = config or get_cache_config()
        self._max_size = config.max_size if max_size is None else max_size
        ttl = config.ttl_seconds if ttl_seconds is None else ttl_seconds

        if self._max_size < 0:
            raise ValueError(f"max_size must be non-negative, got {self._max_size}")
        if ttl is not None and ttl < 0:
            raise ValueError(f"ttl_seconds must be non-negative, got {ttl}")
        self._ttl_seconds = ttl or None

        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = Lock()

        # Metrics
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def __len__(self) -> int:
        """Return number of entries in cache."""
        return len(self._cache)

    def get(self, key: str) -> Optional[List[Evidence]]:
        """Get cached evidence for a key.

        Returns:
            Cached evidence list or None if not found/expired
        """
        with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                self._misses += 1
                return None

            if self._ttl_seconds is not None:
                age = time.time() - entry.created_at
                if age > self._ttl_seconds:
                    del self._cache[key]
                    self._expirations += 1
                    self._misses += 1
                    return None

            self._hits += 1
            entry.access_count += 1
            entry.last_accessed = time.time()
            self._cache.move_to_end(key)

            return list(entry.evidence)

    def set(self, key: str, evidence: Iterable[Evidence]) -> None:
        """Cache the evidence returned for a key."""
        if self._max_size == 0:
            return

        now = time.time()
        entry = CacheEntry(evidence=tuple(evidence), created_at=now, last_accessed=now)

        with self._lock:
            if key not in self._cache and len(self._cache) >= self._max_size:
                evicted, _ = self._cache.popitem(last=False)
                self._evictions += 1
                logger.debug(f"Evicted cache entry {evicted}")

            self._cache[key] = entry
            self._cache.move_to_end(key)

    def invalidate(self, key: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        with self._lock:
            return self._cache.pop(key, None) is not None

    def clear(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._expirations = 0

    def get_metrics(self) -> Dict[str, Any]:
        """Get cache metrics.

        Returns:
            Dict with hits, misses, evictions, expirations, hit_rate, size
        """
        with self._lock:
            total = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
                "hit_rate": self._hits / total if total > 0 else 0.0,
                "size": len(self._cache),
                "max_size": self._max_size,
                "ttl_seconds": self._ttl_seconds,
            }
