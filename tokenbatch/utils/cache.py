"""
Bounded in-memory cache for token estimates.

Entries are keyed by ``path:content-hash`` so an edited file never hits a
stale estimate. Once the cache holds ``max_entries`` items the oldest
inserted entry is evicted first. Batch estimation reads and writes from
worker threads, so the store is guarded by a ``threading.Lock``.
"""

import hashlib
import threading
from typing import Any, Dict, Optional

from tokenbatch.utils.logger import get_logger

logger = get_logger(__name__)


class _CacheEntry:
    """Single cache entry with its hit count."""
    __slots__ = ("value", "hits")

    def __init__(self, value: Any) -> None:
        self.value = value
        self.hits: int = 0


def content_key(path: str, content: Optional[str], language: Optional[str] = None) -> str:
    """Deterministic cache key for a file's content as read in one language."""
    if content is None:
        return f"{path}:no-content"
    digest = hashlib.sha256(content.encode("utf-8", errors="surrogatepass")).hexdigest()[:16]
    if language:
        return f"{path}:{language}:{digest}"
    return f"{path}:{digest}"


class EstimateCache:
    """Insertion-ordered cache with oldest-first eviction.

    Usage::

        cached = cache.get(key)
        if cached is None:
            cached = compute()
            cache.put(key, cached)
    """

    def __init__(self, max_entries: int = 1000, enabled: bool = True) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self.enabled = enabled
        self._store: Dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._requests = 0

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value or ``None`` on miss."""
        if not self.enabled:
            return None
        with self._lock:
            self._requests += 1
            entry = self._store.get(key)
            if entry is None:
                return None
            entry.hits += 1
            self._hits += 1
            return entry.value

    def put(self, key: str, value: Any) -> None:
        """Store a value, evicting the oldest entry when full."""
        if not self.enabled:
            return
        with self._lock:
            if key not in self._store and len(self._store) >= self.max_entries:
                self._evict_oldest()
            self._store[key] = _CacheEntry(value)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._hits = 0
            self._requests = 0
        logger.info("estimate_cache_cleared")

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: str) -> bool:
        return key in self._store

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "entries": len(self._store),
            "max_entries": self.max_entries,
            "hit_rate": self._hits / max(self._requests, 1),
            "enabled": self.enabled,
        }

    def _evict_oldest(self) -> None:
        # dicts keep insertion order, so the first key is the oldest entry
        oldest = next(iter(self._store))
        del self._store[oldest]
        logger.debug("estimate_cache_evicted", key=oldest)
