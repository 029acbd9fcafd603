"""
Retrieval Result Cache

Caches ranked passages keyed by (user, query, document scope) so that a
repeated question over the same documents skips the whole pipeline.

Features:
- SHA-256 keys over the normalized query, user and sorted document ids
- TTL-based expiration for data freshness
- LRU eviction when cache exceeds max size
- Invalidation of every entry that cites a given document

Usage:
    cache = InMemoryResultCache()
    key = build_cache_key(user_id, query, document_ids)
    cached = await cache.get(key)
    if cached is None:
        ...
        await cache.set(key, passages, document_ids={"doc_1"})
"""

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Set

from ragcore.config import settings

logger = logging.getLogger(__name__)


def build_cache_key(
    user_id: Optional[str],
    query: str,
    document_ids: Optional[Iterable[str]] = None,
    extra: Optional[Dict[str, Any]] = None
) -> str:
    """
    Build a cache key for a retrieval call.

    Args:
        user_id: Caller identity (None for anonymous)
        query: Query text (case and surrounding whitespace are ignored)
        document_ids: Documents the call was scoped to
        extra: Other call parameters that change the result

    Returns:
        Hex SHA-256 digest
    """
    docs = ",".join(sorted(str(d) for d in document_ids or []))
    params = ",".join(f"{k}={v}" for k, v in sorted((extra or {}).items()))
    raw = f"{user_id or ''}\x1f{query.lower().strip()}\x1f{docs}\x1f{params}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass
class ResultCacheEntry:
    """A single cached retrieval result."""
    value: Any
    timestamp: float
    ttl_seconds: float
    document_ids: Set[str] = field(default_factory=set)
    access_time: float = field(default_factory=time.time)

    def is_expired(self) -> bool:
        """Check if entry has expired based on TTL."""
        return time.time() - self.timestamp > self.ttl_seconds

    def touch(self):
        """Update access time for LRU tracking."""
        self.access_time = time.time()


class InMemoryResultCache:
    """
    Exact-key result cache with LRU eviction and TTL expiration.
    """

    def __init__(
        self,
        max_size: int = None,
        default_ttl_seconds: float = None
    ):
        """
        Initialize result cache.

        Args:
            max_size: Maximum number of entries in cache
            default_ttl_seconds: Default time-to-live in seconds
        """
        self.max_size = max_size or settings.CACHE_MAX_ENTRIES
        self.default_ttl_seconds = default_ttl_seconds or settings.CACHE_TTL_SECONDS

        self._cache: Dict[str, ResultCacheEntry] = {}
        self._lock = asyncio.Lock()

        # Statistics
        self._hits = 0
        self._misses = 0

        logger.info(
            f"Initialized InMemoryResultCache: max_size={self.max_size}, ttl={self.default_ttl_seconds}s"
        )

    async def get(self, key: str) -> Optional[Any]:
        """
        Look up a cached result.

        Args:
            key: Cache key from build_cache_key

        Returns:
            Cached value, or None if missing or expired
        """
        async with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired():
                del self._cache[key]
                self._misses += 1
                logger.debug(f"Cache entry expired: {key[:16]}...")
                return None

            entry.touch()
            self._hits += 1
            logger.debug(f"Cache hit: {key[:16]}...")
            return entry.value

    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
        document_ids: Optional[Iterable[str]] = None
    ) -> None:
        """
        Store a result.

        Args:
            key: Cache key from build_cache_key
            value: Result to cache
            ttl_seconds: Override for the default TTL
            document_ids: Documents cited by the result, for invalidation
        """
        entry = ResultCacheEntry(
            value=value,
            timestamp=time.time(),
            ttl_seconds=ttl_seconds or self.default_ttl_seconds,
            document_ids={str(d) for d in document_ids or []}
        )

        async with self._lock:
            self._evict_expired()
            if key not in self._cache and len(self._cache) >= self.max_size:
                self._evict_lru()
            self._cache[key] = entry

    def _evict_expired(self) -> int:
        """
        Remove entries that have exceeded their TTL.

        Returns:
            Number of entries evicted
        """
        expired_keys = [key for key, entry in self._cache.items() if entry.is_expired()]

        for key in expired_keys:
            del self._cache[key]

        if expired_keys:
            logger.debug(f"Evicted {len(expired_keys)} expired cache entries")

        return len(expired_keys)

    def _evict_lru(self) -> None:
        """Remove the least recently used entry."""
        if not self._cache:
            return

        lru_key = min(self._cache.keys(), key=lambda k: self._cache[k].access_time)

        del self._cache[lru_key]
        logger.debug(f"Evicted LRU cache entry: {lru_key[:16]}...")

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with hits, misses, hit_rate, and size
        """
        total = self._hits + self._misses
        hit_rate = self._hits / total if total > 0 else 0.0

        return {
            "hits": self._hits,
            "misses": self._misses,
            "total_requests": total,
            "hit_rate": round(hit_rate, 4),
            "size": len(self._cache),
            "max_size": self.max_size,
            "default_ttl_seconds": self.default_ttl_seconds
        }

    async def clear(self) -> int:
        """
        Clear all cache entries.

        Returns:
            Number of entries cleared
        """
        async with self._lock:
            count = len(self._cache)
            self._cache.clear()
            self._hits = 0
            self._misses = 0
            logger.info(f"Cleared {count} cache entries")
            return count

    async def invalidate_document(self, document_id: str) -> int:
        """
        Drop every entry whose result cites a document.

        Useful when a document is re-ingested or deleted.

        Args:
            document_id: Document identifier

        Returns:
            Number of entries invalidated
        """
        async with self._lock:
            keys_to_remove = [
                key for key, entry in self._cache.items()
                if str(document_id) in entry.document_ids
            ]

            for key in keys_to_remove:
                del self._cache[key]

            if keys_to_remove:
                logger.info(f"Invalidated {len(keys_to_remove)} cache entries for document {document_id}")

            return len(keys_to_remove)
