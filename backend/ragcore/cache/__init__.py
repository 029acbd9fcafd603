"""
Cache Module

Provides result caching for retrieval calls keyed by (user, query, documents).
"""

from ragcore.cache.result_cache import InMemoryResultCache, ResultCacheEntry, build_cache_key

__all__ = ["InMemoryResultCache", "ResultCacheEntry", "build_cache_key"]
