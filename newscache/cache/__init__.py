"""Two-tier caching layer for API responses.

This package provides:
- Cache key generation (CacheKeyGenerator)
- Per-type freshness policies (CacheTTL)
- The in-memory fast tier (QueryCache)
- Persistent backends (RedisStore, MemoryStore)
- Validator helpers (make_etag, etag_matches)
- Cache operations (DurableCacheManager)
- Graceful fail-open behavior
"""

from newscache.cache.etag import etag_for_data, etag_matches, make_etag
from newscache.cache.keys import CacheKeyGenerator
from newscache.cache.manager import DurableCacheManager
from newscache.cache.query_cache import FastCache, QueryCache, QueryEntry
from newscache.cache.store import KeyValueStore, MemoryStore, RedisStore
from newscache.cache.ttl import CacheTTL, Policy

__all__ = [
    # Key generation
    "CacheKeyGenerator",
    # Policies
    "CacheTTL",
    "Policy",
    # Fast tier
    "FastCache",
    "QueryCache",
    "QueryEntry",
    # Backends
    "KeyValueStore",
    "MemoryStore",
    "RedisStore",
    # Validators
    "make_etag",
    "etag_for_data",
    "etag_matches",
    # Cache manager
    "DurableCacheManager",
]
