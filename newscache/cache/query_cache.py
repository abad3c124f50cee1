"""
In-memory query cache: the fast tier.

Entries are keyed by the logical cache key. Freshness follows the
per-type stale time; entries older than the type's retention time are
dropped the next time they are touched.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

import structlog

from newscache.cache.keys import CacheKeyGenerator
from newscache.cache.ttl import CacheTTL
from newscache.environment import Clock

logger = structlog.get_logger(__name__)

Params = Optional[Dict[str, Any]]


class FastCache(Protocol):
    """Interface the durable tier needs from the in-memory tier."""

    def get(self, content_type: str, params: Params) -> Any:
        ...

    def get_entry(self, content_type: str, params: Params) -> Optional["QueryEntry"]:
        ...

    def set(self, content_type: str, params: Params, data: Any, ttl: Optional[float] = None) -> None:
        ...

    def is_fresh(self, content_type: str, params: Params) -> bool:
        ...

    def invalidate(self, content_type: Optional[str] = None, pattern: Optional[str] = None) -> int:
        ...

    def stats(self) -> Dict[str, int]:
        ...


@dataclass
class QueryEntry:
    """A cached query result with the timing needed for freshness checks."""
    content_type: str
    data: Any
    updated_at: datetime
    stale_time: float
    gc_time: float

    def age_seconds(self, now: datetime) -> float:
        return (now - self.updated_at).total_seconds()

    def is_fresh(self, now: datetime) -> bool:
        return self.age_seconds(now) < self.stale_time

    def is_collectable(self, now: datetime) -> bool:
        return self.age_seconds(now) >= self.gc_time


class QueryCache:
    """
    Dictionary-backed fast cache with per-type freshness.

    Single-threaded by design: every caller runs on the same event loop,
    so no locking is needed.
    """

    def __init__(self, clock: Clock, keys: Optional[CacheKeyGenerator] = None) -> None:
        self._clock = clock
        self._keys = keys or CacheKeyGenerator()
        self._entries: Dict[str, QueryEntry] = {}

    def _key(self, content_type: str, params: Params) -> str:
        return self._keys.generate(content_type, params)

    def get_entry(self, content_type: str, params: Params) -> Optional[QueryEntry]:
        key = self._key(content_type, params)
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.is_collectable(self._clock.now()):
            del self._entries[key]
            logger.debug("query_cache_collected", key=key)
            return None

        return entry

    def get(self, content_type: str, params: Params) -> Any:
        entry = self.get_entry(content_type, params)
        return entry.data if entry is not None else None

    def set(self, content_type: str, params: Params, data: Any, ttl: Optional[float] = None) -> None:
        """Store data; a durable ttl shorter than the type's stale time caps freshness."""
        policy = CacheTTL.for_type(content_type)
        stale_time = policy.stale_time if ttl is None else min(policy.stale_time, ttl)
        key = self._key(content_type, params)
        self._entries[key] = QueryEntry(
            content_type=content_type,
            data=data,
            updated_at=self._clock.now(),
            stale_time=stale_time,
            gc_time=policy.gc_time,
        )

    def is_fresh(self, content_type: str, params: Params) -> bool:
        entry = self.get_entry(content_type, params)
        return entry is not None and entry.is_fresh(self._clock.now())

    def invalidate(self, content_type: Optional[str] = None, pattern: Optional[str] = None) -> int:
        """
        Remove entries by type, by key substring, or all of them.

        Returns:
            Number of entries removed
        """
        if content_type:
            doomed = [k for k, e in self._entries.items() if e.content_type == content_type]
        elif pattern:
            doomed = [k for k in self._entries if pattern in k]
        else:
            doomed = list(self._entries)

        for key in doomed:
            del self._entries[key]

        if doomed:
            logger.debug(
                "query_cache_invalidated",
                scope=content_type or pattern or "all",
                removed=len(doomed),
            )
        return len(doomed)

    def stats(self) -> Dict[str, int]:
        now = self._clock.now()
        fresh = sum(1 for e in self._entries.values() if e.is_fresh(now))
        return {
            "total_queries": len(self._entries),
            "fresh_queries": fresh,
            "stale_queries": len(self._entries) - fresh,
        }
