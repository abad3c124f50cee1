"""
Pydantic models for cache entries, decisions and statistics.

Defines the persisted entry metadata, the results returned by the cache
managers and the read-only statistics consumed by monitoring surfaces.
"""
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CacheStatus(str, Enum):
    """How a response relates to what was already cached."""

    HIT = "HIT"
    MISS = "MISS"
    STALE = "STALE"
    REVALIDATED = "REVALIDATED"


class EntryMeta(BaseModel):
    """
    Metadata persisted next to every durable cache entry.

    Stored under ``cache:<type>:<encoded>:meta``.
    """

    written_at: datetime = Field(
        ...,
        description="When the entry was written (timezone-aware)",
    )
    ttl: float = Field(
        ...,
        ge=0,
        description="Time to live in seconds (0 = never fresh)",
    )


class CacheEntry(BaseModel):
    """
    A durable cache entry as read back from the store.

    An entry is expired once its age reaches its TTL; expired entries are
    never handed out by the managers.
    """

    data: Any = Field(..., description="Cached payload")
    validator: str = Field(..., description="ETag-like version token")
    written_at: datetime = Field(..., description="When the entry was written")
    ttl: float = Field(..., ge=0, description="Time to live in seconds")

    def age_seconds(self, now: datetime) -> float:
        return (now - self.written_at).total_seconds()

    def is_expired(self, now: datetime) -> bool:
        return self.age_seconds(now) >= self.ttl

    def remaining_seconds(self, now: datetime) -> float:
        return max(self.ttl - self.age_seconds(now), 0.0)


class SyncResponse(BaseModel):
    """
    A fetched response handed to ``store_response``.

    When ``validator`` is omitted one is derived from the payload.
    """

    data: Any = Field(..., description="Response payload")
    validator: Optional[str] = Field(
        None,
        description="ETag returned by the upstream, if any",
    )
    cache_status: CacheStatus = Field(
        CacheStatus.MISS,
        description="Cache status reported by the upstream",
    )


class FetchDecision(BaseModel):
    """
    Result of ``should_fetch``.

    ``validator`` is populated whenever one is known for the key so the
    caller can attempt a conditional request.
    """

    should_fetch: bool = Field(..., description="Whether a network fetch is needed")
    cached_data: Any = Field(None, description="Cached payload when no fetch is needed")
    validator: Optional[str] = Field(None, description="Known validator for the key")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "should_fetch": False,
                "cached_data": [{"title": "The Women", "rank": 1}],
                "validator": '"3f786850e387550fdab836ed7e6dc881de23001b"',
            }
        }
    )


class CacheHit(BaseModel):
    """Data found by a cache lookup, with where it came from."""

    data: Any = Field(..., description="Cached payload")
    source: str = Field(..., description="'memory' or 'durable'")
    age_seconds: float = Field(..., ge=0, description="Age of the cached payload")


class CacheStats(BaseModel):
    """Read-only durable cache statistics."""

    entry_count: int = Field(0, ge=0, description="Number of durable entries")
    total_size_bytes: int = Field(0, ge=0, description="UTF-8 size of persisted payloads")
    memory_entries: int = Field(0, ge=0, description="Entries held by the fast cache")


class OfflineConfig(BaseModel):
    """
    Behaviour of ``get_cached_data_with_fallback``.

    ``fallback_data`` counts as supplied only when it was set explicitly,
    so ``None`` and empty collections are valid fallbacks.
    """

    enable_offline_mode: bool = Field(True, description="Consult caches when fetch is impossible")
    max_offline_age: float = Field(
        24 * 60 * 60,
        ge=0,
        description="Oldest cached data (seconds) acceptable as a fallback",
    )
    fallback_data: Any = Field(None, description="Value returned when offline with no cache")
    retry_attempts: int = Field(3, ge=1, description="Total fetch attempts when online")
    retry_delay: float = Field(1.0, ge=0, description="Base backoff delay in seconds")

    @property
    def has_fallback(self) -> bool:
        return "fallback_data" in self.model_fields_set


class OfflineStats(BaseModel):
    """Read-only offline layer statistics."""

    is_online: bool = Field(..., description="Current connectivity flag")
    queued_count: int = Field(0, ge=0, description="Operations waiting for replay")
    dropped_count: int = Field(0, ge=0, description="Queued operations dropped because the queue was full")
    cached_entry_count: int = Field(0, ge=0, description="Durable entries available offline")
    cache_size_bytes: int = Field(0, ge=0, description="UTF-8 size of persisted payloads")


class ReplayResult(BaseModel):
    """Outcome of draining the offline queue."""

    processed: int = Field(0, ge=0, description="Operations that completed")
    failed: int = Field(0, ge=0, description="Operations that raised and were skipped")


class PreloadResult(BaseModel):
    """Outcome of ``preload_critical_data``."""

    succeeded: List[str] = Field(default_factory=list, description="Types preloaded")
    failed: List[str] = Field(default_factory=list, description="Types that failed")


class PrefetchStats(BaseModel):
    """
    Statistics of the most recent prefetch run.

    Persisted under ``prefetch:stats`` so they survive restarts.
    """

    total_categories: int = Field(0, ge=0)
    successful: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    cached: int = Field(0, ge=0)
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "total_categories": 30,
                "successful": 29,
                "failed": 1,
                "cached": 29,
                "last_run": "2026-03-10T06:00:00+00:00",
                "next_run": "2026-03-11T06:00:00+00:00",
            }
        }
    )


class CircuitBreakerState(BaseModel):
    """Snapshot of the prefetch circuit breaker."""

    consecutive_failures: int = Field(0, ge=0)
    open: bool = False
    opened_at: Optional[datetime] = None
