"""Durable cache manager with validator and TTL based freshness.

This module provides the DurableCacheManager class which owns the
persisted entries, keeps the fast cache in sync with them and decides
whether a request needs a network round trip. Store failures and
corrupted entries degrade to cache misses; they never reach the caller.
"""

import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set, Union

import structlog
from pydantic import ValidationError

from newscache.cache.etag import etag_for_data, etag_matches
from newscache.cache.keys import CacheKeyGenerator
from newscache.cache.query_cache import FastCache
from newscache.cache.store import KeyValueStore
from newscache.cache.ttl import CacheTTL
from newscache.environment import Clock
from newscache.exceptions import CorruptEntryError, StorageError
from newscache.models import (
    CacheEntry,
    CacheHit,
    CacheStats,
    EntryMeta,
    FetchDecision,
    SyncResponse,
)

logger = structlog.get_logger(__name__)

Params = Optional[Dict[str, Any]]


@dataclass
class _Lookup:
    entry: Optional[CacheEntry] = None
    validator: Optional[str] = None
    evicted: bool = False


class DurableCacheManager:
    """
    Main durable cache operations manager with fail-open behavior.

    Implements the two-tier read path (fast cache, then durable store),
    write-through to both tiers, scoped invalidation, statistics and
    reclamation of expired entries.

    Attributes:
        store: Persistent key-value backend (exclusively owned entries)
        fast_cache: In-memory query cache kept in sync on writes
    """

    def __init__(
        self,
        store: KeyValueStore,
        fast_cache: FastCache,
        clock: Clock,
        keys: Optional[CacheKeyGenerator] = None,
    ) -> None:
        self.store = store
        self.fast_cache = fast_cache
        self._clock = clock
        self._keys = keys or CacheKeyGenerator()

    # ------------------------------------------------------------------
    # Entry primitives
    # ------------------------------------------------------------------

    async def _remove_entry(self, cache_key: str) -> bool:
        try:
            removed = await self.store.delete(
                self._keys.data_key(cache_key),
                self._keys.validator_key(cache_key),
                self._keys.meta_key(cache_key),
            )
            return removed > 0
        except StorageError as e:
            logger.error(
                "cache_remove_error",
                key=cache_key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    def _parse_entry(
        self,
        cache_key: str,
        raw_data: Optional[str],
        validator: Optional[str],
        raw_meta: Optional[str],
    ) -> CacheEntry:
        if raw_data is None or raw_meta is None or not validator:
            raise CorruptEntryError(cache_key, "incomplete entry")

        try:
            meta = EntryMeta.model_validate_json(raw_meta)
        except ValidationError as e:
            raise CorruptEntryError(cache_key, f"invalid meta: {e.error_count()} errors") from e

        if meta.written_at.tzinfo is None:
            raise CorruptEntryError(cache_key, "naive written_at timestamp")

        try:
            data = json.loads(raw_data)
        except json.JSONDecodeError as e:
            raise CorruptEntryError(cache_key, "unparseable data") from e

        return CacheEntry(data=data, validator=validator, written_at=meta.written_at, ttl=meta.ttl)

    async def _load(self, cache_key: str) -> _Lookup:
        """Read an entry, evicting it when it is expired or corrupted."""
        try:
            raw_data = await self.store.get(self._keys.data_key(cache_key))
            validator = await self.store.get(self._keys.validator_key(cache_key))
            raw_meta = await self.store.get(self._keys.meta_key(cache_key))
        except StorageError as e:
            logger.error(
                "cache_get_error",
                key=cache_key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return _Lookup()

        if raw_data is None and validator is None and raw_meta is None:
            return _Lookup()

        try:
            entry = self._parse_entry(cache_key, raw_data, validator, raw_meta)
        except CorruptEntryError as e:
            logger.warning("cache_entry_corrupted", key=cache_key, reason=e.reason)
            await self._remove_entry(cache_key)
            return _Lookup(evicted=True)

        now = self._clock.now()
        if entry.is_expired(now):
            logger.debug(
                "cache_entry_expired",
                key=cache_key,
                age_seconds=round(entry.age_seconds(now), 2),
                ttl=entry.ttl,
            )
            await self._remove_entry(cache_key)
            return _Lookup(validator=entry.validator, evicted=True)

        return _Lookup(entry=entry, validator=entry.validator)

    async def get_entry(self, content_type: str, params: Params = None) -> Optional[CacheEntry]:
        """
        Read a live durable entry.

        Args:
            content_type: Content type of the request
            params: Request parameters

        Returns:
            The entry, or None when missing, expired or corrupted (the
            latter two are evicted as a side effect)
        """
        cache_key = self._keys.generate(content_type, params)
        return (await self._load(cache_key)).entry

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    async def should_fetch(
        self,
        content_type: str,
        params: Params = None,
        *,
        force_refresh: bool = False,
        max_age: Optional[float] = None,
        validator: Optional[str] = None,
    ) -> FetchDecision:
        """
        Decide whether a request needs a network fetch.

        Args:
            content_type: Content type of the request
            params: Request parameters
            force_refresh: Always fetch
            max_age: Accept durable data younger than this many seconds
            validator: Validator the caller holds; a match means the
                durable entry is still current

        Returns:
            FetchDecision; when a fetch is needed, ``validator`` carries any
            validator known for the key for conditional revalidation

        Example:
            >>> decision = await manager.should_fetch("books", {"list": "fiction"})
            >>> if not decision.should_fetch:
            ...     render(decision.cached_data)
        """
        if force_refresh:
            logger.debug("cache_force_refresh", type=content_type)
            return FetchDecision(should_fetch=True)

        fast_entry = self.fast_cache.get_entry(content_type, params)
        if fast_entry is not None and self.fast_cache.is_fresh(content_type, params):
            logger.debug("cache_hit", type=content_type, tier="memory")
            return FetchDecision(should_fetch=False, cached_data=fast_entry.data)

        cache_key = self._keys.generate(content_type, params)
        lookup = await self._load(cache_key)
        entry = lookup.entry

        if entry is not None:
            remaining = entry.remaining_seconds(self._clock.now())

            if validator is not None and etag_matches(validator, entry.validator):
                self.fast_cache.set(content_type, params, entry.data, ttl=remaining)
                logger.debug("cache_hit", type=content_type, tier="durable", reason="validator")
                return FetchDecision(
                    should_fetch=False,
                    cached_data=entry.data,
                    validator=entry.validator,
                )

            if max_age is not None and entry.age_seconds(self._clock.now()) < max_age:
                self.fast_cache.set(content_type, params, entry.data, ttl=remaining)
                logger.debug("cache_hit", type=content_type, tier="durable", reason="max_age")
                return FetchDecision(
                    should_fetch=False,
                    cached_data=entry.data,
                    validator=entry.validator,
                )

        logger.debug("cache_miss", key=cache_key, has_validator=lookup.validator is not None)
        return FetchDecision(should_fetch=True, validator=lookup.validator)

    async def store_response(
        self,
        content_type: str,
        params: Params,
        response: Union[SyncResponse, Mapping[str, Any]],
        ttl: Optional[float] = None,
    ) -> bool:
        """
        Write a fetched response to both tiers.

        Any earlier entry under the same key is replaced (last write wins).

        Args:
            content_type: Content type of the request
            params: Request parameters
            response: SyncResponse or mapping with ``data`` and optional
                ``validator``/``cache_status``
            ttl: Time to live in seconds (default: the type's retention time)

        Returns:
            True if persisted, False if the durable write failed (the fast
            cache is written either way)

        Example:
            >>> await manager.store_response(
            ...     "books", {"list": "fiction"},
            ...     SyncResponse(data=books, validator='"abc"'),
            ...     ttl=60,
            ... )
            True
        """
        if not isinstance(response, SyncResponse):
            response = SyncResponse.model_validate(response)

        if ttl is None:
            ttl = CacheTTL.get_ttl(content_type)
        if ttl < 0:
            raise ValueError(f"ttl must be >= 0, got {ttl}")

        cache_key = self._keys.generate(content_type, params)
        self.fast_cache.set(content_type, params, response.data, ttl=ttl)

        try:
            payload = json.dumps(response.data)
        except (TypeError, ValueError) as e:
            logger.error(
                "cache_set_serialization_error",
                key=cache_key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        validator = response.validator or etag_for_data(response.data)
        meta = EntryMeta(written_at=self._clock.now(), ttl=ttl)

        try:
            await self.store.set(self._keys.data_key(cache_key), payload)
            await self.store.set(self._keys.validator_key(cache_key), validator)
            await self.store.set(self._keys.meta_key(cache_key), meta.model_dump_json())

        except StorageError as e:
            logger.error(
                "cache_set_error",
                key=cache_key,
                error=str(e),
                error_type=type(e).__name__,
            )
            # A half-written entry would be read back as corrupted anyway
            await self._remove_entry(cache_key)
            return False

        logger.debug(
            "cache_set",
            key=cache_key,
            ttl=ttl,
            status=response.cache_status.value,
            data_size=len(payload),
        )
        return True

    async def _logical_keys(self) -> Set[str]:
        storage_keys = await self.store.keys(f"{CacheKeyGenerator.DATA_PREFIX}*")
        storage_keys += await self.store.keys(f"{CacheKeyGenerator.VALIDATOR_PREFIX}*")

        logical = set()
        for storage_key in storage_keys:
            key = self._keys.from_storage_key(storage_key)
            if key:
                logical.add(key)
        return logical

    async def invalidate_cache(
        self,
        content_type: Optional[str] = None,
        pattern: Optional[str] = None,
    ) -> int:
        """
        Remove entries by type, by key substring, or everything.

        The fast cache is invalidated with the same scope.

        Args:
            content_type: Remove every entry of this type
            pattern: Otherwise, remove entries whose logical key contains it

        Returns:
            Number of durable entries removed
        """
        removed = 0

        try:
            logical = await self._logical_keys()
        except StorageError as e:
            logger.error(
                "cache_invalidate_error",
                error=str(e),
                error_type=type(e).__name__,
            )
            logical = set()

        if content_type:
            selected = {k for k in logical if k.startswith(f"{content_type}:")}
        elif pattern:
            selected = {k for k in logical if pattern in k}
        else:
            selected = logical

        for cache_key in sorted(selected):
            if await self._remove_entry(cache_key):
                removed += 1

        self.fast_cache.invalidate(content_type=content_type, pattern=pattern)

        logger.info(
            "cache_invalidated",
            scope=content_type or pattern or "all",
            removed=removed,
        )
        return removed

    async def get_cache_stats(self) -> CacheStats:
        """
        Report entry count and payload size without mutating anything.

        Returns:
            CacheStats (zeros for the durable part if the store fails)
        """
        memory_entries = self.fast_cache.stats().get("total_queries", 0)

        try:
            data_keys = [
                k for k in await self.store.keys(f"{CacheKeyGenerator.DATA_PREFIX}*")
                if not k.endswith(CacheKeyGenerator.META_SUFFIX)
            ]
            total_size = 0
            for key in data_keys:
                value = await self.store.get(key)
                if value is not None:
                    total_size += len(value.encode("utf-8"))

        except StorageError as e:
            logger.error(
                "cache_stats_error",
                error=str(e),
                error_type=type(e).__name__,
            )
            return CacheStats(memory_entries=memory_entries)

        return CacheStats(
            entry_count=len(data_keys),
            total_size_bytes=total_size,
            memory_entries=memory_entries,
        )

    async def cleanup_expired_entries(self) -> int:
        """
        Reclaim expired, corrupted and orphaned entries.

        Returns:
            Number of entries removed
        """
        try:
            logical = await self._logical_keys()
        except StorageError as e:
            logger.error(
                "cache_cleanup_error",
                error=str(e),
                error_type=type(e).__name__,
            )
            return 0

        removed = 0
        for cache_key in sorted(logical):
            if (await self._load(cache_key)).evicted:
                removed += 1

        logger.info("cache_cleanup_complete", scanned=len(logical), removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Read helpers for the other services
    # ------------------------------------------------------------------

    async def lookup(
        self,
        content_type: str,
        params: Params,
        max_age: float,
    ) -> Optional[CacheHit]:
        """
        Find cached data no older than ``max_age`` seconds in either tier.

        Args:
            content_type: Content type of the request
            params: Request parameters
            max_age: Oldest acceptable data in seconds

        Returns:
            CacheHit with the data and its source, or None
        """
        now = self._clock.now()

        fast_entry = self.fast_cache.get_entry(content_type, params)
        if fast_entry is not None:
            age = fast_entry.age_seconds(now)
            if age <= max_age:
                return CacheHit(data=fast_entry.data, source="memory", age_seconds=max(0.0, age))

        entry = await self.get_entry(content_type, params)
        if entry is not None:
            age = entry.age_seconds(now)
            if age <= max_age:
                return CacheHit(data=entry.data, source="durable", age_seconds=max(0.0, age))

        return None

    async def get_or_fetch(
        self,
        content_type: str,
        params: Params,
        fetch_func: Callable[[], Awaitable[Any]],
        *,
        ttl: Optional[float] = None,
        max_age: Optional[float] = None,
        force_refresh: bool = False,
    ) -> Dict[str, Any]:
        """
        Get from cache or fetch and cache (cache-aside pattern).

        Args:
            content_type: Content type of the request
            params: Request parameters
            fetch_func: Async function returning the payload or a SyncResponse
            ttl: Durable TTL for a fetched response
            max_age: Accept durable data younger than this many seconds
            force_refresh: Skip both tiers

        Returns:
            Dictionary with structure:
                {
                    "data": <actual data>,
                    "metadata": {"cached": bool, "validator": str | None}
                }

        Example:
            >>> result = await manager.get_or_fetch(
            ...     "topStories", {"section": "home"}, fetch_top_stories
            ... )
            >>> print(f"Cached: {result['metadata']['cached']}")
        """
        decision = await self.should_fetch(
            content_type,
            params,
            force_refresh=force_refresh,
            max_age=max_age,
        )

        if not decision.should_fetch:
            logger.info("cache_hit_get_or_fetch", type=content_type)
            return {
                "data": decision.cached_data,
                "metadata": {"cached": True, "validator": decision.validator},
            }

        logger.info("cache_miss_fetching", type=content_type)

        try:
            result = await fetch_func()

        except Exception as e:
            logger.error(
                "fetch_function_error",
                type=content_type,
                error=str(e),
                error_type=type(e).__name__,
            )
            # Re-raise the fetch error (don't swallow it)
            raise

        response = result if isinstance(result, SyncResponse) else SyncResponse(data=result)
        await self.store_response(content_type, params, response, ttl)

        return {
            "data": response.data,
            "metadata": {
                "cached": False,
                "validator": response.validator or etag_for_data(response.data),
            },
        }
