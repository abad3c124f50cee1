"""
Offline resilience: fetch with cache fallback, offline queue and replay.

Connectivity is never polled. The manager subscribes to a
ConnectivitySignal and drains its queue when the signal reports a
transition back online.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from newscache.cache.manager import DurableCacheManager
from newscache.environment import Clock, ConnectivitySignal
from newscache.exceptions import OfflineUnavailableError
from newscache.models import (
    OfflineConfig,
    OfflineStats,
    PreloadResult,
    ReplayResult,
    SyncResponse,
)
from newscache.utils.logger import get_logger

logger = get_logger(__name__)

Operation = Callable[[], Awaitable[Any]]


@dataclass
class QueuedOperation:
    """A request deferred until connectivity returns."""
    type: str
    params: Dict[str, Any]
    operation: Operation
    queued_at: datetime


@dataclass
class CriticalQuery:
    type: str
    params: Dict[str, Any]
    fetch_fn: Operation
    ttl: Optional[float] = None


@dataclass
class _QueueState:
    items: Deque[QueuedOperation] = field(default_factory=deque)
    dropped: int = 0


class OfflineResilienceManager:
    """
    Wraps fetch operations with a three-tier fallback.

    live fetch -> cached data (either tier) -> queue for replay plus
    optional fallback value. While online with nothing cached, failed
    fetches are retried with exponential backoff.

    Attributes:
        cache: Durable cache manager consulted for fallbacks
        max_queue_size: Queue bound; the oldest operation is dropped when
            a new one arrives at a full queue
    """

    def __init__(
        self,
        cache: DurableCacheManager,
        connectivity: ConnectivitySignal,
        clock: Clock,
        default_config: Optional[OfflineConfig] = None,
        max_queue_size: int = 100,
    ) -> None:
        if max_queue_size < 1:
            raise ValueError("max_queue_size must be >= 1")

        self.cache = cache
        self.max_queue_size = max_queue_size
        self._connectivity = connectivity
        self._clock = clock
        self._default_config = default_config or OfflineConfig()
        self._is_online = connectivity.online
        self._queue = _QueueState()
        self._critical: List[CriticalQuery] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._replay_task: Optional[asyncio.Task] = None
        self._replay_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Subscribe to connectivity transitions."""
        if self._unsubscribe is not None:
            return
        self._is_online = self._connectivity.online
        self._unsubscribe = self._connectivity.subscribe(self._on_connectivity_change)
        logger.info("offline_manager_started", online=self._is_online)

    async def dispose(self) -> None:
        """Unsubscribe and wait for in-flight replays to finish."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        if self._replay_task is not None and not self._replay_task.done():
            await self._replay_task
        self._replay_task = None

    @property
    def is_online(self) -> bool:
        return self._is_online

    @property
    def replay_task(self) -> Optional[asyncio.Task]:
        """Replay started by the most recent reconnection, if any."""
        return self._replay_task

    def _on_connectivity_change(self, online: bool) -> None:
        was_online = self._is_online
        self._is_online = online

        if online and not was_online:
            logger.info("connectivity_restored", queued=len(self._queue.items))
            self._replay_task = asyncio.ensure_future(self.process_offline_queue())
        elif not online:
            logger.info("connectivity_lost")

    # ------------------------------------------------------------------
    # Fetch with fallback
    # ------------------------------------------------------------------

    def _resolve_config(self, config: Optional[OfflineConfig], overrides: Dict[str, Any]) -> OfflineConfig:
        base = config or self._default_config
        values = base.model_dump(exclude_unset=True)
        values.update(overrides)
        return OfflineConfig(**values)

    async def get_cached_data_with_fallback(
        self,
        content_type: str,
        params: Optional[Dict[str, Any]],
        fetch_fn: Operation,
        config: Optional[OfflineConfig] = None,
        **overrides: Any,
    ) -> Any:
        """
        Fetch data, falling back to cache, queue and default value.

        Args:
            content_type: Content type of the request
            params: Request parameters
            fetch_fn: Async callable performing the network fetch
            config: OfflineConfig; keyword overrides take precedence
            **overrides: Individual OfflineConfig fields

        Returns:
            Fresh data, cached data or the configured fallback

        Raises:
            OfflineUnavailableError: Offline with no cache and no fallback
            Exception: The last fetch error once online retries are exhausted

        Example:
            >>> stories = await offline.get_cached_data_with_fallback(
            ...     "topStories", {"section": "home"}, fetch_home,
            ...     fallback_data=[],
            ... )
        """
        cfg = self._resolve_config(config, overrides)
        params = params or {}

        if self._is_online:
            try:
                return await fetch_fn()
            except Exception as e:
                logger.warning(
                    "online_fetch_failed_using_cache",
                    type=content_type,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        if cfg.enable_offline_mode:
            hit = await self.cache.lookup(content_type, params, cfg.max_offline_age)
            if hit is not None:
                logger.info(
                    "offline_cache_hit",
                    type=content_type,
                    source=hit.source,
                    age_seconds=round(hit.age_seconds, 2),
                )
                return hit.data

        if not self._is_online:
            self._enqueue(content_type, params, fetch_fn)

            if cfg.has_fallback:
                logger.info("offline_fallback_used", type=content_type)
                return cfg.fallback_data

            raise OfflineUnavailableError(content_type)

        return await self._retry_with_backoff(content_type, fetch_fn, cfg.retry_attempts, cfg.retry_delay)

    async def _retry_with_backoff(
        self,
        content_type: str,
        fetch_fn: Operation,
        attempts: int,
        delay: float,
    ) -> Any:
        def _before_sleep(retry_state) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "fetch_retry_scheduled",
                type=content_type,
                attempt=retry_state.attempt_number,
                max_attempts=attempts,
                sleep_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
                error=str(exc) if exc else None,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, attempts)),
            wait=wait_exponential(multiplier=delay, exp_base=2, min=0),
            before_sleep=_before_sleep,
            sleep=self._clock.sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                return await fetch_fn()

    # ------------------------------------------------------------------
    # Offline queue
    # ------------------------------------------------------------------

    def _enqueue(self, content_type: str, params: Dict[str, Any], fetch_fn: Operation) -> None:
        if len(self._queue.items) >= self.max_queue_size:
            dropped = self._queue.items.popleft()
            self._queue.dropped += 1
            logger.warning(
                "offline_queue_full_dropped_oldest",
                dropped_type=dropped.type,
                max_queue_size=self.max_queue_size,
            )

        self._queue.items.append(
            QueuedOperation(type=content_type, params=params, operation=fetch_fn, queued_at=self._clock.now())
        )
        logger.info("offline_request_queued", type=content_type, queued=len(self._queue.items))

    @property
    def queued_operations(self) -> List[QueuedOperation]:
        return list(self._queue.items)

    async def process_offline_queue(self) -> ReplayResult:
        """
        Replay queued operations in FIFO order, one at a time.

        A failing operation is logged and skipped; it never blocks the
        operations queued after it. Operations queued during the replay
        wait for the next one. Replays never overlap: a replay started
        while another is running waits for it to finish.

        Returns:
            ReplayResult with processed and failed counts
        """
        async with self._replay_lock:
            return await self._drain_queue()

    async def _drain_queue(self) -> ReplayResult:
        if not self._queue.items:
            return ReplayResult()

        pending = self._queue.items
        self._queue.items = deque()
        result = ReplayResult()
        started = time.perf_counter()

        logger.info("offline_replay_started", queued=len(pending))

        for queued in pending:
            try:
                await queued.operation()
                result.processed += 1
                logger.debug("offline_replay_item_processed", type=queued.type)
            except Exception as e:
                result.failed += 1
                logger.warning(
                    "offline_replay_item_failed",
                    type=queued.type,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        logger.info(
            "offline_replay_complete",
            processed=result.processed,
            failed=result.failed,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return result

    # ------------------------------------------------------------------
    # Critical data
    # ------------------------------------------------------------------

    def register_critical_query(
        self,
        content_type: str,
        params: Optional[Dict[str, Any]],
        fetch_fn: Operation,
        ttl: Optional[float] = None,
    ) -> None:
        """Declare a query that ``preload_critical_data`` should warm."""
        self._critical.append(CriticalQuery(type=content_type, params=params or {}, fetch_fn=fetch_fn, ttl=ttl))

    async def _preload_one(self, query: CriticalQuery) -> None:
        data = await query.fetch_fn()
        response = data if isinstance(data, SyncResponse) else SyncResponse(data=data)
        await self.cache.store_response(query.type, query.params, response, query.ttl)

    async def preload_critical_data(self) -> PreloadResult:
        """
        Fetch and store every registered critical query concurrently.

        Failures are collected; they never abort the batch.

        Returns:
            PreloadResult listing succeeded and failed types
        """
        logger.info("critical_preload_started", queries=len(self._critical))

        outcomes = await asyncio.gather(
            *(self._preload_one(q) for q in self._critical),
            return_exceptions=True,
        )

        result = PreloadResult()
        for query, outcome in zip(self._critical, outcomes):
            if isinstance(outcome, BaseException):
                result.failed.append(query.type)
                logger.warning(
                    "critical_preload_failed",
                    type=query.type,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
            else:
                result.succeeded.append(query.type)

        logger.info(
            "critical_preload_complete",
            succeeded=len(result.succeeded),
            failed=len(result.failed),
        )
        return result

    # ------------------------------------------------------------------
    # Maintenance and stats
    # ------------------------------------------------------------------

    async def clear_offline_cache(self) -> int:
        """Drop every cached entry and every queued operation."""
        removed = await self.cache.invalidate_cache()
        self._queue.items.clear()
        logger.info("offline_cache_cleared", removed=removed)
        return removed

    async def get_offline_stats(self) -> OfflineStats:
        stats = await self.cache.get_cache_stats()
        return OfflineStats(
            is_online=self._is_online,
            queued_count=len(self._queue.items),
            dropped_count=self._queue.dropped,
            cached_entry_count=stats.entry_count,
            cache_size_bytes=stats.total_size_bytes,
        )
