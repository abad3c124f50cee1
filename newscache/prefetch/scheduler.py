"""
Daily batch prefetch of best-seller lists.

The scheduler warms the durable cache once per calendar day. Categories
are fetched in bounded batches with a pause between batches to respect
the upstream rate limit. Each category is retried on transient errors
only, and a run-level circuit breaker disables the job after sustained
failure.
"""

import asyncio
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, List, Optional

from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from newscache.cache.manager import DurableCacheManager
from newscache.cache.store import KeyValueStore
from newscache.environment import Clock, TimerHandle, TimerScheduler
from newscache.exceptions import FetchTimeoutError, ResponseShapeError, StorageError, is_transient
from newscache.models import CircuitBreakerState, PrefetchStats, SyncResponse
from newscache.prefetch.breaker import RunCircuitBreaker
from newscache.prefetch.catalog import PrefetchConfig, chunk
from newscache.utils.logger import get_logger, log_prefetch_run

logger = get_logger(__name__)

FetchCategory = Callable[[str], Awaitable[Any]]


class PrefetchScheduler:
    """
    Once-a-day, idempotent batch prefetch into the durable cache.

    Attributes:
        cache: Durable cache manager receiving the fetched lists
        config: PrefetchConfig (mutable through ``set_enabled``)
    """

    STATS_KEY = "prefetch:stats"
    LAST_RUN_KEY = "prefetch:last-run"

    def __init__(
        self,
        cache: DurableCacheManager,
        fetch_category: FetchCategory,
        store: KeyValueStore,
        clock: Clock,
        timers: TimerScheduler,
        config: Optional[PrefetchConfig] = None,
        breaker: Optional[RunCircuitBreaker] = None,
    ) -> None:
        self.cache = cache
        self.config = config or PrefetchConfig()
        self._fetch_category = fetch_category
        self._store = store
        self._clock = clock
        self._timers = timers
        self._breaker = breaker or RunCircuitBreaker(
            clock,
            failure_threshold=self.config.failure_threshold,
            cooldown=self.config.cooldown,
        )

        self._stats = PrefetchStats()
        self._last_run_date: Optional[str] = None
        self._running = False
        self._disposed = False
        self._daily_timer: Optional[TimerHandle] = None
        self._startup_timer: Optional[TimerHandle] = None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _load_state(self) -> None:
        try:
            raw_stats = await self._store.get(self.STATS_KEY)
            self._last_run_date = await self._store.get(self.LAST_RUN_KEY)
        except StorageError as e:
            logger.warning(
                "prefetch_stats_load_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        if raw_stats is None:
            return

        try:
            self._stats = PrefetchStats.model_validate_json(raw_stats)
        except ValidationError as e:
            logger.warning("prefetch_stats_corrupted", errors=e.error_count())

    async def _save_stats(self) -> None:
        try:
            await self._store.set(self.STATS_KEY, self._stats.model_dump_json())
        except StorageError as e:
            logger.warning(
                "prefetch_stats_save_failed",
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _mark_completed_today(self, today: str) -> None:
        self._last_run_date = today
        try:
            await self._store.set(self.LAST_RUN_KEY, today)
        except StorageError as e:
            logger.warning(
                "prefetch_last_run_save_failed",
                error=str(e),
                error_type=type(e).__name__,
            )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def next_run_time(self, now: datetime) -> datetime:
        """
        Compute the next daily run.

        Args:
            now: Current local time

        Returns:
            Today at ``run_hour``:00, or tomorrow when that hour has been
            reached already

        Example:
            >>> scheduler.next_run_time(datetime(2026, 3, 10, 5, 59))
            datetime.datetime(2026, 3, 10, 6, 0)
        """
        next_run = now.replace(hour=self.config.run_hour, minute=0, second=0, microsecond=0)
        if now.hour >= self.config.run_hour:
            next_run += timedelta(days=1)
        return next_run

    async def start(self) -> None:
        """Restore persisted state and arm the daily and startup timers."""
        self._disposed = False
        await self._load_state()
        await self._schedule_daily()

        if self.config.run_on_start and self.should_run_today():
            when = self._clock.now() + timedelta(seconds=self.config.startup_delay)
            self._startup_timer = self._timers.call_at(when, self._on_startup_timer)
            logger.info("prefetch_startup_run_scheduled", run_at=when.isoformat())

    async def _schedule_daily(self) -> None:
        next_run = self.next_run_time(self._clock.now())
        self._stats.next_run = next_run
        await self._save_stats()

        self._daily_timer = self._timers.call_at(next_run, self._on_daily_timer)
        logger.info("prefetch_scheduled", next_run=next_run.isoformat())

    async def _on_daily_timer(self) -> None:
        try:
            await self.run_prefetch()
        finally:
            if not self._disposed:
                await self._schedule_daily()

    async def _on_startup_timer(self) -> None:
        self._startup_timer = None
        if self.should_run_today():
            logger.info("prefetch_running_on_start")
            await self.run_prefetch()

    def dispose(self) -> None:
        """Cancel pending timers; an in-flight run is left to finish."""
        self._disposed = True
        for handle in (self._daily_timer, self._startup_timer):
            if handle is not None:
                handle.cancel()
        self._daily_timer = None
        self._startup_timer = None

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def should_run_today(self) -> bool:
        return self._last_run_date != self._clock.now().date().isoformat()

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_prefetch(self) -> bool:
        """
        Run one prefetch pass over the catalog.

        Skipped (returning False) when disabled, already running, while
        the circuit breaker is open, or when a run already completed on
        today's date. Only a run that is not failing marks the date, so a
        failing run can be retried the same day until the breaker opens.

        Returns:
            True if batch work was performed
        """
        if not self.config.enabled:
            logger.info("prefetch_skipped", reason="disabled")
            return False
        if self._running:
            logger.info("prefetch_skipped", reason="already_running")
            return False
        if not self._breaker.allow_run():
            logger.info("prefetch_skipped", reason="circuit_open")
            return False
        if not self.should_run_today():
            logger.info("prefetch_skipped", reason="already_ran_today", last_run_date=self._last_run_date)
            return False

        self._running = True
        started = time.perf_counter()
        now = self._clock.now()
        categories = list(self.config.categories)

        self._stats = PrefetchStats(
            total_categories=len(categories),
            last_run=now,
            next_run=self._stats.next_run,
        )
        logger.info("prefetch_started", categories=len(categories), batch_size=self.config.batch_size)

        try:
            batches = chunk(categories, self.config.batch_size)
            for index, batch in enumerate(batches):
                logger.info(
                    "prefetch_batch_started",
                    batch=index + 1,
                    batches=len(batches),
                    size=len(batch),
                )
                await self._process_batch(batch)

                if index < len(batches) - 1:
                    await self._clock.sleep(self.config.batch_delay)
        finally:
            self._running = False

        successful, failed = self._stats.successful, self._stats.failed
        self._breaker.record_run(successful, failed)
        if failed <= successful:
            await self._mark_completed_today(now.date().isoformat())
        await self._save_stats()

        log_prefetch_run(
            total=len(categories),
            successful=successful,
            failed=failed,
            duration_ms=(time.perf_counter() - started) * 1000,
            cached=self._stats.cached,
        )
        return True

    async def _process_batch(self, batch: List[str]) -> None:
        outcomes = await asyncio.gather(
            *(self.prefetch_category(category) for category in batch),
            return_exceptions=True,
        )
        for category, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                self._stats.failed += 1
                logger.error(
                    "prefetch_category_error",
                    category=category,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )

    async def _fetch_once(self, category: str) -> List[Any]:
        try:
            books = await asyncio.wait_for(
                self._fetch_category(category),
                timeout=self.config.fetch_timeout,
            )
        except asyncio.TimeoutError as e:
            raise FetchTimeoutError(
                f"Fetching {category} timed out",
                timeout_seconds=self.config.fetch_timeout,
            ) from e

        if not isinstance(books, list):
            raise ResponseShapeError(
                f"Expected a list of books for {category}, got {type(books).__name__}",
                category=category,
            )
        return books

    async def prefetch_category(self, category: str) -> bool:
        """
        Fetch one category and store it with a daily validator.

        Transient errors are retried with exponential backoff up to
        ``max_retries`` attempts; other errors fail immediately.

        Args:
            category: Best-seller list name

        Returns:
            True if the list was fetched
        """

        def _before_sleep(retry_state) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "prefetch_category_retry",
                category=category,
                attempt=retry_state.attempt_number,
                sleep_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
                error=str(exc) if exc else None,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(multiplier=self.config.retry_delay, exp_base=2, min=0),
            retry=retry_if_exception(is_transient),
            before_sleep=_before_sleep,
            sleep=self._clock.sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    books = await self._fetch_once(category)
        except Exception as e:
            self._stats.failed += 1
            logger.error(
                "prefetch_category_failed",
                category=category,
                transient=is_transient(e),
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        self._stats.successful += 1
        today = self._clock.now().date().isoformat()
        stored = await self.cache.store_response(
            self.config.cache_type,
            {"list": category},
            SyncResponse(data=books, validator=f"daily-{today}"),
            ttl=self.config.ttl,
        )
        if stored:
            self._stats.cached += 1

        logger.debug("prefetch_category_cached", category=category, books=len(books), stored=stored)
        return True

    async def trigger_prefetch(self) -> bool:
        """Run a prefetch now; the daily and breaker guards still apply."""
        logger.info("prefetch_manual_trigger")
        return await self.run_prefetch()

    # ------------------------------------------------------------------
    # Queries and maintenance
    # ------------------------------------------------------------------

    def get_stats(self) -> PrefetchStats:
        return self._stats.model_copy()

    def breaker_state(self) -> CircuitBreakerState:
        return self._breaker.state()

    async def is_category_cached(self, category: str) -> bool:
        """Whether a live durable entry for the category was written today."""
        entry = await self.cache.get_entry(self.config.cache_type, {"list": category})
        if entry is None:
            return False

        now = self._clock.now()
        return entry.written_at.astimezone(now.tzinfo).date() == now.date()

    async def get_cached_books(self, category: str) -> Optional[List[Any]]:
        """
        Return the cached list for a category.

        Returns:
            The list from the fast cache or the durable store, or None when
            nothing usable is cached
        """
        params = {"list": category}
        fast_entry = self.cache.fast_cache.get_entry(self.config.cache_type, params)
        if fast_entry is not None:
            data = fast_entry.data
        else:
            entry = await self.cache.get_entry(self.config.cache_type, params)
            data = entry.data if entry is not None else None

        return data if isinstance(data, list) else None

    async def clear_cache(self) -> int:
        """Drop every prefetched list and forget today's completed run."""
        removed = await self.cache.invalidate_cache(content_type=self.config.cache_type)

        self._last_run_date = None
        self._stats = PrefetchStats(next_run=self._stats.next_run)
        try:
            await self._store.delete(self.LAST_RUN_KEY, self.STATS_KEY)
        except StorageError as e:
            logger.warning(
                "prefetch_state_clear_failed",
                error=str(e),
                error_type=type(e).__name__,
            )

        logger.info("prefetch_cache_cleared", removed=removed)
        return removed

    def set_enabled(self, enabled: bool) -> None:
        self.config.enabled = enabled
        logger.info("prefetch_enabled_changed", enabled=enabled)
