"""
Composition root for the cache services.

Builds the store, both cache tiers, the offline manager and the prefetch
scheduler exactly once from Settings, with injectable collaborators for
time, connectivity and timers.
"""

from typing import Optional

from newscache.cache.manager import DurableCacheManager
from newscache.cache.query_cache import QueryCache
from newscache.cache.store import KeyValueStore, MemoryStore, RedisStore
from newscache.config import Settings
from newscache.environment import (
    AsyncioTimerScheduler,
    Clock,
    ConnectivitySignal,
    SystemClock,
    TimerScheduler,
)
from newscache.offline.manager import OfflineResilienceManager
from newscache.prefetch.scheduler import FetchCategory, PrefetchScheduler
from newscache.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


class CacheServices:
    """
    The wired-up cache subsystem.

    Use ``await CacheServices.create(...)`` and ``await services.dispose()``,
    or ``async with`` on the created instance.

    Example:
        >>> async with await CacheServices.create(Settings.from_env(), fetch_list) as services:
        ...     decision = await services.cache.should_fetch("books", {"list": "science"})
    """

    def __init__(
        self,
        settings: Settings,
        store: KeyValueStore,
        clock: Clock,
        connectivity: ConnectivitySignal,
        timers: TimerScheduler,
        fast_cache: QueryCache,
        cache: DurableCacheManager,
        offline: OfflineResilienceManager,
        prefetch: PrefetchScheduler,
    ) -> None:
        self.settings = settings
        self.store = store
        self.clock = clock
        self.connectivity = connectivity
        self.timers = timers
        self.fast_cache = fast_cache
        self.cache = cache
        self.offline = offline
        self.prefetch = prefetch
        self._disposed = False

    @classmethod
    async def create(
        cls,
        settings: Settings,
        fetch_category: FetchCategory,
        *,
        store: Optional[KeyValueStore] = None,
        clock: Optional[Clock] = None,
        connectivity: Optional[ConnectivitySignal] = None,
        timers: Optional[TimerScheduler] = None,
    ) -> "CacheServices":
        """
        Configure logging, then build and start every service.

        Args:
            settings: Settings (see Settings.from_env)
            fetch_category: Async callable returning the book list for a
                best-seller category
            store: Durable backend; defaults to Redis when ``redis_url`` is
                set, otherwise an in-process MemoryStore
            clock: Defaults to SystemClock
            connectivity: Defaults to an online ConnectivitySignal
            timers: Defaults to AsyncioTimerScheduler

        Returns:
            Started CacheServices
        """
        setup_logging(level=settings.log_level, environment=settings.environment)

        clock = clock or SystemClock()
        connectivity = connectivity or ConnectivitySignal(online=True)
        timers = timers or AsyncioTimerScheduler(clock)

        if store is None:
            if settings.redis_url:
                redis_store = RedisStore.from_url(settings.redis_url)
                if not await redis_store.ping():
                    logger.warning("redis_unreachable_at_startup")
                store = redis_store
            else:
                store = MemoryStore()

        fast_cache = QueryCache(clock)
        cache = DurableCacheManager(store, fast_cache, clock)
        offline = OfflineResilienceManager(
            cache,
            connectivity,
            clock,
            default_config=settings.offline_config(),
            max_queue_size=settings.offline_queue_limit,
        )
        prefetch = PrefetchScheduler(
            cache,
            fetch_category,
            store,
            clock,
            timers,
            config=settings.prefetch_config(),
        )

        services = cls(
            settings=settings,
            store=store,
            clock=clock,
            connectivity=connectivity,
            timers=timers,
            fast_cache=fast_cache,
            cache=cache,
            offline=offline,
            prefetch=prefetch,
        )

        removed = await cache.cleanup_expired_entries()
        offline.start()
        await prefetch.start()

        logger.info(
            "cache_services_started",
            store=type(store).__name__,
            online=connectivity.online,
            expired_removed=removed,
        )
        return services

    async def dispose(self) -> None:
        """Cancel timers, unsubscribe from connectivity and close the store."""
        if self._disposed:
            return
        self._disposed = True

        self.prefetch.dispose()
        await self.offline.dispose()
        await self.store.close()
        logger.info("cache_services_disposed")

    async def __aenter__(self) -> "CacheServices":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()
