"""Unit tests for the daily prefetch scheduler."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from newscache.environment import ManualTimerScheduler
from newscache.exceptions import NetworkError
from newscache.models import PrefetchStats, SyncResponse
from newscache.prefetch.catalog import POPULAR_BOOK_CATEGORIES, PrefetchConfig, chunk
from newscache.prefetch.scheduler import PrefetchScheduler

UTC = timezone.utc


def books_for(category):
    return [{"title": f"{category} #1", "rank": 1}]


class TestPrefetchCatalog:
    """Test suite for the catalog and batching helper."""

    def test_default_catalog(self):
        config = PrefetchConfig()

        assert len(config.categories) == 30
        assert config.categories == POPULAR_BOOK_CATEGORIES
        assert config.batch_size == 5
        assert config.run_hour == 6

    def test_chunk(self):
        batches = chunk([str(i) for i in range(21)], 3)

        assert len(batches) == 7
        assert all(len(batch) == 3 for batch in batches)
        assert chunk(["a", "b", "c"], 2) == [["a", "b"], ["c"]]

    def test_duplicate_categories_rejected(self):
        with pytest.raises(ValueError):
            PrefetchConfig(categories=["science", "science"])


class TestPrefetchScheduler:
    """Test suite for PrefetchScheduler runs."""

    @pytest.fixture
    def timers(self, clock):
        return ManualTimerScheduler(clock)

    @pytest.fixture
    def fetch(self):
        return AsyncMock(side_effect=books_for)

    @pytest.fixture
    def make_scheduler(self, cache, store, clock, timers):
        """Build a scheduler over the shared cache with a custom config."""

        def _make(fetch, **config):
            return PrefetchScheduler(cache, fetch, store, clock, timers, config=PrefetchConfig(**config))

        return _make

    @pytest.mark.asyncio
    async def test_batches_run_sequentially_with_bounded_concurrency(self, make_scheduler, clock):
        """Test 21 categories with batch size 3 run as 7 batches."""
        active = 0
        peak = 0
        fetched = []

        async def fetch(category):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0)
            fetched.append(category)
            active -= 1
            return books_for(category)

        categories = [f"list-{i}" for i in range(21)]
        scheduler = make_scheduler(fetch, categories=categories, batch_size=3, batch_delay=1.0)

        assert await scheduler.run_prefetch() is True

        assert peak == 3
        assert sorted(fetched) == sorted(categories)
        # One pause between consecutive batches, none after the last
        assert clock.sleeps == [1.0] * 6

        stats = scheduler.get_stats()
        assert stats.total_categories == 21
        assert stats.successful == 21
        assert stats.failed == 0
        assert stats.cached == 21
        assert stats.last_run == clock.now() - timedelta(seconds=6)

    @pytest.mark.asyncio
    async def test_once_per_day(self, make_scheduler, fetch, clock):
        """Test a second trigger on the same date does no batch work."""
        scheduler = make_scheduler(fetch, categories=["science", "travel"])

        assert await scheduler.trigger_prefetch() is True
        assert await scheduler.trigger_prefetch() is False
        assert fetch.await_count == 2

        clock.advance(days=1)
        assert await scheduler.trigger_prefetch() is True
        assert fetch.await_count == 4

    @pytest.mark.asyncio
    async def test_stores_daily_entries(self, make_scheduler, fetch, cache, clock):
        scheduler = make_scheduler(fetch, categories=["science"])

        await scheduler.run_prefetch()

        entry = await cache.get_entry("books", {"list": "science"})
        assert entry.data == books_for("science")
        assert entry.validator == "daily-2026-03-10"
        assert entry.ttl == 86400

    @pytest.mark.asyncio
    async def test_is_category_cached_is_scoped_to_today(self, make_scheduler, fetch, clock):
        scheduler = make_scheduler(fetch, categories=["science"])
        await scheduler.run_prefetch()

        assert await scheduler.is_category_cached("science") is True
        assert await scheduler.is_category_cached("travel") is False

        # Still within the TTL, but on the next calendar date
        clock.advance(hours=20)
        assert await scheduler.is_category_cached("science") is False

    @pytest.mark.asyncio
    async def test_get_cached_books(self, make_scheduler, fetch, cache, fast_cache):
        scheduler = make_scheduler(fetch, categories=["science"])
        await scheduler.run_prefetch()

        assert await scheduler.get_cached_books("science") == books_for("science")

        fast_cache.invalidate()
        assert await scheduler.get_cached_books("science") == books_for("science")
        assert await scheduler.get_cached_books("travel") is None

        await cache.store_response("books", {"list": "odd"}, SyncResponse(data={"not": "a list"}))
        assert await scheduler.get_cached_books("odd") is None

    @pytest.mark.asyncio
    async def test_shape_errors_are_not_retried(self, make_scheduler, clock):
        fetch = AsyncMock(return_value={"results": []})
        scheduler = make_scheduler(fetch, categories=["science", "travel"])

        assert await scheduler.run_prefetch() is True

        assert fetch.await_count == 2
        assert clock.sleeps == []
        stats = scheduler.get_stats()
        assert stats.failed == 2
        assert stats.successful == 0
        # A failing run does not count as today's completed run
        assert scheduler.should_run_today() is True

    @pytest.mark.asyncio
    async def test_transient_errors_retried_with_backoff(self, make_scheduler, clock):
        fetch = AsyncMock(side_effect=NetworkError("connection reset"))
        scheduler = make_scheduler(fetch, categories=["science"], max_retries=3, retry_delay=1.0)

        await scheduler.run_prefetch()

        assert fetch.await_count == 3
        assert clock.sleeps == [1.0, 2.0]
        assert scheduler.get_stats().failed == 1

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, make_scheduler, clock):
        """Test a fetch exceeding its time budget is cancelled and retried."""
        attempts = []

        async def fetch(category):
            attempts.append(category)
            if len(attempts) == 1:
                await asyncio.sleep(5)
            return books_for(category)

        scheduler = make_scheduler(fetch, categories=["science"], fetch_timeout=0.01)

        await scheduler.run_prefetch()

        assert len(attempts) == 2
        assert clock.sleeps == [1.0]
        assert scheduler.get_stats().successful == 1

    @pytest.mark.asyncio
    async def test_breaker_opens_and_resets(self, make_scheduler, clock):
        """Test five failing runs disable prefetch until the cooldown passes."""
        fetch = AsyncMock(return_value=None)
        scheduler = make_scheduler(fetch, categories=["science"])

        for _ in range(5):
            assert await scheduler.run_prefetch() is True

        assert scheduler.breaker_state().open is True
        stats_before = scheduler.get_stats()
        assert await scheduler.run_prefetch() is False
        assert fetch.await_count == 5
        assert scheduler.get_stats() == stats_before

        clock.advance(minutes=30)

        assert await scheduler.run_prefetch() is True
        assert fetch.await_count == 6
        state = scheduler.breaker_state()
        assert state.open is False
        assert state.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_disabled(self, make_scheduler, fetch):
        scheduler = make_scheduler(fetch, categories=["science"])
        scheduler.set_enabled(False)

        assert await scheduler.run_prefetch() is False
        fetch.assert_not_awaited()

        scheduler.set_enabled(True)
        assert await scheduler.run_prefetch() is True

    @pytest.mark.asyncio
    async def test_concurrent_run_is_skipped(self, make_scheduler):
        release = asyncio.Event()

        async def fetch(category):
            await release.wait()
            return books_for(category)

        scheduler = make_scheduler(fetch, categories=["science"])
        first = asyncio.ensure_future(scheduler.run_prefetch())
        await asyncio.sleep(0)

        assert scheduler.is_running is True
        assert await scheduler.run_prefetch() is False

        release.set()
        assert await first is True
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_clear_cache_forgets_daily_run(self, make_scheduler, fetch, store):
        scheduler = make_scheduler(fetch, categories=["science", "travel"])
        await scheduler.run_prefetch()

        removed = await scheduler.clear_cache()

        assert removed == 2
        assert scheduler.should_run_today() is True
        assert await store.get(PrefetchScheduler.LAST_RUN_KEY) is None
        assert await scheduler.is_category_cached("science") is False

    @pytest.mark.asyncio
    async def test_stats_are_persisted(self, make_scheduler, fetch, store):
        scheduler = make_scheduler(fetch, categories=["science"])
        await scheduler.run_prefetch()

        persisted = PrefetchStats.model_validate_json(await store.get(PrefetchScheduler.STATS_KEY))

        assert persisted.successful == 1
        assert await store.get(PrefetchScheduler.LAST_RUN_KEY) == "2026-03-10"


class TestPrefetchScheduling:
    """Test suite for timers and the daily schedule."""

    @pytest.fixture
    def timers(self, clock):
        return ManualTimerScheduler(clock)

    @pytest.fixture
    def fetch(self):
        return AsyncMock(side_effect=books_for)

    @pytest.fixture
    def scheduler(self, cache, store, clock, timers, fetch):
        config = PrefetchConfig(categories=["science", "travel"])
        return PrefetchScheduler(cache, fetch, store, clock, timers, config=config)

    @pytest.mark.parametrize(
        "now,expected",
        [
            (datetime(2026, 3, 10, 5, 59, tzinfo=UTC), datetime(2026, 3, 10, 6, 0, tzinfo=UTC)),
            (datetime(2026, 3, 10, 6, 0, tzinfo=UTC), datetime(2026, 3, 11, 6, 0, tzinfo=UTC)),
            (datetime(2026, 3, 10, 23, 30, tzinfo=UTC), datetime(2026, 3, 11, 6, 0, tzinfo=UTC)),
        ],
    )
    def test_next_run_time(self, scheduler, now, expected):
        assert scheduler.next_run_time(now) == expected

    @pytest.mark.asyncio
    async def test_start_schedules_daily_and_startup_runs(self, scheduler, timers, clock, fetch):
        await scheduler.start()

        whens = sorted(t.when for t in timers.pending)
        assert whens == [
            datetime(2026, 3, 10, 8, 0, 2, tzinfo=UTC),
            datetime(2026, 3, 11, 6, 0, tzinfo=UTC),
        ]
        assert scheduler.get_stats().next_run == datetime(2026, 3, 11, 6, 0, tzinfo=UTC)

        clock.advance(2)
        assert await timers.run_due() == 1
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_daily_timer_runs_and_reschedules(self, scheduler, timers, clock, fetch):
        await scheduler.start()
        clock.advance(2)
        await timers.run_due()

        clock.set(datetime(2026, 3, 11, 6, 0, tzinfo=UTC))
        assert await timers.run_due() == 1

        assert fetch.await_count == 4
        assert [t.when for t in timers.pending] == [datetime(2026, 3, 12, 6, 0, tzinfo=UTC)]
        assert scheduler.get_stats().next_run == datetime(2026, 3, 12, 6, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_start_restores_completed_run(self, scheduler, store, timers):
        """Test no startup run is scheduled when today's run already completed."""
        await store.set(PrefetchScheduler.LAST_RUN_KEY, "2026-03-10")
        await store.set(PrefetchScheduler.STATS_KEY, PrefetchStats(successful=30, total_categories=30).model_dump_json())

        await scheduler.start()

        assert len(timers.pending) == 1
        assert scheduler.should_run_today() is False
        assert scheduler.get_stats().successful == 30

    @pytest.mark.asyncio
    async def test_corrupted_stats_are_ignored(self, scheduler, store):
        await store.set(PrefetchScheduler.STATS_KEY, "{not json")

        await scheduler.start()

        assert scheduler.get_stats().successful == 0

    @pytest.mark.asyncio
    async def test_dispose_cancels_timers(self, scheduler, timers):
        await scheduler.start()

        scheduler.dispose()

        assert timers.pending == []
