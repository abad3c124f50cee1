"""Shared fixtures: deterministic clock, in-memory store and both cache tiers."""

from datetime import datetime, timezone

import pytest

from newscache.cache.manager import DurableCacheManager
from newscache.cache.query_cache import QueryCache
from newscache.cache.store import MemoryStore
from newscache.environment import ManualClock

START = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    """Clock frozen at 2026-03-10 08:00 UTC."""
    return ManualClock(START)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def fast_cache(clock):
    return QueryCache(clock)


@pytest.fixture
def cache(store, fast_cache, clock):
    """DurableCacheManager over the in-memory store."""
    return DurableCacheManager(store, fast_cache, clock)
