"""Unit tests for the in-memory query cache."""

from newscache.cache.query_cache import QueryCache


class TestQueryCache:
    """Test suite for QueryCache freshness and retention."""

    def test_set_and_get(self, fast_cache):
        fast_cache.set("books", {"list": "fiction"}, ["book"])

        assert fast_cache.get("books", {"list": "fiction"}) == ["book"]
        assert fast_cache.get("books", {"list": "science"}) is None

    def test_freshness_follows_stale_time(self, fast_cache, clock):
        """Test books stay fresh for an hour, then go stale but remain."""
        fast_cache.set("books", {"list": "fiction"}, ["book"])

        clock.advance(3599)
        assert fast_cache.is_fresh("books", {"list": "fiction"})

        clock.advance(1)
        assert not fast_cache.is_fresh("books", {"list": "fiction"})
        assert fast_cache.get("books", {"list": "fiction"}) == ["book"]

    def test_ttl_caps_stale_time(self, fast_cache, clock):
        fast_cache.set("books", {"list": "fiction"}, ["book"], ttl=30)
        fast_cache.set("books", {"list": "science"}, ["book"], ttl=0)

        assert fast_cache.is_fresh("books", {"list": "fiction"})
        assert not fast_cache.is_fresh("books", {"list": "science"})

        clock.advance(30)
        assert not fast_cache.is_fresh("books", {"list": "fiction"})

    def test_collected_after_retention_time(self, fast_cache, clock):
        """Test entries are dropped once they reach the retention time."""
        fast_cache.set("books", {"list": "fiction"}, ["book"])

        clock.advance(hours=12)

        assert fast_cache.get_entry("books", {"list": "fiction"}) is None
        assert fast_cache.stats()["total_queries"] == 0

    def test_invalidate_by_type(self, fast_cache):
        fast_cache.set("books", {"list": "fiction"}, [1])
        fast_cache.set("books", {"list": "science"}, [2])
        fast_cache.set("archive", {"year": 2020, "month": 1}, [3])

        removed = fast_cache.invalidate(content_type="books")

        assert removed == 2
        assert fast_cache.get("archive", {"year": 2020, "month": 1}) == [3]

    def test_invalidate_by_pattern_and_all(self, fast_cache):
        fast_cache.set("books", {"list": "fiction"}, [1])
        fast_cache.set("search", {"q": "mars"}, [2])

        assert fast_cache.invalidate(pattern="search:") == 1
        assert fast_cache.get("books", {"list": "fiction"}) == [1]
        assert fast_cache.invalidate() == 1

    def test_stats(self, clock):
        cache = QueryCache(clock)
        cache.set("search", {"q": "mars"}, [1])
        cache.set("books", {"list": "fiction"}, [2])

        clock.advance(minutes=15)

        assert cache.stats() == {"total_queries": 2, "fresh_queries": 1, "stale_queries": 1}
