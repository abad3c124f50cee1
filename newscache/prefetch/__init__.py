"""Daily prefetch of best-seller lists with a run-level circuit breaker."""

from newscache.prefetch.breaker import RunCircuitBreaker
from newscache.prefetch.catalog import POPULAR_BOOK_CATEGORIES, PrefetchConfig, chunk
from newscache.prefetch.scheduler import PrefetchScheduler

__all__ = [
    "PrefetchConfig",
    "POPULAR_BOOK_CATEGORIES",
    "chunk",
    "RunCircuitBreaker",
    "PrefetchScheduler",
]
