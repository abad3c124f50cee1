"""Best-seller catalog and prefetch configuration."""

from typing import List

from pydantic import BaseModel, Field, field_validator

# Best-seller lists warmed by the daily prefetch
POPULAR_BOOK_CATEGORIES: List[str] = [
    "hardcover-fiction",
    "hardcover-nonfiction",
    "trade-fiction-paperback",
    "paperback-nonfiction",
    "advice-how-to-and-miscellaneous",
    "childrens-middle-grade-hardcover",
    "picture-books",
    "series-books",
    "young-adult-hardcover",
    "combined-print-and-e-book-fiction",
    "combined-print-and-e-book-nonfiction",
    "e-book-fiction",
    "e-book-nonfiction",
    "mass-market-paperback",
    "graphic-books-and-manga",
    "business-books",
    "science",
    "sports",
    "travel",
    "food-and-fitness",
    "relationships",
    "religion-spirituality-and-faith",
    "family",
    "education",
    "games-and-activities",
    "crime-and-punishment",
    "expeditions",
    "animals",
    "health",
    "humor",
]


class PrefetchConfig(BaseModel):
    """
    Configuration of the daily prefetch job.

    Durations are in seconds.
    """

    enabled: bool = True
    categories: List[str] = Field(default_factory=lambda: list(POPULAR_BOOK_CATEGORIES))
    cache_type: str = Field("books", description="Content type the categories are stored under")

    # Batching
    batch_size: int = Field(5, ge=1, description="Categories fetched concurrently")
    batch_delay: float = Field(1.0, ge=0, description="Pause between batches")

    # Per-category fetch
    max_retries: int = Field(3, ge=1, description="Attempts per category")
    retry_delay: float = Field(1.0, ge=0, description="Base backoff delay")
    fetch_timeout: float = Field(10.0, gt=0, description="Time budget per attempt")
    ttl: float = Field(24 * 60 * 60, ge=0, description="Durable TTL of prefetched lists")

    # Scheduling
    run_hour: int = Field(6, ge=0, le=23, description="Local hour of the daily run")
    run_on_start: bool = True
    startup_delay: float = Field(2.0, ge=0)

    # Circuit breaker
    failure_threshold: int = Field(5, ge=1, description="Failing runs before the breaker opens")
    cooldown: float = Field(30 * 60, ge=0, description="Open duration before reset")

    @field_validator("categories")
    @classmethod
    def validate_categories(cls, v: List[str]) -> List[str]:
        """Reject duplicates so each category is fetched once per run."""
        if len(set(v)) != len(v):
            raise ValueError("categories must be unique")
        return v


def chunk(items: List[str], size: int) -> List[List[str]]:
    """
    Split items into consecutive batches of at most ``size``.

    Example:
        >>> chunk(["a", "b", "c"], 2)
        [['a', 'b'], ['c']]
    """
    return [items[i:i + size] for i in range(0, len(items), size)]
