"""Freshness policies for different content types.

This module defines how long each content type stays fresh in the fast
cache (stale time) and how long it is retained at all (retention time,
also the default durable TTL).
"""

from enum import Enum
from typing import NamedTuple

import structlog

logger = structlog.get_logger(__name__)

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR


class Policy(NamedTuple):
    stale_time: float
    gc_time: float


class CacheTTL(Enum):
    """
    Cache policies for the news content types.

    Values are (stale_time, gc_time) pairs in seconds:
    - Search results change frequently: short stale time
    - Top stories update roughly every 30 minutes
    - Article details and archives are effectively static
    - Best-seller lists update weekly
    """

    SEARCH = Policy(10 * MINUTE, 30 * MINUTE)
    TOP_STORIES = Policy(20 * MINUTE, 1 * HOUR)
    ARTICLE_DETAIL = Policy(1 * HOUR, 1 * DAY)
    ARCHIVE = Policy(4 * HOUR, 7 * DAY)
    BOOKS = Policy(1 * HOUR, 12 * HOUR)
    REFERENCE = Policy(8 * HOUR, 7 * DAY)

    # Fallback for unknown content types
    DEFAULT = Policy(1 * MINUTE, 5 * MINUTE)

    @staticmethod
    def for_type(content_type: str) -> Policy:
        """
        Determine the policy for a content type.

        Args:
            content_type: Content type ("search", "topStories", ...)

        Returns:
            Policy with stale_time and gc_time in seconds

        Example:
            >>> CacheTTL.for_type("topStories").stale_time
            1200
        """
        policy = _TYPE_POLICIES.get(content_type)

        if policy is None:
            policy = CacheTTL.DEFAULT.value
            logger.warning(
                "unknown_type_using_default_policy",
                type=content_type,
                stale_time=policy.stale_time,
                gc_time=policy.gc_time,
            )

        return policy

    @staticmethod
    def stale_time(content_type: str) -> float:
        return CacheTTL.for_type(content_type).stale_time

    @staticmethod
    def get_ttl(content_type: str) -> float:
        """
        Default durable TTL for a content type (its retention time).

        Example:
            >>> CacheTTL.get_ttl("books")
            43200
        """
        ttl = CacheTTL.for_type(content_type).gc_time

        logger.debug(
            "ttl_determined",
            type=content_type,
            ttl_seconds=ttl,
        )

        return ttl


_TYPE_POLICIES = {
    "search": CacheTTL.SEARCH.value,
    "topStories": CacheTTL.TOP_STORIES.value,
    "articleDetail": CacheTTL.ARTICLE_DETAIL.value,
    "archive": CacheTTL.ARCHIVE.value,
    "books": CacheTTL.BOOKS.value,
    "reference": CacheTTL.REFERENCE.value,
}
