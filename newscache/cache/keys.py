"""Cache key generation for consistent, deterministic cache keys.

This module provides the CacheKeyGenerator class for deriving logical
cache keys from a content type and a parameter bag, and for building the
storage keys of the persisted entry layout.
"""

import base64
import json
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class CacheKeyGenerator:
    """
    Generate consistent cache keys for cached content.

    Logical keys follow the pattern: {type}:{encoded_params}

    ``encoded_params`` is the URL-safe base64 encoding of the parameters
    sorted by name and joined as ``name:value|name:value``, so the same
    bag always yields the same key regardless of insertion order.

    Storage keys derived from a logical key:
        - cache:{key}         -> serialized data
        - validator:{key}     -> validator string
        - cache:{key}:meta    -> {"written_at", "ttl"}
    """

    DATA_PREFIX = "cache:"
    VALIDATOR_PREFIX = "validator:"
    META_SUFFIX = ":meta"

    @staticmethod
    def _render(value: Any) -> str:
        if isinstance(value, str):
            return value
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)

    @staticmethod
    def generate(content_type: str, params: Optional[Dict[str, Any]] = None) -> str:
        """
        Generate the logical cache key for a request.

        Args:
            content_type: Content type (e.g., "books", "topStories")
            params: Request parameters as dictionary

        Returns:
            Cache key string in format: {type}:{encoded_params}

        Raises:
            ValueError: If the content type is empty or contains ':'

        Example:
            >>> CacheKeyGenerator.generate("books", {"list": "fiction"})
            'books:bGlzdDpmaWN0aW9u'
        """
        if not content_type or ":" in content_type:
            raise ValueError(
                f"Invalid content type: {content_type!r}. "
                "Content types must be non-empty and must not contain ':'"
            )

        params = params or {}
        sorted_params = "|".join(
            f"{name}:{CacheKeyGenerator._render(params[name])}" for name in sorted(params)
        )
        encoded = base64.urlsafe_b64encode(sorted_params.encode("utf-8")).decode("ascii").rstrip("=")

        cache_key = f"{content_type}:{encoded}"

        logger.debug(
            "cache_key_generated",
            type=content_type,
            cache_key=cache_key,
        )

        return cache_key

    @staticmethod
    def parse(cache_key: str) -> Dict[str, str]:
        """
        Parse a logical cache key back to components.

        Args:
            cache_key: Logical cache key to parse

        Returns:
            Dictionary with parsed components:
                - type: Content type
                - encoded_params: Encoded parameter string
                - params: Decoded ``name:value|...`` string

        Raises:
            ValueError: If cache key format is invalid

        Example:
            >>> CacheKeyGenerator.parse("books:bGlzdDpmaWN0aW9u")["params"]
            'list:fiction'
        """
        parts = cache_key.split(":")

        if len(parts) != 2 or not parts[0]:
            raise ValueError(
                f"Invalid cache key format: {cache_key}. "
                f"Expected 2 parts separated by ':', got {len(parts)}"
            )

        encoded = parts[1]
        padding = "=" * (-len(encoded) % 4)
        try:
            decoded = base64.urlsafe_b64decode(encoded + padding).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise ValueError(f"Invalid cache key encoding: {cache_key}") from e

        return {
            "type": parts[0],
            "encoded_params": encoded,
            "params": decoded,
        }

    @classmethod
    def data_key(cls, cache_key: str) -> str:
        return f"{cls.DATA_PREFIX}{cache_key}"

    @classmethod
    def validator_key(cls, cache_key: str) -> str:
        return f"{cls.VALIDATOR_PREFIX}{cache_key}"

    @classmethod
    def meta_key(cls, cache_key: str) -> str:
        return f"{cls.DATA_PREFIX}{cache_key}{cls.META_SUFFIX}"

    @classmethod
    def from_storage_key(cls, storage_key: str) -> Optional[str]:
        """
        Recover the logical key from any of the three storage keys.

        Returns:
            The logical key, or None for keys outside the cache layout
        """
        if storage_key.startswith(cls.VALIDATOR_PREFIX):
            return storage_key[len(cls.VALIDATOR_PREFIX):]

        if storage_key.startswith(cls.DATA_PREFIX):
            key = storage_key[len(cls.DATA_PREFIX):]
            if key.endswith(cls.META_SUFFIX):
                key = key[: -len(cls.META_SUFFIX)]
            return key

        return None
