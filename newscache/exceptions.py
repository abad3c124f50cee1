"""
Custom exceptions for the caching and synchronization layer.

Only two kinds of errors are allowed to reach callers of the managers:
OfflineUnavailableError (offline, nothing cached, no fallback) and the
fetch error that survived every retry. Everything else defined here is
raised and absorbed inside the managers.
"""

import asyncio
from typing import Optional


class NewsCacheError(Exception):
    """
    Base exception for all cache layer errors.

    Use this for catching any error raised by this package.
    """

    def __init__(self, message: str) -> None:
        """
        Initialize NewsCacheError.

        Args:
            message: Error description
        """
        self.message = message
        super().__init__(self.message)


class StorageError(NewsCacheError):
    """
    Raised when the persistent key-value backend fails.

    This occurs when:
    - The backend is unreachable or was closed
    - A write exceeds the backend quota
    - The backend returns an unexpected response

    Managers catch this and degrade to a cache miss or a skipped write.

    Example:
        >>> raise StorageError("set failed", key="cache:books:bGlzdDpmaWN0aW9u")
    """

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        """
        Initialize StorageError.

        Args:
            message: Error description
            key: Optional storage key involved in the failure
        """
        self.key = key

        if key:
            message = f"{message} (key={key})"

        super().__init__(message)


class CorruptEntryError(NewsCacheError):
    """
    Raised when a persisted entry cannot be trusted.

    Unparseable JSON, a missing meta record, a missing validator or an
    unparseable timestamp all count as corruption. Never surfaced to
    callers; the entry is evicted and treated as a miss.
    """

    def __init__(self, key: str, reason: str) -> None:
        """
        Initialize CorruptEntryError.

        Args:
            key: Logical cache key of the entry
            reason: What was wrong with it
        """
        self.key = key
        self.reason = reason
        super().__init__(f"Corrupted cache entry '{key}': {reason}")


class FetchError(NewsCacheError):
    """
    Base exception for failures of a caller-supplied fetch.

    Attributes:
        transient: Whether retrying the same request may succeed
    """

    transient: bool = False

    def __init__(self, message: str, transient: Optional[bool] = None) -> None:
        """
        Initialize FetchError.

        Args:
            message: Error description
            transient: Override the class default retry classification
        """
        if transient is not None:
            self.transient = transient
        super().__init__(message)


class NetworkError(FetchError):
    """
    Raised when the upstream could not be reached.

    Connection resets, DNS failures and 5xx responses belong here. These
    errors are retried with exponential backoff.

    Example:
        >>> raise NetworkError("connection reset by peer")
    """

    transient = True


class FetchTimeoutError(FetchError):
    """
    Raised when a fetch does not complete within its time budget.

    The awaited fetch is cancelled when the timeout fires. Counts as a
    transient failure.

    Example:
        >>> raise FetchTimeoutError(timeout_seconds=10)
    """

    transient = True

    def __init__(
        self,
        message: str = "Fetch timed out",
        timeout_seconds: float = 10.0,
    ) -> None:
        """
        Initialize FetchTimeoutError.

        Args:
            message: Error description
            timeout_seconds: Timeout duration that was exceeded
        """
        self.timeout_seconds = timeout_seconds
        super().__init__(f"{message} ({timeout_seconds}s)")


class ResponseShapeError(FetchError):
    """
    Raised when a fetch returned data of an unexpected shape.

    This is a non-transient error: retrying the same request would return
    the same payload, so it is counted as a failure without backoff.

    Example:
        >>> raise ResponseShapeError("expected a list of books", category="science")
    """

    transient = False

    def __init__(self, message: str, category: Optional[str] = None) -> None:
        """
        Initialize ResponseShapeError.

        Args:
            message: Error description
            category: Optional category or type whose payload was rejected
        """
        self.category = category

        if category:
            message = f"{category}: {message}"

        super().__init__(message)


class OfflineUnavailableError(NewsCacheError):
    """
    Raised when offline with no cached data and no fallback configured.

    This is the only cache-layer error that propagates to the original
    caller. The request has already been queued for replay when this is
    raised.

    Example:
        >>> raise OfflineUnavailableError("topStories")
    """

    def __init__(
        self,
        content_type: str,
        message: str = "No cached data available and device is offline",
    ) -> None:
        """
        Initialize OfflineUnavailableError.

        Args:
            content_type: Content type that was requested
            message: Error description
        """
        self.content_type = content_type
        super().__init__(f"{message} ({content_type})")


def is_transient(error: BaseException) -> bool:
    """
    Classify an error as transient (worth retrying) or not.

    Args:
        error: Exception raised by a fetch

    Returns:
        True for timeouts and network failures, False otherwise

    Example:
        >>> is_transient(NetworkError("reset"))
        True
        >>> is_transient(ResponseShapeError("not a list"))
        False
    """
    if isinstance(error, FetchError):
        return error.transient

    return isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError, OSError))
