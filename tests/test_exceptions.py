"""
Unit tests for the cache layer exceptions.

Tests the exception hierarchy defined in newscache/exceptions.py.
"""

import asyncio

import pytest

from newscache.exceptions import (
    CorruptEntryError,
    FetchError,
    FetchTimeoutError,
    NetworkError,
    NewsCacheError,
    OfflineUnavailableError,
    ResponseShapeError,
    StorageError,
    is_transient,
)


class TestNewsCacheError:
    """Test base NewsCacheError exception."""

    def test_basic_initialization(self):
        error = NewsCacheError("Test error")
        assert str(error) == "Test error"
        assert error.message == "Test error"

    @pytest.mark.parametrize(
        "error",
        [
            StorageError("set failed"),
            CorruptEntryError("books:abc", "incomplete entry"),
            NetworkError("reset"),
            FetchTimeoutError(),
            ResponseShapeError("not a list"),
            OfflineUnavailableError("topStories"),
        ],
    )
    def test_hierarchy(self, error):
        """Test every error can be caught as NewsCacheError."""
        assert isinstance(error, NewsCacheError)


class TestStorageError:
    def test_with_key(self):
        error = StorageError("Storage quota exceeded", key="cache:books:abc")
        assert error.key == "cache:books:abc"
        assert "key=cache:books:abc" in str(error)


class TestCorruptEntryError:
    def test_fields(self):
        error = CorruptEntryError("books:abc", "unparseable data")
        assert error.key == "books:abc"
        assert error.reason == "unparseable data"
        assert "books:abc" in str(error)


class TestFetchErrors:
    """Test fetch error classification."""

    def test_network_error_is_transient(self):
        assert NetworkError("reset").transient is True

    def test_timeout_error(self):
        error = FetchTimeoutError(timeout_seconds=10)
        assert error.transient is True
        assert error.timeout_seconds == 10
        assert "10" in str(error)

    def test_shape_error_is_not_transient(self):
        error = ResponseShapeError("expected a list", category="science")
        assert error.transient is False
        assert error.category == "science"
        assert str(error).startswith("science:")

    def test_transient_override(self):
        assert FetchError("upstream 503", transient=True).transient is True
        assert FetchError("upstream 400").transient is False


class TestOfflineUnavailableError:
    def test_content_type(self):
        error = OfflineUnavailableError("topStories")
        assert error.content_type == "topStories"
        assert "offline" in str(error).lower()


class TestIsTransient:
    @pytest.mark.parametrize(
        "error,expected",
        [
            (NetworkError("reset"), True),
            (FetchTimeoutError(), True),
            (ResponseShapeError("bad"), False),
            (asyncio.TimeoutError(), True),
            (ConnectionResetError(), True),
            (OSError("unreachable"), True),
            (ValueError("bad payload"), False),
            (KeyError("results"), False),
        ],
    )
    def test_classification(self, error, expected):
        assert is_transient(error) is expected
