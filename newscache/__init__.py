"""Offline-first two-tier cache for a news reading client."""

__version__ = "1.0.0"
