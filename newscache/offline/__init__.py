"""Offline resilience layer: cache fallbacks, offline queue and replay."""

from newscache.offline.manager import (
    CriticalQuery,
    OfflineResilienceManager,
    QueuedOperation,
)

__all__ = [
    "OfflineResilienceManager",
    "QueuedOperation",
    "CriticalQuery",
]
