"""Configuration loaded from environment variables.

Settings are plain pydantic models so they can also be constructed
directly in tests; ``Settings.from_env()`` is the production entry point.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field

from newscache.models import OfflineConfig
from newscache.prefetch.catalog import PrefetchConfig


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Top-level settings for the cache services."""

    redis_url: Optional[str] = Field(
        None,
        description="Durable store URL; an in-process store is used when unset",
    )
    log_level: str = "INFO"
    environment: str = "production"

    # Offline layer
    offline_queue_limit: int = Field(100, ge=1)
    max_offline_age: float = Field(24 * 60 * 60, ge=0)

    # Prefetch
    prefetch_enabled: bool = True
    prefetch_hour: int = Field(6, ge=0, le=23)
    prefetch_batch_size: int = Field(5, ge=1)

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from the process environment.

        Returns:
            Settings populated from REDIS_URL, LOG_LEVEL, ENVIRONMENT and
            the NEWSCACHE_* variables, falling back to defaults

        Example:
            >>> settings = Settings.from_env()
            >>> settings.prefetch_hour
            6
        """
        return cls(
            redis_url=os.getenv("REDIS_URL") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            environment=os.getenv("ENVIRONMENT", "production"),
            offline_queue_limit=int(os.getenv("NEWSCACHE_OFFLINE_QUEUE_LIMIT", "100")),
            max_offline_age=float(os.getenv("NEWSCACHE_MAX_OFFLINE_AGE", str(24 * 60 * 60))),
            prefetch_enabled=_env_bool("NEWSCACHE_PREFETCH_ENABLED", True),
            prefetch_hour=int(os.getenv("NEWSCACHE_PREFETCH_HOUR", "6")),
            prefetch_batch_size=int(os.getenv("NEWSCACHE_PREFETCH_BATCH_SIZE", "5")),
        )

    def offline_config(self) -> OfflineConfig:
        return OfflineConfig(max_offline_age=self.max_offline_age)

    def prefetch_config(self) -> PrefetchConfig:
        return PrefetchConfig(
            enabled=self.prefetch_enabled,
            run_hour=self.prefetch_hour,
            batch_size=self.prefetch_batch_size,
        )
