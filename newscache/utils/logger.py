"""
Structured logging configuration using structlog.

Provides JSON-formatted logging with context processors for
timestamps and log levels, plus a helper for prefetch run summaries.
"""
import logging
import os
import sys
from typing import Any

import structlog


def setup_logging(level: str = "INFO", environment: str | None = None) -> None:
    """
    Configure structured logging with structlog.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        environment: "development" for colored console output; defaults to
            the ENVIRONMENT variable, then "production"

    Sets up:
        - JSON output format for production
        - Console output with colors for development
        - Context processors for timestamps and metadata
        - Integration with standard library logging
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    if environment is None:
        environment = os.getenv("ENVIRONMENT", "production")
    is_dev = environment == "development"

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if is_dev:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of calling module)

    Returns:
        Configured structlog logger instance

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("offline_request_queued", type="topStories")
    """
    return structlog.get_logger(name)


def log_prefetch_run(
    total: int,
    successful: int,
    failed: int,
    duration_ms: float,
    **extra: Any,
) -> None:
    """
    Log the outcome of one prefetch run in structured format.

    A run where more categories failed than succeeded is logged at
    error level, any other run at info level.

    Args:
        total: Number of categories in the catalog
        successful: Categories fetched and stored
        failed: Categories that exhausted their attempts
        duration_ms: Run duration in milliseconds
        **extra: Additional context to log

    Example:
        >>> log_prefetch_run(total=30, successful=28, failed=2, duration_ms=8123.4)
    """
    logger = get_logger("prefetch_run")

    log_data = {
        "total_categories": total,
        "successful": successful,
        "failed": failed,
        "duration_ms": round(duration_ms, 2),
        **extra,
    }

    if failed > successful:
        logger.error("prefetch_run_failed", **log_data)
    else:
        logger.info("prefetch_run_completed", **log_data)
