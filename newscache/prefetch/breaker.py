"""Run-level circuit breaker for the daily prefetch.

Unlike a per-call breaker, this one counts whole runs: a run is failing
when more categories failed than succeeded. Consecutive failing runs open
the breaker; after the cooldown the next check closes it again.
"""

from datetime import datetime, timedelta
from typing import Optional

import structlog

from newscache.environment import Clock
from newscache.models import CircuitBreakerState

logger = structlog.get_logger(__name__)


class RunCircuitBreaker:
    """
    Circuit breaker evaluated once per prefetch run.

    Attributes:
        failure_threshold: Consecutive failing runs that open the breaker
        cooldown: Seconds the breaker stays open
    """

    def __init__(self, clock: Clock, failure_threshold: int = 5, cooldown: float = 30 * 60) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")

        self.failure_threshold = failure_threshold
        self.cooldown = timedelta(seconds=cooldown)
        self._clock = clock
        self._consecutive_failures = 0
        self._open = False
        self._opened_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self._open

    def allow_run(self) -> bool:
        """
        Check whether a run may start, resetting after the cooldown.

        Returns:
            False while open and the cooldown has not elapsed
        """
        if not self._open:
            return True

        elapsed = self._clock.now() - self._opened_at
        if elapsed >= self.cooldown:
            logger.info(
                "prefetch_circuit_breaker_reset",
                open_seconds=round(elapsed.total_seconds(), 2),
            )
            self.reset()
            return True

        logger.warning(
            "prefetch_circuit_breaker_open",
            consecutive_failures=self._consecutive_failures,
            retry_in_seconds=round((self.cooldown - elapsed).total_seconds(), 2),
        )
        return False

    def record_run(self, successful: int, failed: int) -> None:
        """Record the outcome of a completed run."""
        if failed <= successful:
            self._consecutive_failures = 0
            return

        self._consecutive_failures += 1
        logger.warning(
            "prefetch_run_failing",
            consecutive_failures=self._consecutive_failures,
            failure_threshold=self.failure_threshold,
        )

        if not self._open and self._consecutive_failures >= self.failure_threshold:
            self._open = True
            self._opened_at = self._clock.now()
            logger.error(
                "prefetch_circuit_breaker_opened",
                consecutive_failures=self._consecutive_failures,
                cooldown_seconds=self.cooldown.total_seconds(),
            )

    def reset(self) -> None:
        self._open = False
        self._opened_at = None
        self._consecutive_failures = 0

    def state(self) -> CircuitBreakerState:
        return CircuitBreakerState(
            consecutive_failures=self._consecutive_failures,
            open=self._open,
            opened_at=self._opened_at,
        )
