"""Unit tests for the run-level circuit breaker."""

import pytest

from newscache.prefetch.breaker import RunCircuitBreaker


class TestRunCircuitBreaker:
    """Test suite for RunCircuitBreaker state transitions."""

    @pytest.fixture
    def breaker(self, clock):
        return RunCircuitBreaker(clock, failure_threshold=5, cooldown=1800)

    def test_starts_closed(self, breaker):
        assert breaker.allow_run() is True
        assert breaker.state().open is False
        assert breaker.state().consecutive_failures == 0

    def test_opens_after_threshold(self, breaker, clock):
        """Test five consecutive failing runs open the breaker."""
        for _ in range(4):
            breaker.record_run(successful=1, failed=4)
        assert breaker.is_open is False

        breaker.record_run(successful=0, failed=5)

        state = breaker.state()
        assert state.open is True
        assert state.consecutive_failures == 5
        assert state.opened_at == clock.now()
        assert breaker.allow_run() is False

    def test_non_failing_run_resets_counter(self, breaker):
        """Test a tie is not a failing run."""
        breaker.record_run(successful=0, failed=3)
        breaker.record_run(successful=0, failed=3)

        breaker.record_run(successful=2, failed=2)

        assert breaker.state().consecutive_failures == 0

    def test_resets_after_cooldown(self, breaker, clock):
        for _ in range(5):
            breaker.record_run(successful=0, failed=1)

        clock.advance(1799)
        assert breaker.allow_run() is False

        clock.advance(1)
        assert breaker.allow_run() is True

        state = breaker.state()
        assert state.open is False
        assert state.consecutive_failures == 0
        assert state.opened_at is None

    def test_invalid_threshold(self, clock):
        with pytest.raises(ValueError):
            RunCircuitBreaker(clock, failure_threshold=0)
