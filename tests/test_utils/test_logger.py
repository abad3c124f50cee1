"""Unit tests for logging helpers."""

from unittest.mock import MagicMock, patch

import structlog

from newscache.utils.logger import get_logger, log_prefetch_run, setup_logging


class TestLogger:
    """Test suite for structlog configuration helpers."""

    def test_setup_logging_configures_structlog(self):
        try:
            setup_logging(level="DEBUG", environment="development")

            assert structlog.is_configured()
            assert get_logger("newscache.test") is not None
        finally:
            # Cached loggers would otherwise keep this test's captured stdout
            structlog.reset_defaults()

    def test_log_prefetch_run_success(self):
        logger = MagicMock()

        with patch("newscache.utils.logger.get_logger", return_value=logger):
            log_prefetch_run(total=30, successful=28, failed=2, duration_ms=812.345)

        logger.info.assert_called_once()
        event, = logger.info.call_args[0]
        assert event == "prefetch_run_completed"
        assert logger.info.call_args[1]["duration_ms"] == 812.35
        logger.error.assert_not_called()

    def test_log_prefetch_run_failure(self):
        logger = MagicMock()

        with patch("newscache.utils.logger.get_logger", return_value=logger):
            log_prefetch_run(total=30, successful=10, failed=20, duration_ms=1.0, cached=10)

        logger.error.assert_called_once()
        assert logger.error.call_args[0][0] == "prefetch_run_failed"
        assert logger.error.call_args[1]["cached"] == 10
