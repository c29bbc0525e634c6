"""
Tests for the logging setup and timing helpers.
"""

import logging

import pytest

from HipoTrack.core.logging import (
    ColoredFormatter,
    LogConfig,
    auto_configure,
    configure_logging,
    get_logging_manager,
)
from HipoTrack.core.logging.utils import LogTimer, timed


class TestLoggingManager:
    """Tests for handler management."""

    def test_reconfigure_replaces_handlers(self, tmp_path):
        """Configuring twice does not stack handlers."""
        config = LogConfig(level="INFO", log_dir=str(tmp_path), console_output=True, file_output=True)
        configure_logging(config)
        configure_logging(config)

        manager = get_logging_manager()
        assert len(manager._handlers) == 3
        assert manager.config is config
        assert (tmp_path / "hipotrack.log").exists()

        configure_logging(LogConfig(level="WARNING", console_output=False, file_output=False))
        assert manager._handlers == []

    def test_auto_configure_testing(self):
        """Short environment names select a preset."""
        auto_configure("test")
        manager = get_logging_manager()
        assert manager.config.file_output is False
        assert logging.getLogger("websockets").level == logging.ERROR

    def test_colored_formatter_restores_level(self):
        """Coloring does not leak into the shared record."""
        record = logging.LogRecord("x", logging.WARNING, __file__, 1, "careful", None, None)
        formatter = ColoredFormatter("%(levelname)s %(message)s", use_colors=True)
        formatter.format(record)
        assert record.levelname == "WARNING"

    def test_set_level_keeps_error_file(self, tmp_path):
        """Changing the level leaves the errors-only file at ERROR."""
        configure_logging(LogConfig(level="INFO", log_dir=str(tmp_path), console_output=False, file_output=True))
        manager = get_logging_manager()

        manager.set_level("DEBUG")

        assert logging.getLogger().level == logging.DEBUG
        assert sorted(h.level for h in manager._handlers) == [logging.DEBUG, logging.ERROR]


class TestTiming:
    """Tests for timing helpers."""

    def test_log_timer(self, caplog):
        """Completed operations are logged with their duration."""
        logger = logging.getLogger("hipotrack.test.timer")
        with caplog.at_level(logging.DEBUG, logger="hipotrack.test.timer"):
            with LogTimer("render", logger) as timer:
                pass
        assert timer.duration is not None
        assert "render" in caplog.text

    def test_log_timer_failure(self, caplog):
        """Failed operations are logged as warnings and the error propagates."""
        logger = logging.getLogger("hipotrack.test.timer")
        with caplog.at_level(logging.DEBUG, logger="hipotrack.test.timer"):
            with pytest.raises(ValueError):
                with LogTimer("render", logger):
                    raise ValueError("bad row")
        assert caplog.records[-1].levelno == logging.WARNING

    @pytest.mark.asyncio
    async def test_timed_coroutine(self):
        """The decorator keeps coroutine functions awaitable."""
        @timed("fetch")
        async def fetch(value):
            return value * 2

        assert await fetch(21) == 42
        assert fetch.__name__ == "fetch"
