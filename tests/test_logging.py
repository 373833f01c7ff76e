"""
Tests for the logging configuration module.
"""

import logging
import os
import time
from unittest.mock import patch

import pytest

from exchange_sync.utils.logging import (
    CONSOLE_FORMAT,
    ROOT_LOGGER_NAME,
    VERBOSE_FORMAT,
    ColoredFormatter,
    cleanup_old_logs,
    get_log_file_path,
    get_log_level_from_env,
    get_logger,
    setup_logging,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Undo setup_logging() changes to the package logger."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


class TestLogLevelFromEnv:
    """Tests for environment-driven log levels."""

    def test_default_is_info(self):
        """Test INFO when nothing is set."""
        with patch.dict(os.environ, {}, clear=True):
            assert get_log_level_from_env() == logging.INFO

    def test_level_name(self):
        """Test EXCHANGE_SYNC_LOG_LEVEL names, case-insensitively."""
        with patch.dict(os.environ, {"EXCHANGE_SYNC_LOG_LEVEL": "warn"}, clear=True):
            assert get_log_level_from_env() == logging.WARNING

    def test_unknown_level_falls_back(self):
        """Test an unknown level name means INFO."""
        with patch.dict(os.environ, {"EXCHANGE_SYNC_LOG_LEVEL": "LOUD"}, clear=True):
            assert get_log_level_from_env() == logging.INFO

    def test_debug_flag_wins(self):
        """Test EXCHANGE_SYNC_DEBUG overrides the level name."""
        env = {"EXCHANGE_SYNC_DEBUG": "true", "EXCHANGE_SYNC_LOG_LEVEL": "ERROR"}
        with patch.dict(os.environ, env, clear=True):
            assert get_log_level_from_env() == logging.DEBUG


class TestLogFilePath:
    """Tests for log file resolution."""

    def test_disabled_by_env(self, tmp_path):
        """Test EXCHANGE_SYNC_LOG_FILE=none disables the file."""
        assert get_log_file_path(tmp_path) is None

    def test_explicit_path_from_env(self, tmp_path, monkeypatch):
        """Test an explicit file from the environment."""
        target = tmp_path / "custom.log"
        monkeypatch.setenv("EXCHANGE_SYNC_LOG_FILE", str(target))
        assert get_log_file_path() == target

    def test_dated_file_in_log_dir(self, tmp_path, monkeypatch):
        """Test the dated default file name."""
        monkeypatch.delenv("EXCHANGE_SYNC_LOG_FILE")
        path = get_log_file_path(tmp_path)
        assert path.parent == tmp_path
        assert path.name.startswith("exchange_sync_")
        assert path.suffix == ".log"


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_console_only(self):
        """Test console handler with the short format."""
        logger = setup_logging(level=logging.WARNING, use_colors=False)

        assert logger.name == ROOT_LOGGER_NAME
        assert logger.level == logging.WARNING
        assert not logger.propagate
        assert len(logger.handlers) == 1
        assert logger.handlers[0].formatter._fmt == CONSOLE_FORMAT

    def test_verbose_forces_debug(self):
        """Test verbose selects DEBUG and the verbose format."""
        logger = setup_logging(level=logging.ERROR, verbose=True, use_colors=False)

        assert logger.level == logging.DEBUG
        assert logger.handlers[0].formatter._fmt == VERBOSE_FORMAT

    def test_file_handler_captures_debug(self, tmp_path):
        """Test the file handler records DEBUG output."""
        log_file = tmp_path / "logs" / "run.log"
        logger = setup_logging(level=logging.DEBUG, log_file=log_file)

        get_logger("sync.engine").debug("engine detail")
        for handler in logger.handlers:
            handler.flush()
        assert "engine detail" in log_file.read_text()

        file_handler = logger.handlers[1]
        assert isinstance(file_handler, logging.FileHandler)
        assert file_handler.level == logging.DEBUG

    def test_repeated_setup_does_not_duplicate(self):
        """Test handlers are replaced, not stacked."""
        setup_logging(use_colors=False)
        logger = setup_logging(use_colors=False)
        assert len(logger.handlers) == 1


class TestColoredFormatter:
    """Tests for ColoredFormatter."""

    def make_record(self):
        return logging.LogRecord(
            "exchange_sync.test", logging.ERROR, __file__, 1, "boom", None, None
        )

    def test_no_colors_without_tty(self):
        """Test plain output when stdout is not a terminal."""
        with patch("sys.stdout.isatty", return_value=False):
            formatter = ColoredFormatter("%(levelname)s: %(message)s")
        assert formatter.format(self.make_record()) == "ERROR: boom"

    def test_colors_on_tty(self, monkeypatch):
        """Test ANSI codes on a color terminal, without touching the record."""
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "xterm-256color")
        with patch("sys.stdout.isatty", return_value=True):
            formatter = ColoredFormatter("%(levelname)s: %(message)s")

        record = self.make_record()
        text = formatter.format(record)

        assert "\033[31m" in text
        assert record.levelname == "ERROR"
        assert record.msg == "boom"

    def test_no_color_env(self, monkeypatch):
        """Test NO_COLOR disables colors on a terminal."""
        monkeypatch.setenv("NO_COLOR", "1")
        with patch("sys.stdout.isatty", return_value=True):
            formatter = ColoredFormatter("%(message)s")
        assert not formatter.use_colors


class TestCleanupOldLogs:
    """Tests for log retention."""

    def make_logs(self, directory, count):
        paths = []
        for index in range(count):
            path = directory / f"exchange_sync_2024010{index}.log"
            path.write_text("x")
            stamp = time.time() - (count - index) * 60
            os.utime(path, (stamp, stamp))
            paths.append(path)
        return paths

    def test_keeps_newest(self, tmp_path):
        """Test only the newest keep_count files survive."""
        paths = self.make_logs(tmp_path, 5)
        (tmp_path / "other.log").write_text("keep me")

        assert cleanup_old_logs(tmp_path, keep_count=2) == 3

        remaining = sorted(p.name for p in tmp_path.iterdir())
        assert remaining == sorted([paths[3].name, paths[4].name, "other.log"])

    def test_zero_disables_cleanup(self, tmp_path):
        """Test keep_count=0 deletes nothing."""
        self.make_logs(tmp_path, 3)
        assert cleanup_old_logs(tmp_path, keep_count=0) == 0

    def test_missing_directory(self, tmp_path):
        """Test a missing directory is not an error."""
        assert cleanup_old_logs(tmp_path / "absent") == 0


class TestGetLogger:
    """Tests for get_logger()."""

    def test_prefixes_name(self):
        """Test names are placed under the package logger."""
        assert get_logger("custom").name == "exchange_sync.custom"
        assert get_logger("exchange_sync.sync").name == "exchange_sync.sync"
