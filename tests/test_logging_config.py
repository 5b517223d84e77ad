# tests/test_logging_config.py
"""
Tests for the livepreview.logging_config module.

Covers the LoggingManager singleton, the display filter used in quiet
mode, file rotation settings and component log levels.
"""

import logging
from logging.handlers import RotatingFileHandler

from livepreview.config import LoggingConfig
from livepreview.logging_config import (
    DisplayFilter,
    LoggingManager,
    configure_logging,
    log_display,
    set_console_level,
)


def _record(level=logging.INFO, display=False) -> logging.LogRecord:
    record = logging.LogRecord("livepreview.test", level, __file__, 1, "msg", None, None)
    if display:
        record.display = True
    return record


class TestDisplayFilter:
    def test_everything_passes_when_console_enabled(self):
        assert DisplayFilter(console_globally_enabled=True).filter(_record())

    def test_quiet_mode_passes_display_records_only(self):
        log_filter = DisplayFilter(console_globally_enabled=False)

        assert not log_filter.filter(_record())
        assert log_filter.filter(_record(display=True))

    def test_quiet_mode_respects_min_level(self):
        log_filter = DisplayFilter(console_globally_enabled=False, display_min_level=logging.WARNING)

        assert not log_filter.filter(_record(logging.INFO, display=True))
        assert log_filter.filter(_record(logging.ERROR, display=True))


class TestLoggingManager:
    def test_singleton(self, reset_logging):
        assert LoggingManager() is LoggingManager.get_instance()

    def test_console_handler_installed(self, reset_logging):
        path = configure_logging(LoggingConfig(console_level="WARNING"))

        target = logging.getLogger("livepreview")
        assert path is None
        assert LoggingManager.is_configured()
        assert target.propagate is False
        handlers = [h for h in target.handlers if isinstance(h, logging.StreamHandler)]
        assert len(handlers) == 1
        assert handlers[0].level == logging.WARNING

    def test_second_call_is_noop_without_force(self, reset_logging):
        configure_logging()
        configure_logging()

        assert len(logging.getLogger("livepreview").handlers) == 1

    def test_force_reconfigure_replaces_handlers(self, reset_logging):
        configure_logging({"console_level": "INFO"})
        configure_logging({"console_level": "ERROR"}, force_reconfigure=True)

        handlers = logging.getLogger("livepreview").handlers
        assert len(handlers) == 1
        assert handlers[0].level == logging.ERROR

    def test_file_handler(self, reset_logging, tmp_path):
        log_file = tmp_path / "logs" / "livepreview.log"

        path = configure_logging(
            {
                "file_enabled": True,
                "file_path": str(log_file),
                "rotation_max_bytes": 1024,
                "rotation_backup_count": 2,
            }
        )

        assert path == log_file
        assert LoggingManager.get_log_file_path() == log_file
        file_handlers = [
            h for h in logging.getLogger("livepreview").handlers if isinstance(h, RotatingFileHandler)
        ]
        assert len(file_handlers) == 1
        assert file_handlers[0].maxBytes == 1024
        assert file_handlers[0].backupCount == 2

        logging.getLogger("livepreview.health").info("Preview ready")
        file_handlers[0].flush()
        assert "Preview ready" in log_file.read_text()

    def test_component_levels(self, reset_logging):
        configure_logging({"components": {"docker": "ERROR"}})

        assert logging.getLogger("docker").level == logging.ERROR

    def test_set_console_level(self, reset_logging):
        configure_logging()

        set_console_level("DEBUG")

        assert logging.getLogger("livepreview").handlers[0].level == logging.DEBUG

    def test_reset_restores_propagation(self, reset_logging):
        configure_logging()

        LoggingManager.reset()

        target = logging.getLogger("livepreview")
        assert target.propagate is True
        assert target.handlers == []
        assert not LoggingManager.is_configured()


class TestLogDisplay:
    def test_sets_display_flag(self, reset_logging, caplog):
        logger = logging.getLogger("livepreview.test")

        with caplog.at_level(logging.INFO, logger="livepreview.test"):
            log_display(logger, logging.INFO, "Preview ready at %s", "http://localhost:4000")

        record = caplog.records[-1]
        assert record.display is True
        assert record.getMessage() == "Preview ready at http://localhost:4000"

    def test_merges_extra(self, reset_logging, caplog):
        logger = logging.getLogger("livepreview.test")

        with caplog.at_level(logging.INFO, logger="livepreview.test"):
            log_display(logger, logging.INFO, "hello", extra={"project_id": "p1"})

        record = caplog.records[-1]
        assert record.display is True
        assert record.project_id == "p1"

    def test_quiet_console_shows_display_only(self, reset_logging, capsys):
        configure_logging({"console_enabled": False})
        logger = logging.getLogger("livepreview.test")

        logger.info("internal detail")
        log_display(logger, logging.INFO, "Preview ready")

        err = capsys.readouterr().err
        assert "Preview ready" in err
        assert "internal detail" not in err
