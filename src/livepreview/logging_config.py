# src/livepreview/logging_config.py
"""
Logging setup for live preview processes.

Key concepts:

    **Display filter**: When ``console_enabled=False`` the console handler
    still exists but only passes records that carry
    ``extra={"display": True}``. Operator-facing messages such as
    "Preview ready at http://localhost:4000" therefore reach stderr even
    in quiet mode, while the rest stays in the log file.

    **File rotation**: the optional file handler is a
    ``RotatingFileHandler`` with configurable size and backup count.

Usage:
    from livepreview.logging_config import configure_logging, log_display

    configure_logging(config.logging)

    logger = logging.getLogger("livepreview.health")
    log_display(logger, logging.INFO, "Preview ready at %s", url)
"""

import logging
import sys
from dataclasses import asdict
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from .config import LoggingConfig

CONSOLE_FORMAT = "%(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)-30s - %(message)s (%(filename)s:%(lineno)d)"


def _level(value: str | int, default: int) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(value.upper())
    return level if isinstance(level, int) else default


class DisplayFilter(logging.Filter):
    """
    Controls which records reach the console handler.

    With the console globally enabled everything passes and the handler
    level decides. Otherwise only ``display=True`` records at or above
    ``display_min_level`` pass.
    """

    def __init__(self, console_globally_enabled: bool = False, display_min_level: int = logging.INFO):
        super().__init__()
        self.console_globally_enabled = console_globally_enabled
        self.display_min_level = display_min_level

    def filter(self, record: logging.LogRecord) -> bool:
        if self.console_globally_enabled:
            return True
        if getattr(record, "display", False):
            return record.levelno >= self.display_min_level
        return False


class LoggingManager:
    """
    Singleton owning the handlers installed on the ``livepreview`` logger.

    Handlers go on the package logger rather than the root logger so that
    embedding applications keep control of their own logging.
    """

    _instance: Optional["LoggingManager"] = None
    _configured: bool = False
    _log_file_path: Path | None = None
    _console_handler: logging.Handler | None = None
    _file_handler: logging.Handler | None = None

    def __new__(cls) -> "LoggingManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def get_instance(cls) -> "LoggingManager":
        return cls()

    @classmethod
    def is_configured(cls) -> bool:
        return cls._configured

    @classmethod
    def get_log_file_path(cls) -> Path | None:
        return cls._log_file_path

    def configure(
        self,
        config: LoggingConfig | dict[str, Any] | None = None,
        logger_name: str = "livepreview",
        force_reconfigure: bool = False,
    ) -> Path | None:
        """
        Install console (and optionally file) handlers.

        Args:
            config: Logging settings; a dict is read like ``LoggingConfig``
            logger_name: Logger to attach handlers to
            force_reconfigure: Replace handlers installed by an earlier call

        Returns:
            Path of the log file, or None when file logging is off
        """
        if LoggingManager._configured and not force_reconfigure:
            return LoggingManager._log_file_path

        if config is None:
            settings = asdict(LoggingConfig())
        elif isinstance(config, LoggingConfig):
            settings = asdict(config)
        else:
            settings = {**asdict(LoggingConfig()), **config}

        target = logging.getLogger(logger_name)
        for handler in (LoggingManager._console_handler, LoggingManager._file_handler):
            if handler is not None:
                target.removeHandler(handler)
                handler.close()
        LoggingManager._console_handler = None
        LoggingManager._file_handler = None
        LoggingManager._log_file_path = None

        target.setLevel(logging.DEBUG)
        target.propagate = False

        console_enabled = bool(settings.get("console_enabled", True))
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        if console_enabled:
            console.setLevel(_level(settings.get("console_level", "INFO"), logging.INFO))
        else:
            # the filter is the only gate in quiet mode
            console.setLevel(logging.DEBUG)
        console.addFilter(
            DisplayFilter(
                console_globally_enabled=console_enabled,
                display_min_level=_level(settings.get("display_min_level", "INFO"), logging.INFO),
            )
        )
        target.addHandler(console)
        LoggingManager._console_handler = console

        if settings.get("file_enabled"):
            handler, path = self._create_file_handler(settings)
            if handler is not None:
                target.addHandler(handler)
                LoggingManager._file_handler = handler
                LoggingManager._log_file_path = path

        for component, level in (settings.get("components") or {}).items():
            logging.getLogger(component).setLevel(_level(level, logging.WARNING))

        LoggingManager._configured = True
        target.debug(f"Logging configured (file: {LoggingManager._log_file_path})")
        return LoggingManager._log_file_path

    def _create_file_handler(
        self, settings: dict[str, Any]
    ) -> tuple[logging.Handler | None, Path | None]:
        path = Path(settings.get("file_path") or LoggingConfig.file_path).expanduser()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(
                path,
                maxBytes=int(settings.get("rotation_max_bytes", 10 * 1024 * 1024)),
                backupCount=int(settings.get("rotation_backup_count", 5)),
                encoding="utf-8",
            )
        except OSError as e:
            sys.stderr.write(f"Warning: Cannot create log file {path}: {e}\n")
            return None, None

        handler.setLevel(_level(settings.get("file_level", "DEBUG"), logging.DEBUG))
        handler.setFormatter(logging.Formatter(FILE_FORMAT))
        return handler, path

    def set_console_level(self, level: str | int) -> None:
        if LoggingManager._console_handler is not None:
            LoggingManager._console_handler.setLevel(_level(level, logging.INFO))

    @classmethod
    def reset(cls) -> None:
        """Remove installed handlers and forget configuration."""
        target = logging.getLogger("livepreview")
        for handler in (cls._console_handler, cls._file_handler):
            if handler is not None:
                target.removeHandler(handler)
                handler.close()
        target.propagate = True
        cls._console_handler = None
        cls._file_handler = None
        cls._log_file_path = None
        cls._configured = False


def configure_logging(
    config: LoggingConfig | dict[str, Any] | None = None,
    force_reconfigure: bool = False,
) -> Path | None:
    """
    Configure logging for the live preview package.

    Example:
        configure_logging({"console_enabled": False, "file_enabled": True})
    """
    return LoggingManager.get_instance().configure(config, force_reconfigure=force_reconfigure)


def log_display(logger: logging.Logger, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
    """
    Log a message that also reaches the console in quiet mode.

    The ``extra`` kwarg is merged, not replaced.
    """
    extra = kwargs.pop("extra", None) or {}
    extra["display"] = True
    kwargs["extra"] = extra
    logger.log(level, msg, *args, **kwargs)


def set_console_level(level: str | int) -> None:
    LoggingManager.get_instance().set_console_level(level)
