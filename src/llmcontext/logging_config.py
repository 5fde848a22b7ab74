# src/llmcontext/logging_config.py
"""
Logging setup for applications embedding llmcontext.

Library modules only ever call ``logging.getLogger(__name__)``; this module is
for the host application, which decides where records go.

Key concepts:

    **Display filter**: When ``console_enabled=False`` (the default), the
    console handler still exists but only passes records that carry
    ``extra={"display": True}``.  Operator-facing messages such as
    "Offloaded 3 tool results for telegram:42" reach the console while
    per-query scoring chatter stays in the log file.

    **File modes**: ``file_mode="per_run"`` writes a new timestamped file per
    process; ``file_mode="single"`` appends to one file rotated by size.

Usage:
    from llmcontext.logging_config import configure_logging, log_display

    configure_logging(app_name="chatbridge", config=config.logging.model_dump())

    logger = logging.getLogger("chatbridge.startup")
    log_display(logger, logging.INFO, "Layered context ready for %d sessions", n)
"""

import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

DEFAULT_LOGGING_CONFIG: dict[str, Any] = {
    "console_enabled": False,
    "console_level": "WARNING",
    "console_format": "%(levelname)s - %(message)s",
    "file_enabled": False,
    "file_level": "DEBUG",
    "file_directory": "~/.local/share/llmcontext/logs",
    "file_mode": "per_run",
    "file_name_pattern": "{app}_{timestamp:%Y%m%d_%H%M%S}.log",
    "file_single_name": "{app}.log",
    "file_format": "%(asctime)s [%(levelname)-8s] %(name)-30s - %(message)s (%(filename)s:%(lineno)d)",
    "rotation_max_bytes": 10 * 1024 * 1024,
    "rotation_backup_count": 5,
    "display_min_level": "INFO",
    "components": {
        "llmcontext": "INFO",
        "openai": "WARNING",
        "httpx": "WARNING",
        "httpcore": "WARNING",
        "asyncio": "WARNING",
    },
}


def _resolve_level(value: str | int, default: int) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value).upper())
    return level if isinstance(level, int) else default


class DisplayFilter(logging.Filter):
    """Controls which log records pass through to the console handler.

    Behavior matrix::

        +------------------------+--------------+-----------------+
        | console_global         | display=True | display=False/  |
        |                        |              | absent          |
        +------------------------+--------------+-----------------+
        | True  (verbose)        | PASS         | PASS            |
        | False (default/quiet)  | PASS*        | BLOCK           |
        +------------------------+--------------+-----------------+

        * subject to display_min_level
    """

    def __init__(
        self,
        console_globally_enabled: bool = False,
        display_min_level: int = logging.INFO,
    ) -> None:
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
    Process-wide owner of the handlers installed by :func:`configure_logging`.

    Configuration happens once unless ``force_reconfigure`` is passed, so
    repeated engine construction in a host application does not stack handlers.
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
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def is_configured(cls) -> bool:
        return cls._configured

    @classmethod
    def get_log_file_path(cls) -> Path | None:
        return cls._log_file_path

    def configure(
        self,
        app_name: str = "llmcontext",
        config: dict[str, Any] | None = None,
        force_reconfigure: bool = False,
    ) -> Path | None:
        """
        Install console and file handlers on the root logger.

        Args:
            app_name: Used in log file names.
            config: Logging section (see ``DEFAULT_LOGGING_CONFIG``); missing
                keys fall back to the defaults.
            force_reconfigure: Replace handlers even if already configured.

        Returns:
            Path of the log file, or ``None`` when file logging is off.
        """
        if LoggingManager._configured and not force_reconfigure:
            return LoggingManager._log_file_path

        log_config = {**DEFAULT_LOGGING_CONFIG, **(config or {})}

        root_logger = logging.getLogger()
        for handler in (self._console_handler, self._file_handler):
            if handler is not None:
                root_logger.removeHandler(handler)
                handler.close()
        self._console_handler = None
        self._file_handler = None
        root_logger.setLevel(logging.DEBUG)

        console_globally_enabled = bool(log_config.get("console_enabled", False))
        display_filter = DisplayFilter(
            console_globally_enabled=console_globally_enabled,
            display_min_level=_resolve_level(log_config.get("display_min_level", "INFO"), logging.INFO),
        )
        console_handler = logging.StreamHandler(sys.stderr)
        if console_globally_enabled:
            console_handler.setLevel(_resolve_level(log_config.get("console_level", "WARNING"), logging.WARNING))
        else:
            # Filter is the only gate when the console is "off".
            console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(logging.Formatter(log_config["console_format"]))
        console_handler.addFilter(display_filter)
        root_logger.addHandler(console_handler)
        self._console_handler = console_handler

        log_file_path: Path | None = None
        if log_config.get("file_enabled", False):
            self._file_handler, log_file_path = self._create_file_handler(log_config, app_name)
            if self._file_handler is not None:
                root_logger.addHandler(self._file_handler)

        for component_name, level_str in log_config.get("components", {}).items():
            logging.getLogger(component_name).setLevel(_resolve_level(level_str, logging.INFO))

        LoggingManager._configured = True
        LoggingManager._log_file_path = log_file_path
        if log_file_path:
            logging.getLogger(__name__).debug("Logging configured. Log file: %s", log_file_path)
        return log_file_path

    def _create_file_handler(
        self, config: dict[str, Any], app_name: str
    ) -> tuple[logging.Handler | None, Path | None]:
        log_dir = Path(os.path.expanduser(config["file_directory"]))
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            sys.stderr.write(f"Warning: Cannot create log directory {log_dir}: {e}\n")
            return None, None

        try:
            if config.get("file_mode", "per_run") == "single":
                log_file_path = log_dir / config["file_single_name"].format(app=app_name)
                handler: logging.Handler = RotatingFileHandler(
                    log_file_path,
                    maxBytes=config["rotation_max_bytes"],
                    backupCount=config["rotation_backup_count"],
                    encoding="utf-8",
                )
            else:
                filename = config["file_name_pattern"].format(app=app_name, timestamp=datetime.now())
                log_file_path = log_dir / filename
                handler = logging.FileHandler(log_file_path, encoding="utf-8")
        except (KeyError, ValueError) as e:
            sys.stderr.write(f"Warning: Invalid log file name pattern: {e}\n")
            return None, None
        except OSError as e:
            sys.stderr.write(f"Warning: Cannot create log file in {log_dir}: {e}\n")
            return None, None

        handler.setLevel(_resolve_level(config.get("file_level", "DEBUG"), logging.DEBUG))
        handler.setFormatter(logging.Formatter(config["file_format"]))
        return handler, log_file_path

    def set_component_level(self, component: str, level: str | int) -> None:
        logging.getLogger(component).setLevel(_resolve_level(level, logging.INFO))


def configure_logging(
    app_name: str = "llmcontext",
    config: dict[str, Any] | None = None,
    force_reconfigure: bool = False,
) -> Path | None:
    """
    Configure logging for the host application.

    Example:
        configure_logging(
            app_name="chatbridge",
            config={"console_enabled": True, "console_level": "DEBUG"},
        )
    """
    return LoggingManager.get_instance().configure(
        app_name=app_name,
        config=config,
        force_reconfigure=force_reconfigure,
    )


def log_display(
    logger: logging.Logger,
    level: int,
    msg: str,
    *args: Any,
    **kwargs: Any,
) -> None:
    """Log a message that also appears on console even in quiet mode.

    The ``extra`` kwarg is merged, not replaced, so callers can still attach
    their own structured fields.
    """
    extra = kwargs.pop("extra", None) or {}
    extra["display"] = True
    kwargs["extra"] = extra
    logger.log(level, msg, *args, **kwargs)


def get_log_file_path() -> Path | None:
    """Get the current log file path."""
    return LoggingManager.get_log_file_path()


def set_component_level(component: str, level: str | int) -> None:
    """Change a specific component's log level at runtime."""
    LoggingManager.get_instance().set_component_level(component, level)
