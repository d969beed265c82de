"""
Structured Logging for perf-telemetry

JSON-structured logging with keyword fields, environment-driven levels and
optional rotating file output.

Usage:
    from perf_telemetry.logging_config import get_logger

    logger = get_logger("perf_telemetry.engine")
    logger.info("Sampling started", interval_s=1.0)

Environment Variables:
    LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (default: INFO)
    LOG_DIR: Log file directory (default: ~/.perf_telemetry/logs)
    LOG_TO_CONSOLE: true/false (default: true)
    LOG_TO_FILE: true/false (default: false)
    LOG_MAX_SIZE_MB: Max size per log file (default: 10)
    LOG_BACKUP_COUNT: Rotated files to keep (default: 3)
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any


# =============================================================================
# Configuration
# =============================================================================

DEFAULT_CONFIG = {
    "log_level": "INFO",
    "log_dir": str(Path.home() / ".perf_telemetry" / "logs"),
    "log_to_console": True,
    "log_to_file": False,
    "log_max_size_mb": 10,
    "log_backup_count": 3,
    "pretty_json": False,
}

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Attributes every LogRecord carries; anything else came in through `extra`.
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message",
))

_config: dict[str, Any] = {}
_loggers: dict[str, "StructuredLogger"] = {}


# =============================================================================
# JSON Formatter
# =============================================================================

class StructuredJSONFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per record."""

    def __init__(self, component: str = "", pretty: bool = False):
        super().__init__()
        self.component = component
        self.pretty = pretty

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": self.component or record.name,
            "function": record.funcName,
            "message": record.getMessage(),
            "logger": record.name,
        }

        if record.lineno > 0:
            log_data["line"] = record.lineno

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = self._serialize_value(value)

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            log_data["exception"] = {
                "type": exc_type.__name__ if exc_type else "Unknown",
                "message": str(exc_value) if exc_value else "",
                "traceback": self.formatException(record.exc_info),
            }

        if self.pretty:
            return json.dumps(log_data, indent=2, default=str)
        return json.dumps(log_data, default=str)

    def _serialize_value(self, value: Any) -> Any:
        """Serialize complex values to JSON-compatible types."""
        if value is None or isinstance(value, (str, int, float, bool)):
            return value
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, Exception):
            return str(value)
        if isinstance(value, (list, tuple)):
            return [self._serialize_value(v) for v in value]
        if isinstance(value, dict):
            return {str(k): self._serialize_value(v) for k, v in value.items()}
        return str(value)


# =============================================================================
# Structured Logger
# =============================================================================

class StructuredLogger:
    """Logger wrapper that turns keyword arguments into JSON fields."""

    def __init__(
        self,
        name: str,
        log_level: int = logging.INFO,
        log_dir: str = "",
    ):
        self.name = name
        self._logger = logging.getLogger(name)
        self.configure(log_level, log_dir)

    def configure(self, log_level: int = logging.INFO, log_dir: str = "") -> None:
        """(Re)build handlers from the active logging configuration."""
        name = self.name
        self._logger.setLevel(log_level)
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()

        config = _config or DEFAULT_CONFIG
        log_dir = log_dir or config.get("log_dir", DEFAULT_CONFIG["log_dir"])

        if config.get("log_to_console", DEFAULT_CONFIG["log_to_console"]):
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(
                StructuredJSONFormatter(
                    component=name,
                    pretty=config.get("pretty_json", False),
                )
            )
            self._logger.addHandler(console_handler)

        if config.get("log_to_file", DEFAULT_CONFIG["log_to_file"]):
            log_path = Path(log_dir)
            log_path.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_path / f"{name}.log",
                maxBytes=int(config.get("log_max_size_mb", 10)) * 1024 * 1024,
                backupCount=int(config.get("log_backup_count", 3)),
                encoding="utf-8",
            )
            file_handler.setFormatter(StructuredJSONFormatter(component=name))
            self._logger.addHandler(file_handler)

    @property
    def logger(self) -> logging.Logger:
        """Underlying stdlib logger (for handlers and caplog)."""
        return self._logger

    def _log(self, level: int, message: str, exc_info: bool | None = None, **fields):
        self._logger.log(level, message, exc_info=exc_info, extra=fields)

    def debug(self, message: str, **fields):
        """DEBUG: per-source collection failures, flow tracing."""
        self._log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields):
        """INFO: lifecycle and state changes."""
        self._log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields):
        """WARNING: absorbed misuse, alerts, degraded sampling."""
        self._log(logging.WARNING, message, **fields)

    def error(self, message: str, exc_info: bool | None = None, **fields):
        """ERROR: failures that do not stop the engine."""
        self._log(logging.ERROR, message, exc_info=exc_info, **fields)

    def exception(self, message: str, **fields):
        """Log with the active exception's traceback."""
        self._log(logging.ERROR, message, exc_info=True, **fields)

    def measure_time(self, operation: str):
        """Context manager that logs an operation's duration.

        Usage:
            with logger.measure_time("export_report"):
                write_report()
        """
        return _MeasureTime(self, operation)


class _MeasureTime:
    """Context manager for measuring operation duration."""

    def __init__(self, logger: StructuredLogger, operation: str):
        self.logger = logger
        self.operation = operation
        self.start_time: float | None = None
        self.duration_ms: float | None = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000
        if exc_type:
            self.logger.error(
                f"{self.operation} failed",
                duration_ms=round(self.duration_ms, 2),
                operation=self.operation,
                error=str(exc_val),
            )
        else:
            self.logger.debug(
                f"{self.operation} completed",
                duration_ms=round(self.duration_ms, 2),
                operation=self.operation,
            )
        return False


# =============================================================================
# Public API
# =============================================================================

def _env_flag(name: str, default: bool) -> bool:
    return os.environ.get(name, str(default)).lower() == "true"


def setup_logging(
    log_level: str | None = None,
    log_dir: str | None = None,
    log_to_console: bool | None = None,
    log_to_file: bool | None = None,
    pretty_json: bool = False,
) -> dict[str, Any]:
    """Initialize the logging system.

    Explicit arguments win over environment variables, which win over
    defaults. Loggers created before this call are reconfigured in place.

    Returns:
        The effective configuration dict
    """
    global _config

    _config = {
        "log_level": (log_level or os.environ.get("LOG_LEVEL", DEFAULT_CONFIG["log_level"])).upper(),
        "log_dir": log_dir or os.environ.get("LOG_DIR", DEFAULT_CONFIG["log_dir"]),
        "log_to_console": log_to_console if log_to_console is not None else
            _env_flag("LOG_TO_CONSOLE", DEFAULT_CONFIG["log_to_console"]),
        "log_to_file": log_to_file if log_to_file is not None else
            _env_flag("LOG_TO_FILE", DEFAULT_CONFIG["log_to_file"]),
        "log_max_size_mb": int(os.environ.get("LOG_MAX_SIZE_MB", DEFAULT_CONFIG["log_max_size_mb"])),
        "log_backup_count": int(os.environ.get("LOG_BACKUP_COUNT", DEFAULT_CONFIG["log_backup_count"])),
        "pretty_json": pretty_json,
    }
    level = LOG_LEVELS.get(_config["log_level"], logging.INFO)
    for logger in _loggers.values():
        logger.configure(level, _config["log_dir"])
    return _config


def get_logger(name: str, log_level: str | None = None) -> StructuredLogger:
    """Get or create a structured logger.

    Args:
        name: Logger name (usually the module name)
        log_level: Override log level

    Returns:
        StructuredLogger instance
    """
    if name in _loggers:
        return _loggers[name]

    if not _config:
        setup_logging()

    level_name = (log_level or _config.get("log_level", "INFO")).upper()
    logger = StructuredLogger(
        name=name,
        log_level=LOG_LEVELS.get(level_name, logging.INFO),
        log_dir=_config.get("log_dir", ""),
    )
    _loggers[name] = logger
    return logger
