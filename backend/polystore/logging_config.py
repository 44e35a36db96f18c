"""
Logging configuration for polystore.

Features:
- Log level from ``POLYSTORE_LOG_LEVEL`` or the loaded configuration
- Structured JSON output for files, colored human output for consoles
- Scoped operation context (component, operation, subject key, user)
  attached to every record emitted inside ``log_context``
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

MAX_FILE_SIZE = 100 * 1024 * 1024  # 100MB
DEFAULT_LOG_LEVEL = os.getenv("POLYSTORE_LOG_LEVEL", "INFO")

_current_log_level = DEFAULT_LOG_LEVEL.upper()


class StructuredFormatter(logging.Formatter):
    """Formatter that outputs structured JSON logs."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }

        context = {**LogContext.get_context(), **(getattr(record, "context", None) or {})}
        if context:
            log_data["context"] = context

        if getattr(record, "extra_data", None):
            log_data["extra"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class HumanFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "") if self.use_color else ""
        reset = self.RESET if self.use_color else ""
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

        base_msg = f"[{timestamp}] {color}{record.levelname:8}{reset} | {record.name:30} | {record.getMessage()}"

        context = {**LogContext.get_context(), **(getattr(record, "context", None) or {})}
        if context:
            base_msg += f" | context={json.dumps(context, ensure_ascii=False, default=str)}"

        if record.exc_info:
            base_msg += f"\n{self.formatException(record.exc_info)}"

        return base_msg


_current_context: ContextVar[dict[str, Any]] = ContextVar("polystore_log_context", default={})


class LogContext:
    """Context manager for adding context to logs; scoped to the running task."""

    def __init__(self, **kwargs: Any):
        self._new_context = kwargs
        self._token: Token | None = None

    def __enter__(self) -> "LogContext":
        self._token = _current_context.set({**_current_context.get(), **self._new_context})
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._token is not None:
            _current_context.reset(self._token)
            self._token = None

    @classmethod
    def get_context(cls) -> dict[str, Any]:
        return dict(_current_context.get())


def setup_logging(
    level: str | None = None,
    log_file: str | Path | None = None,
    enable_console: bool = True,
    structured_console: bool = False,
) -> None:
    """
    Setup logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path of a rotating JSON log file
        enable_console: Enable console logging
        structured_console: Emit JSON instead of colored text on the console
    """
    global _current_log_level

    if level:
        _current_log_level = level.upper()
    numeric_level = getattr(logging, _current_log_level, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(
            StructuredFormatter() if structured_console else HumanFormatter(sys.stdout.isatty())
        )
        console_handler.setLevel(numeric_level)
        root_logger.addHandler(console_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=MAX_FILE_SIZE,
            backupCount=10,
            encoding="utf-8",
        )
        file_handler.setFormatter(StructuredFormatter())
        file_handler.setLevel(numeric_level)
        root_logger.addHandler(file_handler)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("grpc").setLevel(logging.WARNING)


def set_log_level(level: str) -> None:
    """
    Dynamically set the log level.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    global _current_log_level
    _current_log_level = level.upper()

    logging.getLogger().setLevel(getattr(logging, _current_log_level, logging.INFO))

    for handler in logging.getLogger().handlers:
        handler.setLevel(getattr(logging, _current_log_level, logging.INFO))


def get_log_level() -> str:
    return _current_log_level


def create_log_context(
    component: str,
    operation: str,
    subject_key: Any = None,
    user: Any = None,
) -> dict[str, Any]:
    """Build the structured context attached to repository operations."""
    return {
        "component": component,
        "operation": operation,
        "subject_key": None if subject_key is None else str(subject_key),
        "user": getattr(user, "sub", user),
    }


@contextmanager
def log_context(**kwargs: Any):
    """
    Context manager for adding context to logs.

    Usage:
        with log_context(component="InvoiceRepository", operation="get"):
            logger.info("Fetching invoice")
    """
    with LogContext(**kwargs):
        yield
