"""
Centralized logging configuration for the scrape orchestration service.

This module provides structured JSON logging with:
- Rotating file handlers to prevent log file bloat
- Separate files for different log levels
- Console output only for errors (optional)
- A per-pass correlation id stamped on every record emitted while a
  scrape pass, confirmation or reset is being processed
"""

import json
import logging
import logging.handlers
import os
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

# Correlation id of the scrape pass currently running in this task context
_pass_id: ContextVar[str | None] = ContextVar("pass_id", default=None)


def current_pass_id() -> str | None:
    """Return the correlation id bound to the running task, if any."""
    return _pass_id.get()


@contextmanager
def bind_pass_id(pass_id: str | None = None) -> Iterator[str]:
    """
    Bind a correlation id for the duration of a block.

    Tasks created inside the block inherit the id, so concurrent scrape
    calls launched by one pass log under the same id.

    Args:
        pass_id: Existing id to reuse (a fresh uuid4 is generated if omitted)

    Yields:
        The bound correlation id
    """
    value = pass_id or str(uuid.uuid4())
    token = _pass_id.set(value)
    try:
        yield value
    finally:
        _pass_id.reset(token)


class JsonFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.
    Emits one JSON object per line for log aggregation systems.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        pass_id = getattr(record, "pass_id", None)
        if pass_id:
            log_data["pass_id"] = pass_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class PassIdFilter(logging.Filter):
    """Copies the bound correlation id onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.pass_id = _pass_id.get()
        return True


class LoggerConfig:
    """
    Centralized logger configuration and management.
    """

    LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_TO_CONSOLE = os.getenv("LOG_TO_CONSOLE", "false").lower() == "true"
    MAX_BYTES = 10 * 1024 * 1024  # 10MB per file
    BACKUP_COUNT = 5

    _initialized = False

    @classmethod
    def _rotating_handler(cls, filename: str, level: int, formatter: logging.Formatter):
        handler = logging.handlers.RotatingFileHandler(
            cls.LOG_DIR / filename,
            maxBytes=cls.MAX_BYTES,
            backupCount=cls.BACKUP_COUNT,
            encoding="utf-8",
        )
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(PassIdFilter())
        return handler

    @classmethod
    def setup_logging(cls) -> None:
        """
        Set up logging for the whole process.
        Safe to call repeatedly; only the first call installs handlers.
        """
        if cls._initialized:
            return

        cls.LOG_DIR.mkdir(parents=True, exist_ok=True)

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, cls.LOG_LEVEL, logging.INFO))
        root_logger.handlers.clear()

        json_formatter = JsonFormatter()

        # scrape.log carries the full workflow trail, error.log only failures
        root_logger.addHandler(cls._rotating_handler("scrape.log", logging.INFO, json_formatter))
        root_logger.addHandler(cls._rotating_handler("error.log", logging.ERROR, json_formatter))

        if cls.LOG_LEVEL == "DEBUG":
            root_logger.addHandler(
                cls._rotating_handler("debug.log", logging.DEBUG, json_formatter)
            )

        if cls.LOG_TO_CONSOLE:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(logging.ERROR)
            console_handler.setFormatter(
                logging.Formatter(
                    fmt="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            root_logger.addHandler(console_handler)

        cls._initialized = True

        logging.getLogger(__name__).info(
            "Logging system initialized",
            extra={
                "extra_fields": {
                    "log_level": cls.LOG_LEVEL,
                    "log_dir": str(cls.LOG_DIR),
                    "console_logging": cls.LOG_TO_CONSOLE,
                }
            },
        )

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        if not cls._initialized:
            cls.setup_logging()
        return logging.getLogger(name)


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: The name of the logger (typically __name__)

    Returns:
        Configured logger instance

    Example:
        >>> from utils.logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Scrape pass started", extra={"extra_fields": {"selected": 3}})
    """
    return LoggerConfig.get_logger(name)


LoggerConfig.setup_logging()
