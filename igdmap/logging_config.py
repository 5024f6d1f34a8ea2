"""Logging setup for igdmap.

Console output goes through a Rich handler on stderr; an optional rotating
log file receives either plain lines or one JSON object per record. Every
record carries the correlation ID of the operation that emitted it.
"""

from __future__ import annotations

import json
import logging
import logging.config
import time
import uuid
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.logging import RichHandler

from igdmap.exceptions import IGDError

if TYPE_CHECKING:
    from igdmap.models import ObservabilityConfig

PACKAGE_LOGGER = "igdmap"
NO_CORRELATION_ID = "no-correlation-id"

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

_correlation: ContextVar[str | None] = ContextVar("igdmap_correlation_id", default=None)

# Attributes every LogRecord has; anything else arrived through ``extra=``
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.NOTSET, "", 0, "", (), None).__dict__
) | {"message", "asctime", "correlation_id"}


class CorrelationFilter(logging.Filter):
    """Stamp records with the current correlation ID."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _correlation.get() or NO_CORRELATION_ID
        return True


class StructuredFormatter(logging.Formatter):
    """Render records as single-line JSON objects, ``extra=`` fields included."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": record.created,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION_ID),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS:
                entry[key] = value

        return json.dumps(entry, default=str)


def create_rich_handler(level: str = "INFO") -> RichHandler:
    """Create the stderr console handler."""
    handler = RichHandler(
        console=Console(stderr=True),
        level=level,
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.addFilter(CorrelationFilter())
    return handler


def _file_handler(config: ObservabilityConfig) -> dict[str, Any]:
    Path(config.log_file).parent.mkdir(parents=True, exist_ok=True)
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": config.log_level.value,
        "formatter": "json" if config.structured_logging else "plain",
        "filters": ["correlation"],
        "filename": config.log_file,
        "maxBytes": LOG_FILE_MAX_BYTES,
        "backupCount": LOG_FILE_BACKUPS,
        "encoding": "utf-8",
    }


def setup_logging(config: ObservabilityConfig) -> None:
    """Configure the ``igdmap`` logger from the observability settings.

    Args:
        config: Log level, optional log file and output format

    """
    level = config.log_level.value
    handlers: dict[str, Any] = {}
    if config.log_file:
        handlers["file"] = _file_handler(config)

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {"()": StructuredFormatter},
                "plain": {
                    "format": "%(asctime)s [%(correlation_id)s] %(levelname)-8s %(name)s: %(message)s",
                },
            },
            "filters": {"correlation": {"()": CorrelationFilter}},
            "handlers": handlers,
            "loggers": {
                PACKAGE_LOGGER: {
                    "level": level,
                    "handlers": list(handlers),
                    "propagate": False,
                },
            },
        }
    )

    # Attached outside dictConfig so the handler keeps its own Console
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.addHandler(create_rich_handler(level))

    if config.log_correlation_id:
        set_correlation_id()


def get_logger(name: str) -> logging.Logger:
    """Return the ``igdmap.<name>`` logger."""
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")


def set_correlation_id(corr_id: str | None = None) -> str:
    """Set (or generate) the correlation ID of the current context."""
    corr_id = corr_id or uuid.uuid4().hex[:12]
    _correlation.set(corr_id)
    return corr_id


def get_correlation_id() -> str | None:
    return _correlation.get()


class LoggingContext:
    """Log the start and outcome of an operation under a fresh correlation ID.

    Exceptions raised inside the block are logged and re-raised.
    """

    def __init__(self, operation: str, logger: logging.Logger | None = None, **fields: Any):
        self.operation = operation
        self.fields = fields
        self.logger = logger or get_logger("operations")
        self._started = 0.0

    def __enter__(self) -> LoggingContext:
        set_correlation_id()
        self._started = time.perf_counter()
        self.logger.debug("Starting %s", self.operation, extra=self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        elapsed = time.perf_counter() - self._started
        if exc_val is None:
            self.logger.debug(
                "Completed %s in %.3fs", self.operation, elapsed, extra=self.fields
            )
        else:
            self.logger.error(
                "%s failed after %.3fs: %s",
                self.operation,
                elapsed,
                exc_val,
                extra=self.fields,
            )
        return False


def log_exception(logger: logging.Logger, exc: Exception, context: str = "") -> None:
    """Log ``exc`` at error level, attaching IGDError details as an extra field."""
    prefix = f"{context}: " if context else ""
    if isinstance(exc, IGDError):
        logger.error(
            "%s%s", prefix, exc.message, extra={"details": exc.details}, exc_info=exc
        )
    else:
        logger.error("%s%s", prefix, exc, exc_info=exc)
