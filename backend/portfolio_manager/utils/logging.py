# backend/portfolio_manager/utils/logging.py
"""
Logging setup for the valuation engine.

One stdout handler on the root logger, tagged with the current correlation
ID, in either a pipe-separated text layout or one JSON object per line.
Library loggers that drown out history runs at DEBUG (SQLAlchemy echo,
connection pool chatter) are held at WARNING.

Usage:
    from portfolio_manager.utils import setup_logging

    # Once, at process start (CLI entry point, worker bootstrap)
    setup_logging()

    # Or explicitly, e.g. for a nightly snapshot job shipping to a log collector
    setup_logging(level="DEBUG", log_format="json")

What the engine logs:
    DEBUG   - Display window clamping, snapshot hits, loaded row counts
    INFO    - History requests, fallbacks to live replay, cancellations
    WARNING - Snapshot store failures
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from portfolio_manager.config import settings
from portfolio_manager.utils.context import get_correlation_id

# =============================================================================
# CONSTANTS
# =============================================================================

# 2024-03-31 06:00:00 | INFO     | nightly-history | portfolio_manager.services... | message
DEFAULT_TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(correlation_id)s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NO_CORRELATION_ID = "no-correlation-id"

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

NOISY_LOGGERS = [
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "urllib3",
    "asyncio",
]

# Attributes every LogRecord carries; anything else came in through extra=
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "correlation_id"}


# =============================================================================
# FILTER AND FORMATTER
# =============================================================================

class CorrelationIdFilter(logging.Filter):
    """Stamps each record with the correlation ID of the current context."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record.

    Example:
        {"timestamp": "2024-03-31T06:00:00.123456+00:00", "level": "INFO",
         "logger": "portfolio_manager.services.valuation.service",
         "correlation_id": "nightly-history",
         "message": "Portfolio history requested: 3 portfolio(s), ...",
         "extra": {"portfolio_id": "0b7c..."}}

    Values passed through extra= that json cannot encode (Decimal amounts,
    dates) are written as their str() form.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION_ID),
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        extra = {
            key: _json_safe(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS
        }
        if extra:
            payload["extra"] = extra

        return json.dumps(payload)


def _json_safe(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


# =============================================================================
# SETUP
# =============================================================================

def setup_logging(
        level: str | None = None,
        log_format: str | None = None,
        suppress_noisy_loggers: bool = True,
) -> None:
    """
    Install the engine's handler on the root logger, replacing existing ones.

    Args:
        level: Level name; defaults to settings.log_level
        log_format: "text" or "json"; defaults to settings.log_format
        suppress_noisy_loggers: Hold NOISY_LOGGERS at WARNING

    Raises:
        ValueError: If the level name is not recognised
    """
    level_name = level or settings.log_level
    format_type = (log_format or settings.log_format).lower()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_build_formatter(format_type))
    handler.addFilter(CorrelationIdFilter())

    root = logging.getLogger()
    root.setLevel(_get_log_level(level_name))
    root.handlers[:] = [handler]

    if suppress_noisy_loggers:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        f"Logging configured: level={level_name}, format={format_type}",
        extra={"config": {"level": level_name, "format": format_type}},
    )


def _build_formatter(format_type: str) -> logging.Formatter:
    if format_type == "json":
        return JsonFormatter()
    return logging.Formatter(fmt=DEFAULT_TEXT_FORMAT, datefmt=DEFAULT_DATE_FORMAT)


def _get_log_level(level_name: str) -> int:
    """
    Map a level name (any case, surrounding spaces allowed) to its constant.

    Raises:
        ValueError: If level_name is not one of LOG_LEVELS
    """
    key = level_name.strip().upper()
    if key not in LOG_LEVELS:
        raise ValueError(
            f"Invalid log level: '{level_name}'. Valid levels are: {', '.join(LOG_LEVELS)}"
        )
    return LOG_LEVELS[key]


def get_logger(name: str) -> logging.Logger:
    """Shorthand for logging.getLogger(name)."""
    return logging.getLogger(name)
