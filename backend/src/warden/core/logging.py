"""Logging configuration for Warden.

Operational logs go through stdlib logging under the ``warden`` logger:
colored text in development, one JSON object per line for log shipping.
The security audit trail is separate and goes through the monitor's sinks.
"""

import json
import logging
import sys
import traceback
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, ClassVar

from .config import Settings, get_settings_instance

logger = logging.getLogger(__name__)

_LOGGING_CONFIGURED = False

# Attributes every LogRecord carries; anything else came in through ``extra``
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def record_extras(record: logging.LogRecord) -> dict[str, Any]:
    """Fields passed via ``extra=...`` on the logging call."""
    return {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS}


def _timestamp(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, UTC)


class ColoredFormatter(logging.Formatter):
    """``time - LEVEL - logger - message | key=value ...`` with colored levels."""

    LEVEL_COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def _level(self, levelname: str) -> str:
        if not self.use_colors:
            return levelname
        return f"{self.LEVEL_COLORS.get(levelname, '')}{levelname}{self.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        parts = [
            _timestamp(record).strftime("%Y-%m-%d %H:%M:%S"),
            self._level(record.levelname),
            record.name,
            record.getMessage(),
        ]
        line = " - ".join(parts)

        # Short scalars only; long values belong in the JSON format
        pairs = [
            f"{key}={value}"
            for key, value in record_extras(record).items()
            if isinstance(value, (str, int, float, bool)) and len(str(value)) < 100
        ]
        if pairs:
            line = f"{line} | {' '.join(pairs)}"

        if record.exc_info:
            line += "\n" + "".join(traceback.format_exception(*record.exc_info)).rstrip()
        return line


class JSONFormatter(logging.Formatter):
    """One JSON object per record, extras merged at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": _timestamp(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }
        payload.update(record_extras(record))
        return json.dumps(payload, default=str)


def setup_logging(settings: Settings | None = None, *, force: bool = False) -> None:
    """Configure the ``warden`` logger hierarchy.

    Only the ``warden`` logger is touched so that embedding applications keep
    control over the root logger.
    """
    global _LOGGING_CONFIGURED  # noqa: PLW0603
    if _LOGGING_CONFIGURED and not force:
        return

    settings = settings or get_settings_instance()
    if settings.log_format == "json":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = ColoredFormatter(use_colors=settings.environment == "development")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_dir:
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / "warden.log", encoding="utf-8"))

    warden_logger = logging.getLogger("warden")
    for old in warden_logger.handlers:
        old.close()
    warden_logger.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        warden_logger.addHandler(handler)
    warden_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    warden_logger.propagate = False

    # SQLAlchemy logs SQL at INFO
    logging.getLogger("sqlalchemy").setLevel(logging.ERROR)

    logger.info(
        "Logging configured",
        extra={"log_level": settings.log_level, "log_format": settings.log_format, "environment": settings.environment},
    )
    _LOGGING_CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger namespaced under ``warden``."""
    if name == "warden" or name.startswith("warden."):
        return logging.getLogger(name)
    return logging.getLogger(f"warden.{name}")
