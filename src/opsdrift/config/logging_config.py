"""
Logging configuration for the drift engine.

JSON lines to a rotating file, plain text on the console. Every record carries
the id of the HTTP request that produced it, set by the request context
middleware.
"""

import sys
import json
import logging
import logging.handlers
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, Optional

_request_id: ContextVar[Optional[str]] = ContextVar("opsdrift_request_id", default=None)

# Attributes every LogRecord has; anything else was passed through ``extra=``.
_STANDARD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime", "request_id"}

NOISY_LOGGERS = ("aiohttp", "asyncio", "sqlalchemy.engine", "uvicorn.access")


def _level(name: str) -> int:
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else logging.INFO


def _file_handler(path: str, max_size_mb: int, backup_count: int, rotation: str) -> logging.Handler:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    if rotation == "time":
        return logging.handlers.TimedRotatingFileHandler(
            path, when="midnight", backupCount=backup_count, encoding="utf-8", utc=True
        )
    return logging.handlers.RotatingFileHandler(
        path, maxBytes=max_size_mb * 1024 * 1024, backupCount=backup_count, encoding="utf-8"
    )


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        request_id = getattr(record, "request_id", None)
        if request_id:
            entry["request_id"] = request_id
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS}
        if extra:
            entry["extra"] = extra
        return json.dumps(entry, default=str, ensure_ascii=False)


class SimpleFormatter(logging.Formatter):
    def __init__(self):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


class RequestContextFilter(logging.Filter):
    """Stamps the current request id onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = _request_id.get()
        return True


def set_request_context(request_id: Optional[str]):
    """Bind ``request_id`` to the current context; returns the reset token."""
    return _request_id.set(request_id)


def reset_request_context(token) -> None:
    _request_id.reset(token)


def configure_logging(
    level: str = "INFO",
    format_type: str = "simple",
    output: str = "console",
    file_path: str = "./logs/opsdrift.log",
    file_max_size_mb: int = 50,
    file_backup_count: int = 5,
    file_rotation: str = "size",
) -> None:
    """
    Replace the root logger's handlers.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        format_type: 'structured' (JSON) or 'simple'; applies to the file handler
        output: 'console', 'file' or 'both'
        file_path: Log file location
        file_max_size_mb: Size limit before rotation
        file_backup_count: Rotated files to keep
        file_rotation: 'size' or 'time'
    """
    root = logging.getLogger()
    root.handlers.clear()
    log_level = _level(level)
    root.setLevel(log_level)

    context_filter = RequestContextFilter()
    handlers = []
    if output in ("file", "both"):
        handler = _file_handler(file_path, file_max_size_mb, file_backup_count, file_rotation)
        handler.setFormatter(StructuredFormatter() if format_type == "structured" else SimpleFormatter())
        handlers.append(handler)
    if output in ("console", "both"):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(SimpleFormatter())
        handlers.append(handler)

    for handler in handlers:
        handler.setLevel(log_level)
        handler.addFilter(context_filter)
        root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured - Level: {level}, Format: {format_type}, Output: {output}"
    )


def setup_logging(settings: Optional[Dict[str, Any]] = None) -> None:
    """Configure logging from ``Settings.get_logging_config()``."""
    settings = settings or {}
    configure_logging(
        level=settings.get("level", "INFO"),
        format_type=settings.get("format", "simple"),
        output=settings.get("output", "console"),
        file_path=settings.get("file_path", "./logs/opsdrift.log"),
        file_max_size_mb=settings.get("file_max_size_mb", 50),
        file_backup_count=settings.get("file_backup_count", 5),
        file_rotation=settings.get("file_rotation", "size"),
    )


__all__ = [
    "configure_logging",
    "setup_logging",
    "RequestContextFilter",
    "set_request_context",
    "reset_request_context",
    "StructuredFormatter",
    "SimpleFormatter",
]
