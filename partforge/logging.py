# partforge/logging.py
"""
Structured logging for PartForge.

Every line is one JSON object:
- timestamp: ISO 8601 (UTC)
- level, logger, service
- event: what happened ("part_created", "lock_timeout_retry", ...)
- bound context (part_id, part_version_id, ...) plus per-call fields
- error_code: set when the logged exception is a PartError

Usage:
    from partforge.logging import get_logger
    logger = get_logger(__name__)
    logger.info("part_created", part_id=str(part_id), actor_id=str(actor_id))

    scoped = logger.bind(part_version_id=str(version_id))
    scoped.warning("relationship_insert_failed", kind="category", index=0)
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

SERVICE_NAME = "partforge"

# Third-party loggers kept at WARNING
_QUIET_LOGGERS = ("sqlalchemy.engine", "uvicorn.access", "httpx")


class StructuredLogFormatter(logging.Formatter):
    """Render a LogRecord (and its structured fields) as one JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "service": SERVICE_NAME,
            "event": record.getMessage(),
        }
        entry.update(getattr(record, "fields", {}))

        if record.exc_info:
            exc = record.exc_info[1]
            code = getattr(exc, "code", None)
            if isinstance(code, str):
                entry["error_code"] = code
            entry["exception"] = self.formatException(record.exc_info)

        if record.levelno >= logging.ERROR:
            entry["source"] = f"{record.pathname}:{record.lineno} in {record.funcName}"

        return json.dumps(entry, default=str)


class StructuredLogger:
    """
    Logger that takes an event name plus keyword fields.

    bind() returns a child logger carrying context fields that are added
    to every line it writes.
    """

    def __init__(self, name: str, context: Optional[Dict[str, Any]] = None):
        self._logger = logging.getLogger(name)
        self._context = dict(context or {})

    def bind(self, **fields) -> "StructuredLogger":
        return StructuredLogger(self._logger.name, {**self._context, **fields})

    def _log(self, level: int, event: str, exc_info: bool = False, **fields):
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(
            level,
            event,
            exc_info=exc_info,
            extra={"fields": {**self._context, **fields}},
            stacklevel=3,
        )

    def debug(self, event: str, **fields):
        self._log(logging.DEBUG, event, **fields)

    def info(self, event: str, **fields):
        self._log(logging.INFO, event, **fields)

    def warning(self, event: str, **fields):
        self._log(logging.WARNING, event, **fields)

    def error(self, event: str, exc_info: bool = False, **fields):
        self._log(logging.ERROR, event, exc_info=exc_info, **fields)

    def exception(self, event: str, **fields):
        """Log at ERROR with the active exception's traceback."""
        self._log(logging.ERROR, event, exc_info=True, **fields)


_configured = False


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    log_file: Optional[str] = None,
):
    """
    Install handlers on the root logger (first call wins).

    Args:
        level: Root log level name
        json_output: JSON lines (True) or a plain text format (False)
        log_file: Also append JSON lines to this file
    """
    global _configured
    if _configured:
        return
    _configured = True

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(
        StructuredLogFormatter() if json_output
        else logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    root.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredLogFormatter())
        root.addHandler(file_handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """Structured logger for a module; configures logging from settings on first use."""
    if not _configured:
        from .settings import settings
        configure_logging(
            level=settings.log_level,
            json_output=settings.log_json,
            log_file=settings.log_file,
        )
    return StructuredLogger(name)


def get_api_logger() -> StructuredLogger:
    """Logger shared by the HTTP adapter."""
    return get_logger("partforge.api")
