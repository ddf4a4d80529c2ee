"""Per-session loggers: forward records as log events and append them to a trace file."""
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlparse

from session_types import LogEntry

SESSION_LOGGER_ROOT = "pilot.session"

# Level names as they appear in log events.
EVENT_LEVELS = {
    logging.DEBUG: "log",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


def event_level(levelno: int) -> str:
    return EVENT_LEVELS.get(levelno, logging.getLevelName(levelno).lower())


def trace_file_name(start_url: str, now: Optional[datetime] = None) -> str:
    """``<domain>_<YYYY-MM-DD_HH-MM-SS>.log``, domain without a leading ``www.``."""
    hostname = None
    try:
        hostname = urlparse(start_url).hostname
    except ValueError:
        pass
    if hostname:
        domain = re.sub(r"^www\.", "", hostname)
    else:
        domain = re.sub(r"[^a-zA-Z0-9]", "_", start_url)
    now = now or datetime.now(timezone.utc)
    return f"{domain}_{now.strftime('%Y-%m-%d_%H-%M-%S')}.log"


class TraceFormatter(logging.Formatter):
    """``[ISO timestamp] [LEVEL] message``"""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        iso = timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return f"[{iso}] [{event_level(record.levelno).upper()}] {message}"


class SessionLogHandler(logging.Handler):
    """Turns log records into LogEntry objects for the session's event stream."""

    def __init__(self, on_entry: Callable[[LogEntry], None], level: int = logging.NOTSET):
        super().__init__(level)
        self.on_entry = on_entry

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = LogEntry(
                level=event_level(record.levelno),
                content=record.getMessage(),
                timestamp=int(record.created * 1000),
            )
            self.on_entry(entry)
        except Exception:
            self.handleError(record)


def open_trace_handler(
    folder: Path,
    start_url: str,
    logger: Optional[logging.Logger] = None,
) -> Optional[logging.FileHandler]:
    """Open the trace file for a session; returns None when it cannot be created."""
    logger = logger or logging.getLogger(SESSION_LOGGER_ROOT)
    path = Path(folder) / trace_file_name(start_url)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    except OSError as e:
        logger.warning(f"Could not open trace log {path}: {e}")
        return None
    handler.setFormatter(TraceFormatter())
    return handler


def create_session_logger(session_id: str, on_entry: Callable[[LogEntry], None]) -> logging.Logger:
    """A logger private to one session.

    It is not registered with the logging manager, so finished sessions do
    not leak loggers; records still propagate to the ``pilot.session`` logger.
    """
    logger = logging.Logger(f"{SESSION_LOGGER_ROOT}.{session_id}", level=logging.DEBUG)
    logger.parent = logging.getLogger(SESSION_LOGGER_ROOT)
    logger.addHandler(SessionLogHandler(on_entry))
    return logger


def close_session_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
