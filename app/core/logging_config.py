"""Process-wide logging configuration.

Call ``setup_logging("Server")`` once at startup (or ``"Worker"`` inside the
Celery worker). Modules keep using ``logging.getLogger(__name__)``.
"""

from __future__ import annotations

import json
import logging
import sys

from app.core.config import LogFormatEnum, settings

_HANDLER_NAME = "_relay_stream"


class RoleFilter(logging.Filter):
    """Stamps the process role onto each record."""

    def __init__(self, role: str) -> None:
        super().__init__()
        self.role = role

    def filter(self, record: logging.LogRecord) -> bool:
        record.role = self.role  # type: ignore[attr-defined]
        return True


class PlainFormatter(logging.Formatter):
    """Produces lines like ``2026-10-19 14:30:00 [Server][INFO] app.main:42 - Started``."""

    def format(self, record: logging.LogRecord) -> str:
        role = getattr(record, "role", "")
        prefix = f"[{role}]" if role else ""
        formatted = (
            f"{self.formatTime(record, self.datefmt)} {prefix}[{record.levelname}] "
            f"{record.name}:{record.lineno} - {record.getMessage()}"
        )
        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            formatted += "\n" + record.exc_text
        return formatted


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "role": getattr(record, "role", ""),
            "logger": record.name,
            "line": record.lineno,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(role: str) -> None:
    """Configure the root logger for *role*. Safe to call more than once."""
    root = logging.getLogger()

    if any(getattr(h, "name", None) == _HANDLER_NAME for h in root.handlers):
        return

    root.setLevel(getattr(logging, settings.log_level.value, logging.INFO))

    if settings.log_format == LogFormatEnum.json:
        formatter: logging.Formatter = JsonFormatter(datefmt="%Y-%m-%dT%H:%M:%S")
    else:
        formatter = PlainFormatter(datefmt="%Y-%m-%d %H:%M:%S")

    handler = logging.StreamHandler(sys.stderr)
    handler.name = _HANDLER_NAME
    handler.addFilter(RoleFilter(role))
    handler.setFormatter(formatter)
    root.addHandler(handler)

    for name in ("httpx", "httpcore", "websockets"):
        logging.getLogger(name).setLevel(logging.WARNING)
