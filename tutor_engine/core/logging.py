"""Structured logging for the tutor chat engine.

Every line is ``key=value`` pairs on stdout. Chat code tags records with the
session, the user, and an ``event`` name so operational signals such as
``event=memory_not_persisted`` can be alerted on directly.
"""

import logging
import sys
from typing import Any

# Promoted from log_with_context kwargs onto the record itself
CONTEXT_FIELDS = ("event", "session_id", "user_id")


def _format_value(value: Any) -> str:
    text = str(value)
    if not text or any(ch.isspace() for ch in text) or "=" in text:
        escaped = text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
        return f'"{escaped}"'
    return text


class StructuredFormatter(logging.Formatter):
    """key=value formatter with promoted context fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
        }

        for name in CONTEXT_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        log_data["message"] = record.getMessage()

        if hasattr(record, "extra_data"):
            log_data.update(record.extra_data)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return " ".join(f"{k}={_format_value(v)}" for k, v in log_data.items())


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the structured stdout handler attached once.

    DEBUG in the dev environment, INFO everywhere else.
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)

        try:
            from tutor_engine.core.config import get_settings

            env = get_settings().TUTOR_ENGINE_ENV
        except Exception:
            # Settings unavailable (missing env vars at import time)
            env = None
        logger.setLevel(logging.DEBUG if env == "dev" else logging.INFO)

    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """
    Log with structured context fields.

    ``event``, ``session_id`` and ``user_id`` become record attributes; any
    other keyword lands in ``extra_data``.

    Example:
        log_with_context(logger, logging.CRITICAL, "Turn not persisted",
                         event="memory_not_persisted", session_id=sid, role="user")
    """
    extra: dict[str, Any] = {name: str(kwargs.pop(name)) for name in CONTEXT_FIELDS if name in kwargs}
    extra["extra_data"] = kwargs
    logger.log(level, msg, extra=extra)
