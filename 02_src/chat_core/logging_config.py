"""Structured logging for the conversation sync engine.

Every record is one JSON object. Records logged through a
``conversation_logger`` carry the conversation they belong to, so the log of
a single conversation can be filtered out of a shared stream.
"""

import json
import logging
import logging.config
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import DEFAULT_LOG_PATH

# Extra attributes copied from a record into its JSON object when present
CONTEXT_FIELDS = ("conversation_id", "local_key", "message_id", "context")

# Libraries that are chatty at INFO
QUIET_LOGGERS = ("aiosqlite", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    """Renders a record as a single-line JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ConversationLoggerAdapter(logging.LoggerAdapter):
    """Stamps conversation_id on every record, keeping caller-supplied extras."""

    def process(self, msg, kwargs):
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def conversation_logger(
    base: logging.Logger, conversation_id: str | None
) -> ConversationLoggerAdapter:
    """Wrap base so its records belong to conversation_id."""
    return ConversationLoggerAdapter(base, {"conversation_id": conversation_id})


def setup_logging(
    log_level: str | None = None,
    log_file: str | None = None,
) -> None:
    """
    Route all logging to a rotating JSON file and stdout.

    Args:
        log_level: Root level name. Falls back to LOG_LEVEL, then INFO.
        log_file: Target file. Falls back to 04_logs/chat.log.
    """
    level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    path = Path(log_file) if log_file else DEFAULT_LOG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {"()": "chat_core.logging_config.JSONFormatter"},
            },
            "handlers": {
                "file": {
                    "class": "logging.handlers.RotatingFileHandler",
                    "filename": str(path),
                    "maxBytes": 10 * 1024 * 1024,
                    "backupCount": 5,
                    "formatter": "json",
                    "encoding": "utf-8",
                },
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                    "stream": "ext://sys.stdout",
                },
            },
            "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
            "root": {"level": level, "handlers": ["file", "console"]},
        }
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
