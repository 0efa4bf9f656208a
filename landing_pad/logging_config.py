"""Structured logging configuration for the agent runtime."""

import json
import logging
import logging.config
import logging.handlers
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import DEFAULT_LOG_PATH

# Chatty third-party loggers, capped at WARNING unless LOG_LEVEL is DEBUG
NOISY_LOGGERS = ("aiosqlite", "httpx", "httpcore", "anthropic", "uvicorn.access")

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Structured fields passed as ``extra={"context": {...}}`` are emitted
    under ``context``; message envelope ids are lifted to the top level so
    a workflow can be followed with a plain grep.
    """

    LIFTED = ("message_id", "correlation_id", "workflow_id", "agent")

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }

        context = dict(getattr(record, "context", None) or {})
        for name in self.LIFTED:
            if context.get(name) is not None:
                log_data[name] = context.pop(name)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def message_context(message, **fields: Any) -> dict:
    """``extra`` for a log call about a bus message."""
    context = {
        "message_id": message.message_id,
        "correlation_id": message.correlation_id,
        "workflow_id": message.metadata.workflow_id,
        "agent": message.agent,
    }
    context.update(fields)
    return {"context": context}


def setup_logging(
    log_level: str | None = None,
    log_file: str | None = None,
    console: bool = True,
) -> None:
    """
    Setup structured logging for the application.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
                   Defaults to LOG_LEVEL env var or INFO.
        log_file: Path to log file. Defaults to logs/app.log.
        console: Also write records to stdout. LOG_FORMAT=text switches
                 the console to a human readable line format.
    """
    log_level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_file = log_file or str(DEFAULT_LOG_PATH)
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    handlers = {
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,  # 10 MB
            "backupCount": 5,
            "formatter": "json",
            "encoding": "utf-8",
        },
    }
    if console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "formatter": "text" if os.getenv("LOG_FORMAT") == "text" else "json",
            "stream": "ext://sys.stdout",
        }

    third_party_level = "DEBUG" if log_level == "DEBUG" else "WARNING"

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": "landing_pad.logging_config.JSONFormatter"},
            "text": {"format": TEXT_FORMAT},
        },
        "handlers": handlers,
        "loggers": {name: {"level": third_party_level} for name in NOISY_LOGGERS},
        "root": {
            "level": log_level,
            "handlers": list(handlers),
        },
    })


def get_logger(name: str) -> logging.Logger:
    """Module logger; call with ``__name__``."""
    return logging.getLogger(name)
