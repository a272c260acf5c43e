"""Structured logging for the chat core.

Records are written as JSON lines to a rotating file and to stdout. Code
running inside a chat session gets the room and user attached to every
record through `chat_log_context`.
"""

import contextvars
import json
import logging
import logging.config
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from .config import DEFAULT_LOG_PATH

# Transport chatter from the Supabase SDK stack
NOISY_LOGGERS = ("httpx", "httpcore", "hpack", "realtime", "websockets")

_chat_context: contextvars.ContextVar[dict[str, str]] = contextvars.ContextVar(
    "chat_log_context", default={}
)


@contextmanager
def chat_log_context(**fields: str) -> Iterator[None]:
    """Attach fields (e.g. room, user) to every record logged inside the block."""
    token = _chat_context.set({**_chat_context.get(), **fields})
    try:
        yield
    finally:
        _chat_context.reset(token)


class ChatContextFilter(logging.Filter):
    """Copies the active chat context onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _chat_context.get()
        if context:
            record.chat = dict(context)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        chat = getattr(record, "chat", None)
        if chat:
            entry["chat"] = chat
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(
    log_level: str | None = None,
    log_file: str | None = None,
    console_format: str | None = None,
) -> None:
    """
    Configure root logging.

    Args:
        log_level: Level name. Defaults to LOG_LEVEL or INFO.
        log_file: Rotating log file. Defaults to logs/app.log.
        console_format: "json" or "text". Defaults to LOG_FORMAT or json.
    """
    log_level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_file = log_file or str(DEFAULT_LOG_PATH)
    console_format = (console_format or os.getenv("LOG_FORMAT", "json")).lower()
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "chat_context": {"()": "tourney_chat.logging_config.ChatContextFilter"},
            },
            "formatters": {
                "json": {"()": "tourney_chat.logging_config.JSONFormatter"},
                "text": {
                    "format": "%(asctime)s %(levelname)-7s %(name)s: %(message)s",
                },
            },
            "handlers": {
                "file": {
                    "class": "logging.handlers.RotatingFileHandler",
                    "filename": log_file,
                    "maxBytes": 10 * 1024 * 1024,
                    "backupCount": 5,
                    "formatter": "json",
                    "filters": ["chat_context"],
                    "encoding": "utf-8",
                },
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "text" if console_format == "text" else "json",
                    "filters": ["chat_context"],
                    "stream": "ext://sys.stdout",
                },
            },
            "root": {"level": log_level, "handlers": ["file", "console"]},
        }
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger (pass __name__)."""
    return logging.getLogger(name)
