# src/storytree/core/logging.py
"""Logging helpers for storytree."""

import json
import logging
import os
import sys

_LOGGING_INITIALIZED = False

_RESERVED_RECORD_KEYS = frozenset(
    {
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "thread",
        "threadName",
        "taskName",
    }
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data = {
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Attach extras if present
        for key, value in record.__dict__.items():
            if key in _RESERVED_RECORD_KEYS or key in data:
                continue
            try:
                json.dumps(value)
                data[key] = value
            except (TypeError, ValueError):
                data[key] = str(value)
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False)


def _str_to_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _plain_handler(log_level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    return handler


def init_logging(
    level: str | None = None,
    format: str | None = None,
    include_trace: bool | None = None,
) -> None:
    """
    Initialize global logging configuration for storytree.

    Environment variables:
      - STORYTREE_LOG_LEVEL: DEBUG|INFO|WARNING|ERROR|CRITICAL (default INFO)
      - STORYTREE_LOG_FORMAT: plain|rich|json (default: rich)
      - STORYTREE_LOG_INCLUDE_TRACE: bool (default False)
    """
    global _LOGGING_INITIALIZED
    if _LOGGING_INITIALIZED:
        return

    env_level = os.getenv("STORYTREE_LOG_LEVEL", "").upper() or "INFO"
    env_format = os.getenv("STORYTREE_LOG_FORMAT", "")
    env_include_trace = os.getenv("STORYTREE_LOG_INCLUDE_TRACE", "")

    resolved_level = (level or env_level).upper()
    resolved_format = (format or env_format or "rich").lower()
    resolved_include_trace = (
        include_trace
        if include_trace is not None
        else _str_to_bool(env_include_trace, default=False)
    )

    log_level = logging.getLevelName(resolved_level)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    root = logging.getLogger()
    root.setLevel(log_level)
    for h in list(root.handlers):
        root.removeHandler(h)

    handler: logging.Handler
    if resolved_format == "json":
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(log_level)
        handler.setFormatter(JsonFormatter())
    elif resolved_format == "rich":
        from rich.logging import RichHandler

        handler = RichHandler(
            level=log_level,
            rich_tracebacks=resolved_include_trace,
            show_time=True,
            show_level=True,
            show_path=False,
            markup=False,
        )
        # RichHandler renders time and level itself
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = _plain_handler(log_level)

    root.addHandler(handler)

    for noisy in ("sqlalchemy.engine", "aiosqlite", "asyncio", "transitions"):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))

    from storytree import __version__

    logging.getLogger("storytree.start").info(
        "Initializing logging | version=%s level=%s format=%s include_trace=%s",
        __version__,
        resolved_level,
        resolved_format,
        str(resolved_include_trace),
    )

    _LOGGING_INITIALIZED = True


def get_logger(name: str | None = None) -> logging.Logger:
    """
    Get a logger with the provided name, or the package logger if None.
    """
    return logging.getLogger(name or "storytree")
