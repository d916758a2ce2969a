# src/storytree/core/__init__.py
"""Core utilities for storytree."""

from .env import get_config, load_env
from .errors import (
    BadRequestError,
    ConflictError,
    ErrorKind,
    ForbiddenError,
    InternalError,
    NotFoundError,
    StoryTreeError,
)
from .logs import get_event_logger

__all__ = [
    "load_env",
    "get_config",
    "ErrorKind",
    "StoryTreeError",
    "NotFoundError",
    "BadRequestError",
    "ForbiddenError",
    "ConflictError",
    "InternalError",
    "get_event_logger",
]
