# src/storytree/core/errors.py
"""Error taxonomy shared by every storytree component."""

from __future__ import annotations

import traceback
from enum import Enum
from typing import Any


class ErrorKind(Enum):
    """Stable error categories exposed to callers."""

    NOT_FOUND = "not_found"
    BAD_REQUEST = "bad_request"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    INTERNAL = "internal"


class StoryTreeError(Exception):
    """Base class for all domain errors.

    ``code`` is a stable machine-readable identifier (``STORY_NOT_FOUND``,
    ``DUPLICATE_OPEN_PR`` ...); ``message`` is meant for humans.
    """

    kind: ErrorKind = ErrorKind.INTERNAL
    default_code: str = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self, *, debug: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
        }
        if debug:
            data["trace"] = traceback.format_exception(self)
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class NotFoundError(StoryTreeError):
    kind = ErrorKind.NOT_FOUND
    default_code = "NOT_FOUND"


class BadRequestError(StoryTreeError):
    kind = ErrorKind.BAD_REQUEST
    default_code = "INVALID_INPUT"


class ForbiddenError(StoryTreeError):
    kind = ErrorKind.FORBIDDEN
    default_code = "FORBIDDEN"


class ConflictError(StoryTreeError):
    kind = ErrorKind.CONFLICT
    default_code = "CONFLICT"


class InternalError(StoryTreeError):
    kind = ErrorKind.INTERNAL
    default_code = "INTERNAL_SERVER_ERROR"


_ERRORS_BY_KIND: dict[ErrorKind, type[StoryTreeError]] = {
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.BAD_REQUEST: BadRequestError,
    ErrorKind.FORBIDDEN: ForbiddenError,
    ErrorKind.CONFLICT: ConflictError,
    ErrorKind.INTERNAL: InternalError,
}


def error_for(kind: ErrorKind, message: str, code: str | None = None) -> StoryTreeError:
    """Build the exception matching ``kind``."""
    return _ERRORS_BY_KIND[kind](message, code)


__all__ = [
    "ErrorKind",
    "StoryTreeError",
    "NotFoundError",
    "BadRequestError",
    "ForbiddenError",
    "ConflictError",
    "InternalError",
    "error_for",
]
