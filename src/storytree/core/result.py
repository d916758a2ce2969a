# src/storytree/core/result.py
"""Explicit success/failure values returned by validators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, NoReturn, TypeVar

from .errors import ErrorKind, StoryTreeError, error_for

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str
    code: str | None = None

    @property
    def ok(self) -> bool:
        return False

    def to_exception(self) -> StoryTreeError:
        return error_for(self.kind, self.message, self.code)

    def unwrap(self) -> NoReturn:
        """Raise the matching :class:`StoryTreeError`."""
        raise self.to_exception()


Result = Ok[T] | Err


def not_found(message: str, code: str | None = None) -> Err:
    return Err(ErrorKind.NOT_FOUND, message, code)


def bad_request(message: str, code: str | None = None) -> Err:
    return Err(ErrorKind.BAD_REQUEST, message, code)


def forbidden(message: str, code: str | None = None) -> Err:
    return Err(ErrorKind.FORBIDDEN, message, code)


def conflict(message: str, code: str | None = None) -> Err:
    return Err(ErrorKind.CONFLICT, message, code)


__all__ = ["Ok", "Err", "Result", "not_found", "bad_request", "forbidden", "conflict"]
