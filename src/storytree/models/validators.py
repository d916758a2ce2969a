# src/storytree/models/validators.py
"""Custom validators for Pydantic models."""

from __future__ import annotations

import re
from uuid import uuid4

SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_NON_SLUG_CHARS = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")
_DASHES = re.compile(r"-+")


def validate_slug(value: str) -> str:
    """Validate that ``value`` is a slug."""
    if not SLUG_RE.match(value):
        raise ValueError("invalid slug")
    return value


def validate_non_empty(value: str) -> str:
    """Ensure ``value`` is not empty or whitespace."""
    if not value.strip():
        raise ValueError("must not be empty")
    return value


def slugify(value: str, *, add_suffix: bool = True) -> str:
    """Turn ``value`` into a slug, optionally with a short random suffix.

    >>> slugify("The Dark Forest", add_suffix=False)
    'the-dark-forest'
    """
    base = _NON_SLUG_CHARS.sub("", value.lower().strip())
    base = _DASHES.sub("-", _WHITESPACE.sub("-", base)).strip("-") or "chapter"
    if add_suffix:
        return f"{base}-{uuid4().hex[:6]}"
    return base


__all__ = ["validate_slug", "validate_non_empty", "slugify", "SLUG_RE"]
