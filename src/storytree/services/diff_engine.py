# src/storytree/services/diff_engine.py
"""Line-based diffs for pull request changes."""

from __future__ import annotations

import difflib
from dataclasses import dataclass

from storytree.core.errors import BadRequestError
from storytree.models import PRChanges, PRType

DIFF_FILENAME = "chapter"
ORIGINAL_LABEL = "original"
PROPOSED_LABEL = "proposed"


@dataclass(frozen=True)
class DiffStats:
    line_count: int
    additions_count: int
    deletions_count: int
    unchanged_count: int


def unified_diff(original: str, proposed: str) -> str:
    """Unified diff of ``original`` against ``proposed``, one hunk header per change."""
    diff_lines = difflib.unified_diff(
        original.splitlines(),
        proposed.splitlines(),
        fromfile=DIFF_FILENAME,
        tofile=DIFF_FILENAME,
        fromfiledate=ORIGINAL_LABEL,
        tofiledate=PROPOSED_LABEL,
        lineterm="",
    )
    return "\n".join(diff_lines)


def diff_stats(original: str, proposed: str) -> DiffStats:
    """Count added, removed and unchanged lines.

    ``line_count`` always equals the sum of the three counts.
    """
    a_lines = original.splitlines()
    b_lines = proposed.splitlines()
    additions = deletions = unchanged = 0
    matcher = difflib.SequenceMatcher(None, a_lines, b_lines, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            unchanged += i2 - i1
        if tag in ("replace", "delete"):
            deletions += i2 - i1
        if tag in ("replace", "insert"):
            additions += j2 - j1
    return DiffStats(
        line_count=additions + deletions + unchanged,
        additions_count=additions,
        deletions_count=deletions,
        unchanged_count=unchanged,
    )


def resolve_changes(
    pr_type: PRType | str, original: str | None, proposed: str | None
) -> PRChanges:
    """Build the ``changes`` record for a pull request of ``pr_type``.

    Raises:
        BadRequestError: for an unknown ``pr_type``.
    """
    try:
        pr_type = PRType(pr_type)
    except ValueError as exc:
        raise BadRequestError(f"Unknown PR type: {pr_type}", "INVALID_INPUT") from exc

    if pr_type is PRType.NEW_CHAPTER:
        return PRChanges(proposed=proposed or "")

    if pr_type is PRType.EDIT_CHAPTER:
        original = original or ""
        proposed = proposed or ""
        stats = diff_stats(original, proposed)
        return PRChanges(
            original=original,
            proposed=proposed,
            diff=unified_diff(original, proposed),
            line_count=stats.line_count,
            additions_count=stats.additions_count,
            deletions_count=stats.deletions_count,
            unchanged_count=stats.unchanged_count,
        )

    return PRChanges(original=original or "", proposed="")


__all__ = ["DiffStats", "diff_stats", "resolve_changes", "unified_diff"]
