# src/storytree/domain/chapter_rules.py
"""Tree position rules for chapters.

``child_hierarchy`` is the only place where a chapter's depth and ancestor
chain are derived, so every writer of the tree agrees on them.
"""

from __future__ import annotations

from dataclasses import dataclass

from storytree.core.result import Err, Ok, bad_request
from storytree.models import Chapter, ChapterStatus


@dataclass(frozen=True)
class TreePosition:
    depth: int
    ancestor_slugs: tuple[str, ...]

    @property
    def parent_slug(self) -> str | None:
        return self.ancestor_slugs[-1] if self.ancestor_slugs else None


ROOT_POSITION = TreePosition(depth=0, ancestor_slugs=())


def child_hierarchy(parent: Chapter) -> TreePosition:
    """Return the position of a new child of ``parent``."""
    return TreePosition(
        depth=parent.depth + 1,
        ancestor_slugs=(*parent.ancestor_slugs, parent.slug),
    )


def can_branch_from(parent: Chapter, story_slug: str) -> Ok[Chapter] | Err:
    """Check that ``parent`` may receive a new child in ``story_slug``."""
    if parent.story_slug != story_slug:
        return bad_request(
            "Parent chapter does not belong to this story", "INVALID_PARENT_CHAPTER"
        )
    if parent.status is ChapterStatus.DELETED:
        return bad_request("Cannot branch from a deleted chapter", "PARENT_CHAPTER_DELETED")
    return Ok(parent)


def target_key(chapter_slug: str | None, parent_chapter_slug: str | None) -> str:
    """Key identifying what a pull request targets.

    Edits and deletes target an existing chapter; new chapters target a slot
    under their parent.
    """
    if chapter_slug:
        return chapter_slug
    return f"new:{parent_chapter_slug}"


__all__ = [
    "ROOT_POSITION",
    "TreePosition",
    "can_branch_from",
    "child_hierarchy",
    "target_key",
]
