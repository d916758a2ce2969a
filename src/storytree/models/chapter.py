# src/storytree/models/chapter.py
"""Data models for story chapters, their versions and tree views."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import Field

from .base_model import StoryTreeBaseModel as BaseModel


class ChapterStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"
    DELETED = "deleted"


class EditType(str, Enum):
    MANUAL_EDIT = "manual_edit"
    PR_MERGE = "pr_merge"
    PR_DELETE = "pr_delete"
    ADMIN_ROLLBACK = "admin_rollback"


class ChapterVotes(BaseModel):
    upvotes: int = 0
    downvotes: int = 0
    score: int = 0


class ChapterStats(BaseModel):
    reads: int = 0
    comments: int = 0
    child_branches: int = 0


class ChapterPullRequest(BaseModel):
    """Pull request bookkeeping stored on the chapter a PR targets."""

    is_pr: bool = False
    pr_id: str | None = None
    status: str | None = None
    submitted_at: datetime | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    rejection_reason: str | None = None


class Chapter(BaseModel):
    """A node in a story's branching chapter tree."""

    id: str | None = None
    slug: str = Field(..., min_length=1)
    story_slug: str = Field(..., min_length=1)
    parent_chapter_slug: str | None = None
    ancestor_slugs: list[str] = Field(default_factory=list)
    depth: int = Field(default=0, ge=0)
    branch_index: int = Field(default=1, ge=1)
    author_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    content: str = ""
    status: ChapterStatus = ChapterStatus.PUBLISHED
    is_ending: bool = False
    votes: ChapterVotes = Field(default_factory=ChapterVotes)
    pull_request: ChapterPullRequest = Field(default_factory=ChapterPullRequest)
    version: int = Field(default=1, ge=1)
    stats: ChapterStats = Field(default_factory=ChapterStats)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_root(self) -> bool:
        return self.parent_chapter_slug is None


class ChapterVersion(BaseModel):
    """Snapshot of a chapter's content before it was replaced."""

    id: str | None = None
    chapter_slug: str
    version: int = Field(..., ge=1)
    title: str
    content: str
    edited_by: str
    edit_type: EditType = EditType.MANUAL_EDIT
    edit_reason: str | None = None
    pr_id: str | None = None
    created_at: datetime | None = None


class ChapterNode(BaseModel):
    """Nested view of a chapter and its descendants."""

    chapter: Chapter
    children: list[ChapterNode] = Field(default_factory=list)


class ChapterDetails(BaseModel):
    """A chapter together with its ancestor chain and direct children."""

    chapter: Chapter
    ancestors: list[Chapter] = Field(default_factory=list)
    children: list[Chapter] = Field(default_factory=list)


ChapterNode.model_rebuild()

__all__ = [
    "Chapter",
    "ChapterDetails",
    "ChapterNode",
    "ChapterPullRequest",
    "ChapterStats",
    "ChapterStatus",
    "ChapterVersion",
    "ChapterVotes",
    "EditType",
]
