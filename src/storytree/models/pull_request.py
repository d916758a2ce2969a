# src/storytree/models/pull_request.py
"""Data models for chapter pull requests, votes and reviews."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field, model_validator

from .base_model import StoryTreeBaseModel as BaseModel


class PRType(str, Enum):
    NEW_CHAPTER = "new_chapter"
    EDIT_CHAPTER = "edit_chapter"
    DELETE_CHAPTER = "delete_chapter"


class PRStatus(str, Enum):
    OPEN = "open"
    APPROVED = "approved"
    REJECTED = "rejected"
    CLOSED = "closed"
    MERGED = "merged"


TERMINAL_STATUSES = frozenset({PRStatus.REJECTED, PRStatus.CLOSED, PRStatus.MERGED})


class PRLabel(str, Enum):
    NEEDS_REVIEW = "needs_review"
    QUALITY_ISSUE = "quality_issue"
    GRAMMAR = "grammar"
    PLOT_HOLE = "plot_hole"
    GOOD_FIRST_PR = "good_first_pr"


class TimelineAction(str, Enum):
    CREATED = "created"
    VOTED = "voted"
    REVIEW_SUBMITTED = "review_submitted"
    CHANGES_REQUESTED = "changes_requested"
    APPROVED = "approved"
    AUTO_APPROVED = "auto_approved"
    REJECTED = "rejected"
    CLOSED = "closed"
    MERGED = "merged"
    MARKED_DRAFT = "marked_draft"
    READY_FOR_REVIEW = "ready_for_review"
    LABELS_CHANGED = "labels_changed"


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REQUEST_CHANGES = "request_changes"
    COMMENT = "comment"


class PRChanges(BaseModel):
    """Proposed content change and its line-based diff."""

    original: str | None = None
    proposed: str = ""
    diff: str | None = None
    line_count: int = 0
    additions_count: int = 0
    deletions_count: int = 0
    unchanged_count: int = 0


class PRVotes(BaseModel):
    upvotes: int = 0
    downvotes: int = 0
    score: int = 0


class AutoApproveConfig(BaseModel):
    enabled: bool = False
    threshold: int = Field(default=10, ge=1)
    time_window: int = Field(default=7, ge=1)
    qualified_at: datetime | None = None
    auto_approved_at: datetime | None = None


class ApprovalsStatus(BaseModel):
    required: int = Field(default=1, ge=0)
    received: int = 0
    pending: int = 0
    approvers: list[str] = Field(default_factory=list)
    blockers: list[str] = Field(default_factory=list)
    can_merge: bool = False


class TimelineEntry(BaseModel):
    action: TimelineAction
    performed_by: str
    performed_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class PRStats(BaseModel):
    views: int = 0
    discussions: int = 0
    reviews_received: int = 0
    time_to_merge: int | None = None


class PullRequest(BaseModel):
    """A proposal to add, edit or delete a chapter."""

    id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    story_slug: str
    chapter_slug: str | None = None
    parent_chapter_slug: str | None = None
    author_id: str
    pr_type: PRType
    changes: PRChanges = Field(default_factory=PRChanges)
    status: PRStatus = PRStatus.OPEN
    votes: PRVotes = Field(default_factory=PRVotes)
    auto_approve: AutoApproveConfig = Field(default_factory=AutoApproveConfig)
    approvals_status: ApprovalsStatus = Field(default_factory=ApprovalsStatus)
    labels: list[PRLabel] = Field(default_factory=list)
    timeline: list[TimelineEntry] = Field(default_factory=list)
    stats: PRStats = Field(default_factory=PRStats)
    is_draft: bool = False
    draft_reason: str | None = None
    drafted_at: datetime | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    rejection_reason: str | None = None
    merged_at: datetime | None = None
    merged_by: str | None = None
    closed_at: datetime | None = None
    closed_by: str | None = None
    close_reason: str | None = Field(default=None, max_length=500)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PRVote(BaseModel):
    id: str | None = None
    pull_request_id: str
    user_id: str
    vote: int
    created_at: datetime | None = None

    @model_validator(mode="after")
    def _check_vote(self) -> PRVote:
        if self.vote not in (1, -1):
            raise ValueError("vote must be 1 or -1")
        return self


class CreatePullRequestInput(BaseModel):
    """Caller-supplied fields for opening a pull request."""

    story_slug: str = Field(..., min_length=1)
    author_id: str = Field(..., min_length=1)
    pr_type: PRType
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    chapter_slug: str | None = None
    parent_chapter_slug: str | None = None
    proposed: str = ""
    labels: list[PRLabel] = Field(default_factory=list)
    is_draft: bool = False
    auto_approve: AutoApproveConfig | None = None


__all__ = [
    "ApprovalsStatus",
    "AutoApproveConfig",
    "CreatePullRequestInput",
    "PRChanges",
    "PRLabel",
    "PRStats",
    "PRStatus",
    "PRType",
    "PRVote",
    "PRVotes",
    "PullRequest",
    "ReviewDecision",
    "TERMINAL_STATUSES",
    "TimelineAction",
    "TimelineEntry",
]
