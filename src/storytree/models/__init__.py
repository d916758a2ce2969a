# src/storytree/models/__init__.py
"""Pydantic domain models and SQLAlchemy tables for storytree."""

from .base import Base
from .base_model import StoryTreeBaseModel
from .chapter import (
    Chapter,
    ChapterDetails,
    ChapterNode,
    ChapterPullRequest,
    ChapterStats,
    ChapterStatus,
    ChapterVersion,
    ChapterVotes,
    EditType,
)
from .collaborator import CollaboratorRole, CollaboratorStatus, StoryCollaborator
from .mixins import ensure_utc, new_id, utcnow
from .pull_request import (
    TERMINAL_STATUSES,
    ApprovalsStatus,
    AutoApproveConfig,
    CreatePullRequestInput,
    PRChanges,
    PRLabel,
    PRStats,
    PRStatus,
    PRType,
    PRVote,
    PRVotes,
    PullRequest,
    ReviewDecision,
    TimelineAction,
    TimelineEntry,
)
from .sqlalchemy_models import (
    BranchCounterSQL,
    ChapterSQL,
    ChapterVersionSQL,
    PRTimelineSQL,
    PRVoteSQL,
    PullRequestSQL,
    StoryCollaboratorSQL,
    StorySQL,
)
from .story import Story, StorySettings, StoryStatus
from .validators import slugify, validate_non_empty, validate_slug

__all__ = [
    "Base",
    "StoryTreeBaseModel",
    "Story",
    "StorySettings",
    "StoryStatus",
    "Chapter",
    "ChapterDetails",
    "ChapterNode",
    "ChapterPullRequest",
    "ChapterStats",
    "ChapterStatus",
    "ChapterVersion",
    "ChapterVotes",
    "EditType",
    "CollaboratorRole",
    "CollaboratorStatus",
    "StoryCollaborator",
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
    "BranchCounterSQL",
    "ChapterSQL",
    "ChapterVersionSQL",
    "PRTimelineSQL",
    "PRVoteSQL",
    "PullRequestSQL",
    "StoryCollaboratorSQL",
    "StorySQL",
    "ensure_utc",
    "new_id",
    "utcnow",
    "slugify",
    "validate_non_empty",
    "validate_slug",
]
