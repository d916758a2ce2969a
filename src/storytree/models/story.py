# src/storytree/models/story.py
"""Data model for stories and their settings."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import Field

from .base_model import StoryTreeBaseModel as BaseModel


class StoryStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"
    DELETED = "deleted"


class StorySettings(BaseModel):
    """Per-story switches consulted by the tree and PR workflows."""

    is_public: bool = True
    allow_branching: bool = True
    require_approval: bool = True
    allow_comments: bool = True
    allow_voting: bool = True
    auto_approve_threshold: int | None = Field(default=None, ge=1)
    auto_approve_time_window: int | None = Field(default=None, ge=1)
    min_approvals: int | None = Field(default=None, ge=0)


class Story(BaseModel):
    """A collaboratively written story."""

    id: str | None = None
    slug: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    creator_id: str = Field(..., min_length=1)
    status: StoryStatus = StoryStatus.PUBLISHED
    settings: StorySettings = Field(default_factory=StorySettings)
    created_at: datetime | None = None
    updated_at: datetime | None = None


__all__ = ["Story", "StorySettings", "StoryStatus"]
