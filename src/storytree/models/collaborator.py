# src/storytree/models/collaborator.py
"""Data model for story collaborators."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import Field

from .base_model import StoryTreeBaseModel as BaseModel


class CollaboratorRole(str, Enum):
    OWNER = "owner"
    CO_AUTHOR = "co_author"
    MODERATOR = "moderator"
    REVIEWER = "reviewer"
    CONTRIBUTOR = "contributor"


class CollaboratorStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    REMOVED = "removed"


class StoryCollaborator(BaseModel):
    """Membership of a user in a story."""

    id: str | None = None
    slug: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    role: CollaboratorRole
    status: CollaboratorStatus = CollaboratorStatus.PENDING
    invited_by: str | None = None
    invited_at: datetime | None = None
    accepted_at: datetime | None = None


__all__ = ["CollaboratorRole", "CollaboratorStatus", "StoryCollaborator"]
