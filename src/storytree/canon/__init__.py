# src/storytree/canon/__init__.py
"""Database access helpers and repositories."""

from .db import (
    advisory_lock,
    create_all,
    create_engine,
    create_session_factory,
    ensure_schema,
    get_session,
)
from .repositories import (
    BranchCounterRepository,
    ChapterRepository,
    ChapterVersionRepository,
    CollaboratorRepository,
    PRVoteRepository,
    PullRequestRepository,
    StoryRepository,
)
from .repository import Repository

__all__ = [
    "advisory_lock",
    "create_all",
    "create_engine",
    "create_session_factory",
    "ensure_schema",
    "get_session",
    "Repository",
    "BranchCounterRepository",
    "ChapterRepository",
    "ChapterVersionRepository",
    "CollaboratorRepository",
    "PRVoteRepository",
    "PullRequestRepository",
    "StoryRepository",
]
