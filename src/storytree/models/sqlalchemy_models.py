# src/storytree/models/sqlalchemy_models.py
"""SQLAlchemy ORM tables for stories, chapter trees and pull requests.

Column types stay portable between PostgreSQL and SQLite: identifiers are
hex strings generated in Python, nested documents are ``JSON`` and every
counter that is mutated concurrently lives in its own integer column so it
can be incremented with a single ``UPDATE``.
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)

from .base import Base
from .mixins import new_id, utcnow


class StorySQL(Base):
    """A story that owns a chapter tree."""

    __tablename__ = "story"
    id = Column(String(32), primary_key=True, default=new_id)
    slug = Column(String(255), nullable=False, unique=True)
    title = Column(String(200), nullable=False)
    description = Column(Text)
    creator_id = Column(String(64), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="published")
    settings = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ChapterSQL(Base):
    """A chapter node.

    ``ancestor_slugs`` holds the path from the root to the parent and
    ``branch_index`` the position among the parent's children.
    """

    __tablename__ = "chapter"
    __table_args__ = (
        UniqueConstraint(
            "story_slug",
            "parent_chapter_slug",
            "branch_index",
            name="uq_chapter_parent_branch_index",
        ),
        Index(
            "uq_chapter_story_root",
            "story_slug",
            unique=True,
            postgresql_where=text("parent_chapter_slug IS NULL"),
            sqlite_where=text("parent_chapter_slug IS NULL"),
        ),
        Index("ix_chapter_story_parent", "story_slug", "parent_chapter_slug"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    slug = Column(String(255), nullable=False, unique=True)
    story_slug = Column(
        String(255), ForeignKey("story.slug"), nullable=False, index=True
    )
    parent_chapter_slug = Column(String(255))
    ancestor_slugs = Column(JSON, nullable=False, default=list)
    depth = Column(Integer, nullable=False, default=0)
    branch_index = Column(Integer, nullable=False)
    author_id = Column(String(64), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False, default="")
    status = Column(String(20), nullable=False, default="published")
    is_ending = Column(Boolean, nullable=False, default=False)
    upvotes = Column(Integer, nullable=False, default=0)
    downvotes = Column(Integer, nullable=False, default=0)
    score = Column(Integer, nullable=False, default=0)
    pull_request = Column(JSON, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=1)
    reads = Column(Integer, nullable=False, default=0)
    comments = Column(Integer, nullable=False, default=0)
    child_branches = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ChapterVersionSQL(Base):
    """Content snapshot taken before a chapter is rewritten or removed."""

    __tablename__ = "chapter_version"
    __table_args__ = (
        UniqueConstraint("chapter_slug", "version", name="uq_chapter_version"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    chapter_slug = Column(String(255), ForeignKey("chapter.slug"), nullable=False)
    version = Column(Integer, nullable=False)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    edited_by = Column(String(64), nullable=False)
    edit_type = Column(String(30), nullable=False)
    edit_reason = Column(Text)
    pr_id = Column(String(32))
    created_at = Column(DateTime(timezone=True), default=utcnow)


class BranchCounterSQL(Base):
    """Monotonic branch index sequence per ``(story, parent)``."""

    __tablename__ = "branch_counter"
    story_slug = Column(String(255), primary_key=True)
    # Empty string stands for "no parent" so roots share a key.
    parent_key = Column(String(255), primary_key=True)
    value = Column(Integer, nullable=False, default=0)


class PullRequestSQL(Base):
    """A proposed chapter change."""

    __tablename__ = "pull_request"
    __table_args__ = (
        Index("ix_pull_request_author_status", "story_slug", "author_id", "status"),
        Index(
            "uq_pull_request_open_target",
            "story_slug",
            "author_id",
            "target_key",
            unique=True,
            postgresql_where=text("status = 'open'"),
            sqlite_where=text("status = 'open'"),
        ),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    title = Column(String(200), nullable=False)
    description = Column(Text)
    story_slug = Column(
        String(255), ForeignKey("story.slug"), nullable=False, index=True
    )
    chapter_slug = Column(String(255))
    parent_chapter_slug = Column(String(255))
    # chapter slug for edits and deletes, ``new:<parent>`` for new chapters
    target_key = Column(String(300), nullable=False)
    author_id = Column(String(64), nullable=False)
    pr_type = Column(String(20), nullable=False)
    changes = Column(JSON, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default="open", index=True)
    upvotes = Column(Integer, nullable=False, default=0)
    downvotes = Column(Integer, nullable=False, default=0)
    score = Column(Integer, nullable=False, default=0)
    auto_approve = Column(JSON, nullable=False, default=dict)
    approvals_status = Column(JSON, nullable=False, default=dict)
    labels = Column(JSON, nullable=False, default=list)
    stats = Column(JSON, nullable=False, default=dict)
    is_draft = Column(Boolean, nullable=False, default=False)
    draft_reason = Column(Text)
    drafted_at = Column(DateTime(timezone=True))
    reviewed_by = Column(String(64))
    reviewed_at = Column(DateTime(timezone=True))
    rejection_reason = Column(Text)
    merged_at = Column(DateTime(timezone=True))
    merged_by = Column(String(64))
    closed_at = Column(DateTime(timezone=True))
    closed_by = Column(String(64))
    close_reason = Column(String(500))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class PRTimelineSQL(Base):
    """Append-only history of a pull request."""

    __tablename__ = "pr_timeline"
    id = Column(Integer, primary_key=True, autoincrement=True)
    pull_request_id = Column(
        String(32), ForeignKey("pull_request.id"), nullable=False, index=True
    )
    action = Column(String(30), nullable=False)
    performed_by = Column(String(64), nullable=False)
    performed_at = Column(DateTime(timezone=True), default=utcnow)
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)


class PRVoteSQL(Base):
    """A single user's vote on a pull request."""

    __tablename__ = "pr_vote"
    __table_args__ = (
        UniqueConstraint("pull_request_id", "user_id", name="uq_pr_vote_user"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    pull_request_id = Column(String(32), ForeignKey("pull_request.id"), nullable=False)
    user_id = Column(String(64), nullable=False)
    vote = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class StoryCollaboratorSQL(Base):
    """Membership row linking a user to a story with a role."""

    __tablename__ = "story_collaborator"
    __table_args__ = (
        UniqueConstraint("slug", "user_id", name="uq_story_collaborator_user"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    slug = Column(String(255), ForeignKey("story.slug"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    role = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    invited_by = Column(String(64))
    invited_at = Column(DateTime(timezone=True), default=utcnow)
    accepted_at = Column(DateTime(timezone=True))


__all__ = [
    "BranchCounterSQL",
    "ChapterSQL",
    "ChapterVersionSQL",
    "PRTimelineSQL",
    "PRVoteSQL",
    "PullRequestSQL",
    "StoryCollaboratorSQL",
    "StorySQL",
]
