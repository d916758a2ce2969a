"""initial story tree schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    ]


def upgrade() -> None:
    op.create_table(
        "story",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("slug", sa.String(255), nullable=False, unique=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("creator_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_story_creator_id", "story", ["creator_id"])

    op.create_table(
        "chapter",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("slug", sa.String(255), nullable=False, unique=True),
        sa.Column("story_slug", sa.String(255), sa.ForeignKey("story.slug"), nullable=False),
        sa.Column("parent_chapter_slug", sa.String(255)),
        sa.Column("ancestor_slugs", sa.JSON(), nullable=False),
        sa.Column("depth", sa.Integer(), nullable=False),
        sa.Column("branch_index", sa.Integer(), nullable=False),
        sa.Column("author_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("is_ending", sa.Boolean(), nullable=False),
        sa.Column("upvotes", sa.Integer(), nullable=False),
        sa.Column("downvotes", sa.Integer(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("pull_request", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("reads", sa.Integer(), nullable=False),
        sa.Column("comments", sa.Integer(), nullable=False),
        sa.Column("child_branches", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "story_slug",
            "parent_chapter_slug",
            "branch_index",
            name="uq_chapter_parent_branch_index",
        ),
    )
    op.create_index("ix_chapter_story_slug", "chapter", ["story_slug"])
    op.create_index("ix_chapter_author_id", "chapter", ["author_id"])
    op.create_index("ix_chapter_story_parent", "chapter", ["story_slug", "parent_chapter_slug"])
    op.create_index(
        "uq_chapter_story_root",
        "chapter",
        ["story_slug"],
        unique=True,
        postgresql_where=sa.text("parent_chapter_slug IS NULL"),
        sqlite_where=sa.text("parent_chapter_slug IS NULL"),
    )

    op.create_table(
        "chapter_version",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("chapter_slug", sa.String(255), sa.ForeignKey("chapter.slug"), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("edited_by", sa.String(64), nullable=False),
        sa.Column("edit_type", sa.String(30), nullable=False),
        sa.Column("edit_reason", sa.Text()),
        sa.Column("pr_id", sa.String(32)),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("chapter_slug", "version", name="uq_chapter_version"),
    )

    op.create_table(
        "branch_counter",
        sa.Column("story_slug", sa.String(255), primary_key=True),
        sa.Column("parent_key", sa.String(255), primary_key=True),
        sa.Column("value", sa.Integer(), nullable=False),
    )

    op.create_table(
        "pull_request",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("story_slug", sa.String(255), sa.ForeignKey("story.slug"), nullable=False),
        sa.Column("chapter_slug", sa.String(255)),
        sa.Column("parent_chapter_slug", sa.String(255)),
        sa.Column("target_key", sa.String(300), nullable=False),
        sa.Column("author_id", sa.String(64), nullable=False),
        sa.Column("pr_type", sa.String(20), nullable=False),
        sa.Column("changes", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("upvotes", sa.Integer(), nullable=False),
        sa.Column("downvotes", sa.Integer(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("auto_approve", sa.JSON(), nullable=False),
        sa.Column("approvals_status", sa.JSON(), nullable=False),
        sa.Column("labels", sa.JSON(), nullable=False),
        sa.Column("stats", sa.JSON(), nullable=False),
        sa.Column("is_draft", sa.Boolean(), nullable=False),
        sa.Column("draft_reason", sa.Text()),
        sa.Column("drafted_at", sa.DateTime(timezone=True)),
        sa.Column("reviewed_by", sa.String(64)),
        sa.Column("reviewed_at", sa.DateTime(timezone=True)),
        sa.Column("rejection_reason", sa.Text()),
        sa.Column("merged_at", sa.DateTime(timezone=True)),
        sa.Column("merged_by", sa.String(64)),
        sa.Column("closed_at", sa.DateTime(timezone=True)),
        sa.Column("closed_by", sa.String(64)),
        sa.Column("close_reason", sa.String(500)),
        *_timestamps(),
    )
    op.create_index("ix_pull_request_story_slug", "pull_request", ["story_slug"])
    op.create_index("ix_pull_request_status", "pull_request", ["status"])
    op.create_index(
        "ix_pull_request_author_status", "pull_request", ["story_slug", "author_id", "status"]
    )
    op.create_index(
        "uq_pull_request_open_target",
        "pull_request",
        ["story_slug", "author_id", "target_key"],
        unique=True,
        postgresql_where=sa.text("status = 'open'"),
        sqlite_where=sa.text("status = 'open'"),
    )

    op.create_table(
        "pr_timeline",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "pull_request_id", sa.String(32), sa.ForeignKey("pull_request.id"), nullable=False
        ),
        sa.Column("action", sa.String(30), nullable=False),
        sa.Column("performed_by", sa.String(64), nullable=False),
        sa.Column("performed_at", sa.DateTime(timezone=True)),
        sa.Column("metadata", sa.JSON(), nullable=False),
    )
    op.create_index("ix_pr_timeline_pull_request_id", "pr_timeline", ["pull_request_id"])

    op.create_table(
        "pr_vote",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column(
            "pull_request_id", sa.String(32), sa.ForeignKey("pull_request.id"), nullable=False
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("vote", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("pull_request_id", "user_id", name="uq_pr_vote_user"),
    )

    op.create_table(
        "story_collaborator",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("slug", sa.String(255), sa.ForeignKey("story.slug"), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("invited_by", sa.String(64)),
        sa.Column("invited_at", sa.DateTime(timezone=True)),
        sa.Column("accepted_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("slug", "user_id", name="uq_story_collaborator_user"),
    )
    op.create_index("ix_story_collaborator_slug", "story_collaborator", ["slug"])
    op.create_index("ix_story_collaborator_user_id", "story_collaborator", ["user_id"])


def downgrade() -> None:
    op.drop_table("story_collaborator")
    op.drop_table("pr_vote")
    op.drop_table("pr_timeline")
    op.drop_table("pull_request")
    op.drop_table("branch_counter")
    op.drop_table("chapter_version")
    op.drop_table("chapter")
    op.drop_table("story")
