# src/storytree/canon/repositories.py
"""Per-entity repositories translating ORM rows into domain models."""

# mypy: disable-error-code=arg-type

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from storytree.core.errors import InternalError
from storytree.core.logs import EventType, Priority, get_event_logger
from storytree.models import (
    ApprovalsStatus,
    AutoApproveConfig,
    BranchCounterSQL,
    Chapter,
    ChapterPullRequest,
    ChapterSQL,
    ChapterStats,
    ChapterStatus,
    ChapterVersion,
    ChapterVersionSQL,
    ChapterVotes,
    CollaboratorStatus,
    PRChanges,
    PRStats,
    PRStatus,
    PRTimelineSQL,
    PRVote,
    PRVoteSQL,
    PRVotes,
    PullRequest,
    PullRequestSQL,
    Story,
    StoryCollaborator,
    StoryCollaboratorSQL,
    StorySettings,
    StorySQL,
    TimelineEntry,
    ensure_utc,
    utcnow,
)

from .repository import Repository

event_logger = get_event_logger()

def _dump(model: Any) -> dict[str, Any]:
    return model.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------


def story_from_row(row: StorySQL) -> Story:
    return Story(
        id=row.id,
        slug=row.slug,
        title=row.title,
        description=row.description,
        creator_id=row.creator_id,
        status=row.status,
        settings=StorySettings.model_validate(row.settings or {}),
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


def chapter_from_row(row: ChapterSQL) -> Chapter:
    return Chapter(
        id=row.id,
        slug=row.slug,
        story_slug=row.story_slug,
        parent_chapter_slug=row.parent_chapter_slug,
        ancestor_slugs=list(row.ancestor_slugs or []),
        depth=row.depth,
        branch_index=row.branch_index,
        author_id=row.author_id,
        title=row.title,
        content=row.content,
        status=row.status,
        is_ending=row.is_ending,
        votes=ChapterVotes(upvotes=row.upvotes, downvotes=row.downvotes, score=row.score),
        pull_request=ChapterPullRequest.model_validate(row.pull_request or {}),
        version=row.version,
        stats=ChapterStats(
            reads=row.reads, comments=row.comments, child_branches=row.child_branches
        ),
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


def version_from_row(row: ChapterVersionSQL) -> ChapterVersion:
    return ChapterVersion(
        id=row.id,
        chapter_slug=row.chapter_slug,
        version=row.version,
        title=row.title,
        content=row.content,
        edited_by=row.edited_by,
        edit_type=row.edit_type,
        edit_reason=row.edit_reason,
        pr_id=row.pr_id,
        created_at=ensure_utc(row.created_at),
    )


def timeline_from_row(row: PRTimelineSQL) -> TimelineEntry:
    return TimelineEntry(
        action=row.action,
        performed_by=row.performed_by,
        performed_at=ensure_utc(row.performed_at),
        metadata=dict(row.metadata_ or {}),
    )


def pull_request_from_row(
    row: PullRequestSQL, timeline: Iterable[PRTimelineSQL] = ()
) -> PullRequest:
    return PullRequest(
        id=row.id,
        title=row.title,
        description=row.description,
        story_slug=row.story_slug,
        chapter_slug=row.chapter_slug,
        parent_chapter_slug=row.parent_chapter_slug,
        author_id=row.author_id,
        pr_type=row.pr_type,
        changes=PRChanges.model_validate(row.changes or {}),
        status=row.status,
        votes=PRVotes(upvotes=row.upvotes, downvotes=row.downvotes, score=row.score),
        auto_approve=AutoApproveConfig.model_validate(row.auto_approve or {}),
        approvals_status=ApprovalsStatus.model_validate(row.approvals_status or {}),
        labels=list(row.labels or []),
        timeline=[timeline_from_row(t) for t in timeline],
        stats=PRStats.model_validate(row.stats or {}),
        is_draft=row.is_draft,
        draft_reason=row.draft_reason,
        drafted_at=ensure_utc(row.drafted_at),
        reviewed_by=row.reviewed_by,
        reviewed_at=ensure_utc(row.reviewed_at),
        rejection_reason=row.rejection_reason,
        merged_at=ensure_utc(row.merged_at),
        merged_by=row.merged_by,
        closed_at=ensure_utc(row.closed_at),
        closed_by=row.closed_by,
        close_reason=row.close_reason,
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


def vote_from_row(row: PRVoteSQL) -> PRVote:
    return PRVote(
        id=row.id,
        pull_request_id=row.pull_request_id,
        user_id=row.user_id,
        vote=row.vote,
        created_at=ensure_utc(row.created_at),
    )


def collaborator_from_row(row: StoryCollaboratorSQL) -> StoryCollaborator:
    return StoryCollaborator(
        id=row.id,
        slug=row.slug,
        user_id=row.user_id,
        role=row.role,
        status=row.status,
        invited_by=row.invited_by,
        invited_at=ensure_utc(row.invited_at),
        accepted_at=ensure_utc(row.accepted_at),
    )


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class StoryRepository(Repository[StorySQL]):
    def __init__(self) -> None:
        super().__init__(StorySQL)

    async def find_by_slug(self, session: AsyncSession, slug: str) -> Story | None:
        row = await self.find_one(session, slug=slug)
        return story_from_row(row) if row else None

    async def create_story(self, session: AsyncSession, story: Story) -> Story:
        """Persist ``story``; story management lives outside this package."""
        row = await self.create(
            session,
            slug=story.slug,
            title=story.title,
            description=story.description,
            creator_id=story.creator_id,
            status=story.status.value,
            settings=_dump(story.settings),
        )
        return story_from_row(row)


class ChapterRepository(Repository[ChapterSQL]):
    def __init__(self) -> None:
        super().__init__(ChapterSQL)

    async def find_by_slug(self, session: AsyncSession, slug: str) -> Chapter | None:
        row = await self.find_one(session, slug=slug)
        return chapter_from_row(row) if row else None

    async def find_by_slugs(self, session: AsyncSession, slugs: list[str]) -> list[Chapter]:
        if not slugs:
            return []
        rows = await self.find_many(session, where=[ChapterSQL.slug.in_(slugs)])
        return [chapter_from_row(r) for r in rows]

    async def find_root(self, session: AsyncSession, story_slug: str) -> Chapter | None:
        row = await self.find_one(session, story_slug=story_slug, parent_chapter_slug=None)
        return chapter_from_row(row) if row else None

    async def find_children(
        self,
        session: AsyncSession,
        story_slug: str,
        parent_slug: str | None,
        *,
        include_deleted: bool = False,
    ) -> list[Chapter]:
        """Return the children of ``parent_slug`` ordered by branch index."""
        where = [] if include_deleted else [ChapterSQL.status != ChapterStatus.DELETED.value]
        rows = await self.find_many(
            session,
            story_slug=story_slug,
            parent_chapter_slug=parent_slug,
            where=where,
            order_by=[ChapterSQL.branch_index],
        )
        return [chapter_from_row(r) for r in rows]

    async def find_by_story(self, session: AsyncSession, story_slug: str) -> list[Chapter]:
        rows = await self.find_many(
            session,
            story_slug=story_slug,
            where=[ChapterSQL.status != ChapterStatus.DELETED.value],
            order_by=[ChapterSQL.depth, ChapterSQL.branch_index],
        )
        return [chapter_from_row(r) for r in rows]

    async def find_by_author(
        self,
        session: AsyncSession,
        author_id: str,
        story_slug: str | None = None,
    ) -> list[Chapter]:
        filters: dict[str, Any] = {"author_id": author_id}
        if story_slug is not None:
            filters["story_slug"] = story_slug
        rows = await self.find_many(
            session,
            where=[ChapterSQL.status != ChapterStatus.DELETED.value],
            order_by=[ChapterSQL.created_at, ChapterSQL.depth],
            **filters,
        )
        return [chapter_from_row(r) for r in rows]

    async def insert(self, session: AsyncSession, chapter: Chapter) -> Chapter:
        row = await self.create(
            session,
            slug=chapter.slug,
            story_slug=chapter.story_slug,
            parent_chapter_slug=chapter.parent_chapter_slug,
            ancestor_slugs=list(chapter.ancestor_slugs),
            depth=chapter.depth,
            branch_index=chapter.branch_index,
            author_id=chapter.author_id,
            title=chapter.title,
            content=chapter.content,
            status=chapter.status.value,
            is_ending=chapter.is_ending,
            pull_request=_dump(chapter.pull_request),
            version=chapter.version,
        )
        return chapter_from_row(row)

    async def increment_child_branches(self, session: AsyncSession, slug: str) -> Chapter | None:
        row = await self.find_one_and_update(
            session, {"slug": slug}, {"child_branches": ChapterSQL.child_branches + 1}
        )
        return chapter_from_row(row) if row else None

    async def update_fields(
        self, session: AsyncSession, slug: str, **values: Any
    ) -> Chapter | None:
        row = await self.find_one_and_update(session, {"slug": slug}, values)
        return chapter_from_row(row) if row else None

    async def bump_version(
        self, session: AsyncSession, slug: str, **values: Any
    ) -> Chapter | None:
        """Apply ``values`` and increment ``version`` in the same statement."""
        values["version"] = ChapterSQL.version + 1
        return await self.update_fields(session, slug, **values)


class BranchCounterRepository(Repository[BranchCounterSQL]):
    """Allocates branch indexes from an atomic per-parent sequence."""

    ROOT_KEY = ""

    def __init__(self) -> None:
        super().__init__(BranchCounterSQL)

    async def next_value(
        self, session: AsyncSession, story_slug: str, parent_slug: str | None
    ) -> int:
        """Increment and return the counter for ``(story_slug, parent_slug)``."""
        parent_key = parent_slug or self.ROOT_KEY
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise InternalError(
                f"Unsupported database dialect for branch counters: {dialect}"
            )
        stmt = (
            insert(BranchCounterSQL)
            .values(story_slug=story_slug, parent_key=parent_key, value=1)
            .on_conflict_do_update(
                index_elements=[BranchCounterSQL.story_slug, BranchCounterSQL.parent_key],
                set_={"value": BranchCounterSQL.value + 1},
            )
            .returning(BranchCounterSQL.value)
        )
        value = int((await session.execute(stmt)).scalar_one())
        await event_logger.log(
            EventType.DATABASE_OPERATION,
            "Allocated branch index",
            Priority.LOW,
            metadata={
                "operation": "upsert",
                "table": self.table_name,
                "story_slug": story_slug,
                "parent_key": parent_key,
                "value": value,
            },
        )
        return value


class ChapterVersionRepository(Repository[ChapterVersionSQL]):
    def __init__(self) -> None:
        super().__init__(ChapterVersionSQL)

    async def snapshot(self, session: AsyncSession, version: ChapterVersion) -> ChapterVersion:
        row = await self.create(
            session,
            chapter_slug=version.chapter_slug,
            version=version.version,
            title=version.title,
            content=version.content,
            edited_by=version.edited_by,
            edit_type=version.edit_type.value,
            edit_reason=version.edit_reason,
            pr_id=version.pr_id,
        )
        return version_from_row(row)

    async def find_for_chapter(
        self, session: AsyncSession, chapter_slug: str
    ) -> list[ChapterVersion]:
        rows = await self.find_many(
            session, chapter_slug=chapter_slug, order_by=[ChapterVersionSQL.version]
        )
        return [version_from_row(r) for r in rows]


class PullRequestRepository(Repository[PullRequestSQL]):
    def __init__(self) -> None:
        super().__init__(PullRequestSQL)
        self.timeline = Repository(PRTimelineSQL)

    async def _with_timeline(self, session: AsyncSession, row: PullRequestSQL) -> PullRequest:
        entries = await self.timeline.find_many(
            session, pull_request_id=row.id, order_by=[PRTimelineSQL.id]
        )
        return pull_request_from_row(row, entries)

    async def find_by_id(self, session: AsyncSession, pr_id: str) -> PullRequest | None:
        row = await self.find_one(session, id=pr_id)
        return await self._with_timeline(session, row) if row else None

    async def find_by_story(
        self, session: AsyncSession, story_slug: str, status: PRStatus | None = None
    ) -> list[PullRequest]:
        filters: dict[str, Any] = {"story_slug": story_slug}
        if status is not None:
            filters["status"] = status.value
        rows = await self.find_many(session, order_by=[PullRequestSQL.created_at], **filters)
        return [await self._with_timeline(session, r) for r in rows]

    async def find_open_for_target(
        self, session: AsyncSession, story_slug: str, author_id: str, target_key: str
    ) -> PullRequest | None:
        """Return the open PR by ``author_id`` on ``target_key``, if any."""
        rows = await self.find_many(
            session,
            story_slug=story_slug,
            author_id=author_id,
            target_key=target_key,
            status=PRStatus.OPEN.value,
            limit=1,
        )
        return pull_request_from_row(rows[0]) if rows else None

    async def insert(
        self, session: AsyncSession, pr: PullRequest, target_key: str
    ) -> PullRequest:
        await self.create(
            session,
            id=pr.id,
            title=pr.title,
            description=pr.description,
            story_slug=pr.story_slug,
            chapter_slug=pr.chapter_slug,
            parent_chapter_slug=pr.parent_chapter_slug,
            target_key=target_key,
            author_id=pr.author_id,
            pr_type=pr.pr_type.value,
            changes=_dump(pr.changes),
            status=pr.status.value,
            auto_approve=_dump(pr.auto_approve),
            approvals_status=_dump(pr.approvals_status),
            labels=[label.value for label in pr.labels],
            stats=_dump(pr.stats),
            is_draft=pr.is_draft,
            draft_reason=pr.draft_reason,
            drafted_at=pr.drafted_at,
            created_at=pr.created_at or utcnow(),
        )
        for entry in pr.timeline:
            await self.append_timeline(session, pr.id, entry)
        found = await self.find_by_id(session, pr.id)
        if found is None:
            raise InternalError(f"Pull request {pr.id} vanished after insert")
        return found

    async def update_fields(
        self,
        session: AsyncSession,
        pr_id: str,
        *,
        expected_status: Iterable[PRStatus] | None = None,
        **values: Any,
    ) -> PullRequest | None:
        """Update ``pr_id``; with ``expected_status`` only while it still holds.

        Returns ``None`` when the PR is missing or has already moved on.
        """
        stmt = update(PullRequestSQL).where(PullRequestSQL.id == pr_id)
        if expected_status is not None:
            stmt = stmt.where(
                PullRequestSQL.status.in_([s.value for s in expected_status])
            )
        stmt = (
            stmt.values(**values)
            .returning(PullRequestSQL.id)
            .execution_options(synchronize_session=False)
        )
        if (await session.execute(stmt)).first() is None:
            return None
        return await self.find_by_id(session, pr_id)

    async def apply_vote_delta(
        self, session: AsyncSession, pr_id: str, up: int, down: int
    ) -> PullRequest | None:
        """Shift vote aggregates with a single atomic ``UPDATE``."""
        row = await self.find_one_and_update(
            session,
            {"id": pr_id},
            {
                "upvotes": PullRequestSQL.upvotes + up,
                "downvotes": PullRequestSQL.downvotes + down,
                "score": PullRequestSQL.score + (up - down),
            },
        )
        return await self._with_timeline(session, row) if row else None

    async def append_timeline(
        self, session: AsyncSession, pr_id: str, entry: TimelineEntry
    ) -> TimelineEntry:
        row = await self.timeline.create(
            session,
            pull_request_id=pr_id,
            action=entry.action.value,
            performed_by=entry.performed_by,
            performed_at=entry.performed_at or utcnow(),
            metadata_=dict(entry.metadata),
        )
        return timeline_from_row(row)


class PRVoteRepository(Repository[PRVoteSQL]):
    def __init__(self) -> None:
        super().__init__(PRVoteSQL)

    async def find_vote(
        self, session: AsyncSession, pr_id: str, user_id: str
    ) -> PRVote | None:
        row = await self.find_one(session, pull_request_id=pr_id, user_id=user_id)
        return vote_from_row(row) if row else None

    async def record(
        self, session: AsyncSession, pr_id: str, user_id: str, vote: int
    ) -> PRVote:
        row = await self.create(session, pull_request_id=pr_id, user_id=user_id, vote=vote)
        return vote_from_row(row)

    async def change(
        self, session: AsyncSession, pr_id: str, user_id: str, vote: int
    ) -> PRVote | None:
        row = await self.find_one_and_update(
            session, {"pull_request_id": pr_id, "user_id": user_id}, {"vote": vote}
        )
        return vote_from_row(row) if row else None


class CollaboratorRepository(Repository[StoryCollaboratorSQL]):
    def __init__(self) -> None:
        super().__init__(StoryCollaboratorSQL)

    async def find_member(
        self, session: AsyncSession, slug: str, user_id: str
    ) -> StoryCollaborator | None:
        row = await self.find_one(session, slug=slug, user_id=user_id)
        return collaborator_from_row(row) if row else None

    async def find_accepted(
        self, session: AsyncSession, slug: str, user_id: str
    ) -> StoryCollaborator | None:
        row = await self.find_one(
            session, slug=slug, user_id=user_id, status=CollaboratorStatus.ACCEPTED.value
        )
        return collaborator_from_row(row) if row else None

    async def list_for_story(
        self,
        session: AsyncSession,
        slug: str,
        status: CollaboratorStatus | None = None,
    ) -> list[StoryCollaborator]:
        filters: dict[str, Any] = {"slug": slug}
        if status is not None:
            filters["status"] = status.value
        rows = await self.find_many(
            session, order_by=[StoryCollaboratorSQL.invited_at], **filters
        )
        return [collaborator_from_row(r) for r in rows]

    async def add(self, session: AsyncSession, member: StoryCollaborator) -> StoryCollaborator:
        row = await self.create(
            session,
            slug=member.slug,
            user_id=member.user_id,
            role=member.role.value,
            status=member.status.value,
            invited_by=member.invited_by,
            invited_at=member.invited_at or utcnow(),
            accepted_at=member.accepted_at,
        )
        return collaborator_from_row(row)

    async def update_member(
        self,
        session: AsyncSession,
        slug: str,
        user_id: str,
        *,
        expected_status: CollaboratorStatus | None = None,
        **values: Any,
    ) -> StoryCollaborator | None:
        filters: dict[str, Any] = {"slug": slug, "user_id": user_id}
        if expected_status is not None:
            filters["status"] = expected_status.value
        row = await self.find_one_and_update(session, filters, values)
        return collaborator_from_row(row) if row else None


__all__ = [
    "BranchCounterRepository",
    "ChapterRepository",
    "ChapterVersionRepository",
    "CollaboratorRepository",
    "PRVoteRepository",
    "PullRequestRepository",
    "StoryRepository",
    "chapter_from_row",
    "collaborator_from_row",
    "pull_request_from_row",
    "story_from_row",
    "version_from_row",
    "vote_from_row",
]
