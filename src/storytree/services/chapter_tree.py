# src/storytree/services/chapter_tree.py
"""Chapter Tree Manager.

Owns every write to the chapter tree. The session-level methods join the
caller's transaction (pull request merges reuse them); ``add_root_chapter``
and ``add_child_chapter`` are the permission-checked entry points that open
their own transaction.
"""

from __future__ import annotations

from collections import defaultdict

from sqlalchemy.ext.asyncio import AsyncSession

from storytree.canon.repositories import (
    BranchCounterRepository,
    ChapterRepository,
    ChapterVersionRepository,
    StoryRepository,
)
from storytree.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from storytree.core.logs import EventLogger, EventType, Priority, get_event_logger
from storytree.domain.chapter_rules import ROOT_POSITION, can_branch_from, child_hierarchy
from storytree.domain.roles import can_role_publish_chapters
from storytree.models import (
    Chapter,
    ChapterDetails,
    ChapterNode,
    ChapterPullRequest,
    ChapterStatus,
    ChapterVersion,
    EditType,
    Story,
    slugify,
)

from .notifications import NotificationEvent, Notifier, dispatch_notification
from .permissions import PermissionService
from .transactions import TransactionCoordinator


class ChapterTreeManager:
    """Maintains parent links, depth, ancestor chains and branch indexes."""

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        stories: StoryRepository,
        chapters: ChapterRepository,
        versions: ChapterVersionRepository,
        counters: BranchCounterRepository,
        permissions: PermissionService,
        notifier: Notifier | None = None,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.stories = stories
        self.chapters = chapters
        self.versions = versions
        self.counters = counters
        self.permissions = permissions
        self.notifier = notifier
        self.event_logger = event_logger or get_event_logger()

    # ------------------------------------------------------------------
    # Writers joining the caller's transaction
    # ------------------------------------------------------------------

    async def create_root(
        self,
        story: Story,
        author_id: str,
        title: str,
        content: str,
        session: AsyncSession,
    ) -> Chapter:
        if await self.chapters.find_root(session, story.slug) is not None:
            raise ConflictError("Story already has a root chapter", "ROOT_CHAPTER_EXISTS")
        branch_index = await self.counters.next_value(session, story.slug, None)
        chapter = await self.chapters.insert(
            session,
            Chapter(
                slug=slugify(title),
                story_slug=story.slug,
                parent_chapter_slug=None,
                ancestor_slugs=list(ROOT_POSITION.ancestor_slugs),
                depth=ROOT_POSITION.depth,
                branch_index=branch_index,
                author_id=author_id,
                title=title,
                content=content,
                status=ChapterStatus.PUBLISHED,
            ),
        )
        await self.event_logger.log(
            EventType.CHAPTER_TREE,
            f"Root chapter created: {chapter.slug}",
            Priority.HIGH,
            metadata={"chapter_slug": chapter.slug, "branch_index": branch_index},
            story_slug=story.slug,
            user_id=author_id,
        )
        return chapter

    async def create_child(
        self,
        story: Story,
        author_id: str,
        parent_slug: str,
        title: str,
        content: str,
        session: AsyncSession,
        *,
        status: ChapterStatus = ChapterStatus.PUBLISHED,
        is_ending: bool = False,
    ) -> Chapter:
        """Append a chapter under ``parent_slug`` and count it on the parent."""
        parent = await self.chapters.find_by_slug(session, parent_slug)
        if parent is None:
            raise NotFoundError(
                f"Parent chapter {parent_slug} not found", "PARENT_CHAPTER_NOT_FOUND"
            )
        can_branch_from(parent, story.slug).unwrap()
        position = child_hierarchy(parent)
        branch_index = await self.counters.next_value(session, story.slug, parent.slug)
        chapter = await self.chapters.insert(
            session,
            Chapter(
                slug=slugify(title),
                story_slug=story.slug,
                parent_chapter_slug=parent.slug,
                ancestor_slugs=list(position.ancestor_slugs),
                depth=position.depth,
                branch_index=branch_index,
                author_id=author_id,
                title=title,
                content=content,
                status=status,
                is_ending=is_ending,
            ),
        )
        await self.chapters.increment_child_branches(session, parent.slug)
        await self.event_logger.log(
            EventType.CHAPTER_TREE,
            f"Chapter {chapter.slug} branched from {parent.slug}",
            Priority.NORMAL,
            metadata={
                "chapter_slug": chapter.slug,
                "parent_slug": parent.slug,
                "depth": chapter.depth,
                "branch_index": branch_index,
            },
            story_slug=story.slug,
            user_id=author_id,
        )
        return chapter

    async def replace_content(
        self,
        session: AsyncSession,
        chapter_slug: str,
        *,
        content: str,
        edited_by: str,
        title: str | None = None,
        edit_type: EditType = EditType.MANUAL_EDIT,
        pr_id: str | None = None,
        edit_reason: str | None = None,
    ) -> Chapter:
        """Snapshot the current content, then overwrite it and bump ``version``."""
        current = await self._require_live(session, chapter_slug)
        await self.versions.snapshot(
            session,
            ChapterVersion(
                chapter_slug=current.slug,
                version=current.version,
                title=current.title,
                content=current.content,
                edited_by=edited_by,
                edit_type=edit_type,
                edit_reason=edit_reason,
                pr_id=pr_id,
            ),
        )
        updated = await self.chapters.bump_version(
            session, chapter_slug, content=content, title=title or current.title
        )
        if updated is None:
            raise NotFoundError(f"Chapter {chapter_slug} not found", "CHAPTER_NOT_FOUND")
        await self.event_logger.log(
            EventType.CHAPTER_TREE,
            f"Chapter {chapter_slug} content replaced",
            Priority.NORMAL,
            metadata={"version": updated.version, "edit_type": edit_type.value, "pr_id": pr_id},
            story_slug=updated.story_slug,
            user_id=edited_by,
        )
        return updated

    async def soft_delete(
        self,
        session: AsyncSession,
        chapter_slug: str,
        *,
        deleted_by: str,
        pr_id: str | None = None,
        reason: str | None = None,
    ) -> Chapter:
        """Mark a chapter deleted, keeping a snapshot of its last content."""
        current = await self._require_live(session, chapter_slug)
        if current.is_root:
            raise BadRequestError("The root chapter cannot be deleted", "ROOT_CHAPTER_DELETE")
        await self.versions.snapshot(
            session,
            ChapterVersion(
                chapter_slug=current.slug,
                version=current.version,
                title=current.title,
                content=current.content,
                edited_by=deleted_by,
                edit_type=EditType.PR_DELETE if pr_id else EditType.MANUAL_EDIT,
                edit_reason=reason,
                pr_id=pr_id,
            ),
        )
        deleted = await self.chapters.update_fields(
            session, chapter_slug, status=ChapterStatus.DELETED.value
        )
        if deleted is None:
            raise NotFoundError(f"Chapter {chapter_slug} not found", "CHAPTER_NOT_FOUND")
        await self.event_logger.log(
            EventType.CHAPTER_TREE,
            f"Chapter {chapter_slug} deleted",
            Priority.HIGH,
            metadata={"pr_id": pr_id},
            story_slug=deleted.story_slug,
            user_id=deleted_by,
        )
        return deleted

    async def mark_pull_request(
        self, session: AsyncSession, chapter_slug: str, pull_request: ChapterPullRequest
    ) -> Chapter | None:
        return await self.chapters.update_fields(
            session, chapter_slug, pull_request=pull_request.model_dump(mode="json")
        )

    async def _require_live(self, session: AsyncSession, chapter_slug: str) -> Chapter:
        chapter = await self.chapters.find_by_slug(session, chapter_slug)
        if chapter is None:
            raise NotFoundError(f"Chapter {chapter_slug} not found", "CHAPTER_NOT_FOUND")
        if chapter.status is ChapterStatus.DELETED:
            raise BadRequestError(f"Chapter {chapter_slug} is deleted", "CHAPTER_DELETED")
        return chapter

    # ------------------------------------------------------------------
    # Read paths
    # ------------------------------------------------------------------

    async def find_root(self, session: AsyncSession, story_slug: str) -> Chapter | None:
        return await self.chapters.find_root(session, story_slug)

    async def find_siblings(self, session: AsyncSession, chapter_slug: str) -> list[Chapter]:
        """Other children of the chapter's parent, by branch index."""
        chapter = await self.chapters.find_by_slug(session, chapter_slug)
        if chapter is None:
            raise NotFoundError(f"Chapter {chapter_slug} not found", "CHAPTER_NOT_FOUND")
        children = await self.chapters.find_children(
            session, chapter.story_slug, chapter.parent_chapter_slug
        )
        return [c for c in children if c.slug != chapter.slug]

    async def find_by_author(
        self, session: AsyncSession, author_id: str, story_slug: str | None = None
    ) -> list[Chapter]:
        return await self.chapters.find_by_author(session, author_id, story_slug)

    async def ancestor_chain(self, session: AsyncSession, chapter: Chapter) -> list[Chapter]:
        """Ancestors ordered from the root down to the parent."""
        found = {
            c.slug: c for c in await self.chapters.find_by_slugs(session, chapter.ancestor_slugs)
        }
        return [found[slug] for slug in chapter.ancestor_slugs if slug in found]

    async def find_details(self, session: AsyncSession, chapter_slug: str) -> ChapterDetails:
        chapter = await self.chapters.find_by_slug(session, chapter_slug)
        if chapter is None:
            raise NotFoundError(f"Chapter {chapter_slug} not found", "CHAPTER_NOT_FOUND")
        return ChapterDetails(
            chapter=chapter,
            ancestors=await self.ancestor_chain(session, chapter),
            children=await self.chapters.find_children(session, chapter.story_slug, chapter.slug),
        )

    async def build_tree(self, session: AsyncSession, story_slug: str) -> ChapterNode:
        chapters = await self.chapters.find_by_story(session, story_slug)
        by_parent: dict[str | None, list[Chapter]] = defaultdict(list)
        for chapter in chapters:
            by_parent[chapter.parent_chapter_slug].append(chapter)
        roots = by_parent.get(None)
        if not roots:
            raise NotFoundError(f"Story {story_slug} has no root chapter", "ROOT_CHAPTER_NOT_FOUND")

        def _node(chapter: Chapter) -> ChapterNode:
            children = sorted(by_parent.get(chapter.slug, []), key=lambda c: c.branch_index)
            return ChapterNode(chapter=chapter, children=[_node(c) for c in children])

        return _node(roots[0])

    # ------------------------------------------------------------------
    # Direct authoring
    # ------------------------------------------------------------------

    async def _load_story(self, session: AsyncSession, story_slug: str) -> Story:
        story = await self.stories.find_by_slug(session, story_slug)
        if story is None:
            raise NotFoundError(f"Story {story_slug} not found", "STORY_NOT_FOUND")
        return story

    async def add_root_chapter(
        self, story_slug: str, author_id: str, title: str, content: str
    ) -> Chapter:
        """Create the story's first chapter; reserved for the story creator."""

        async def _create(session: AsyncSession) -> Chapter:
            story = await self._load_story(session, story_slug)
            if story.creator_id != author_id:
                raise ForbiddenError(
                    "Only the story creator can add the root chapter", "FORBIDDEN"
                )
            return await self.create_root(story, author_id, title, content, session)

        return await self.coordinator.run("create_root_chapter", _create)

    async def add_child_chapter(
        self,
        story_slug: str,
        parent_slug: str,
        author_id: str,
        title: str,
        content: str,
        *,
        is_ending: bool = False,
    ) -> Chapter:
        """Publish a chapter directly, without going through a pull request.

        Approvers may always do this; other writers only when the story does
        not require approval.
        """

        async def _create(session: AsyncSession) -> tuple[Chapter, str | None]:
            story = await self._load_story(session, story_slug)
            if not story.settings.allow_branching:
                raise BadRequestError("Branching is disabled for this story", "BRANCHING_DISABLED")
            role = await self.permissions.role_in(session, story, author_id)
            if not can_role_publish_chapters(
                role, require_approval=story.settings.require_approval
            ):
                raise ForbiddenError(
                    "Your role must submit new chapters as pull requests", "PR_REQUIRED"
                )
            chapter = await self.create_child(
                story, author_id, parent_slug, title, content, session, is_ending=is_ending
            )
            parent = await self.chapters.find_by_slug(session, parent_slug)
            return chapter, parent.author_id if parent else None

        chapter, parent_author = await self.coordinator.run("create_child_chapter", _create)
        if parent_author and parent_author != author_id:
            await dispatch_notification(
                self.notifier,
                NotificationEvent.NEW_BRANCH,
                {
                    "recipient_id": parent_author,
                    "actor_id": author_id,
                    "story_slug": story_slug,
                    "chapter_slug": chapter.slug,
                    "parent_slug": parent_slug,
                    "title": chapter.title,
                },
                event_logger=self.event_logger,
            )
        return chapter


__all__ = ["ChapterTreeManager"]
