# src/storytree/bootstrap.py
"""Object graph composition and system bootstrap.

``build_core`` wires repositories, services and the transaction coordinator
explicitly and returns a :class:`StoryTreeCore` facade. ``bootstrap_all``
prepares the process: environment, database readiness and migrations.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import text as sa_text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from storytree.canon.db import create_session_factory, ensure_schema, get_engine
from storytree.canon.repositories import (
    BranchCounterRepository,
    ChapterRepository,
    ChapterVersionRepository,
    CollaboratorRepository,
    PRVoteRepository,
    PullRequestRepository,
    StoryRepository,
)
from storytree.config import StoryTreeConfig
from storytree.core.env import get_config, load_env
from storytree.core.errors import NotFoundError
from storytree.core.logging import get_logger, init_logging
from storytree.core.logs import EventLogger, get_event_logger
from storytree.domain.roles import Capability
from storytree.models import (
    Chapter,
    ChapterDetails,
    ChapterNode,
    ChapterVersion,
    CollaboratorRole,
    CollaboratorStatus,
    CreatePullRequestInput,
    PRLabel,
    PRStatus,
    PullRequest,
    ReviewDecision,
    Story,
    StoryCollaborator,
    utcnow,
)
from storytree.services import (
    ChapterTreeManager,
    CollaboratorService,
    LoggingNotifier,
    Notifier,
    PermissionService,
    PullRequestService,
    PullRequestValidator,
    TransactionCoordinator,
)

logger = get_logger(__name__)


@dataclass
class StoryTreeCore:
    """Entry point exposing every story tree operation.

    All methods return pydantic models and raise
    :class:`~storytree.core.errors.StoryTreeError` subclasses on failure.
    """

    coordinator: TransactionCoordinator
    stories: StoryRepository
    chapters: ChapterRepository
    versions: ChapterVersionRepository
    permissions: PermissionService
    tree: ChapterTreeManager
    pull_requests: PullRequestService
    collaborators: CollaboratorService
    notifier: Notifier | None = None
    event_logger: EventLogger = field(default_factory=get_event_logger)

    # -- stories -------------------------------------------------------

    async def create_story(self, story: Story) -> Story:
        return await self.coordinator.run(
            "create_story", lambda session: self.stories.create_story(session, story)
        )

    async def get_story(self, slug: str) -> Story:
        async def _get(session: AsyncSession) -> Story:
            story = await self.stories.find_by_slug(session, slug)
            if story is None:
                raise NotFoundError("Story not found", "STORY_NOT_FOUND")
            return story

        return await self.coordinator.run("get_story", _get)

    # -- chapter tree --------------------------------------------------

    async def create_root_chapter(
        self, story_slug: str, author_id: str, title: str, content: str
    ) -> Chapter:
        return await self.tree.add_root_chapter(story_slug, author_id, title, content)

    async def create_child_chapter(
        self,
        story_slug: str,
        parent_slug: str,
        author_id: str,
        title: str,
        content: str,
        *,
        is_ending: bool = False,
    ) -> Chapter:
        return await self.tree.add_child_chapter(
            story_slug, parent_slug, author_id, title, content, is_ending=is_ending
        )

    async def get_chapter(self, slug: str) -> Chapter:
        async def _get(session: AsyncSession) -> Chapter:
            chapter = await self.chapters.find_by_slug(session, slug)
            if chapter is None:
                raise NotFoundError(f"Chapter {slug} not found", "CHAPTER_NOT_FOUND")
            return chapter

        return await self.coordinator.run("get_chapter", _get)

    async def get_chapter_details(self, slug: str) -> ChapterDetails:
        return await self.coordinator.run(
            "find_details", lambda session: self.tree.find_details(session, slug)
        )

    async def get_ancestors(self, slug: str) -> list[Chapter]:
        return (await self.get_chapter_details(slug)).ancestors

    async def get_siblings(self, slug: str) -> list[Chapter]:
        return await self.coordinator.run(
            "find_siblings", lambda session: self.tree.find_siblings(session, slug)
        )

    async def get_root_chapter(self, story_slug: str) -> Chapter | None:
        return await self.coordinator.run(
            "find_root", lambda session: self.tree.find_root(session, story_slug)
        )

    async def get_chapters_by_author(
        self, author_id: str, story_slug: str | None = None
    ) -> list[Chapter]:
        return await self.coordinator.run(
            "find_by_author",
            lambda session: self.tree.find_by_author(session, author_id, story_slug),
        )

    async def get_chapter_tree(self, story_slug: str) -> ChapterNode:
        return await self.coordinator.run(
            "build_tree", lambda session: self.tree.build_tree(session, story_slug)
        )

    async def get_chapter_versions(self, slug: str) -> list[ChapterVersion]:
        return await self.coordinator.run(
            "chapter_versions", lambda session: self.versions.find_for_chapter(session, slug)
        )

    # -- pull requests -------------------------------------------------

    async def create_pull_request(self, data: CreatePullRequestInput) -> PullRequest:
        return await self.pull_requests.create_pull_request(data)

    async def get_pull_request(self, pr_id: str) -> PullRequest:
        return await self.pull_requests.get_pull_request(pr_id)

    async def list_pull_requests(
        self, story_slug: str, status: PRStatus | None = None
    ) -> list[PullRequest]:
        return await self.pull_requests.list_pull_requests(story_slug, status)

    async def cast_vote(self, pr_id: str, user_id: str, vote: int) -> PullRequest:
        return await self.pull_requests.cast_vote(pr_id, user_id, vote)

    async def submit_review(
        self,
        pr_id: str,
        reviewer_id: str,
        decision: ReviewDecision,
        comment: str | None = None,
    ) -> PullRequest:
        return await self.pull_requests.submit_review(pr_id, reviewer_id, decision, comment)

    async def approve_pull_request(self, pr_id: str, user_id: str) -> PullRequest:
        return await self.pull_requests.approve_pull_request(pr_id, user_id)

    async def reject_pull_request(
        self, pr_id: str, user_id: str, reason: str | None = None
    ) -> PullRequest:
        return await self.pull_requests.reject_pull_request(pr_id, user_id, reason)

    async def close_pull_request(
        self, pr_id: str, user_id: str, reason: str | None = None
    ) -> PullRequest:
        return await self.pull_requests.close_pull_request(pr_id, user_id, reason)

    async def merge_pull_request(self, pr_id: str, user_id: str) -> PullRequest:
        return await self.pull_requests.merge_pull_request(pr_id, user_id)

    async def mark_draft(self, pr_id: str, user_id: str, reason: str | None = None) -> PullRequest:
        return await self.pull_requests.mark_draft(pr_id, user_id, reason)

    async def mark_ready(self, pr_id: str, user_id: str) -> PullRequest:
        return await self.pull_requests.mark_ready(pr_id, user_id)

    async def set_labels(self, pr_id: str, user_id: str, labels: list[PRLabel]) -> PullRequest:
        return await self.pull_requests.set_labels(pr_id, user_id, labels)

    # -- collaborators and permissions -----------------------------------

    async def invite_collaborator(
        self, slug: str, inviter_id: str, invitee_id: str, role: CollaboratorRole
    ) -> StoryCollaborator:
        return await self.collaborators.invite_collaborator(slug, inviter_id, invitee_id, role)

    async def update_collaborator_status(
        self, slug: str, user_id: str, actor_id: str, status: CollaboratorStatus
    ) -> StoryCollaborator:
        return await self.collaborators.update_collaborator_status(
            slug, user_id, actor_id, status
        )

    async def remove_collaborator(
        self, slug: str, user_id: str, actor_id: str
    ) -> StoryCollaborator:
        return await self.collaborators.remove_collaborator(slug, user_id, actor_id)

    async def change_role(
        self, slug: str, user_id: str, actor_id: str, role: CollaboratorRole
    ) -> StoryCollaborator:
        return await self.collaborators.change_role(slug, user_id, actor_id, role)

    async def list_collaborators(
        self, slug: str, status: CollaboratorStatus | None = None
    ) -> list[StoryCollaborator]:
        return await self.collaborators.list_collaborators(slug, status)

    async def resolve_role(self, user_id: str, story_slug: str) -> CollaboratorRole | None:
        return await self.permissions.resolve_role(user_id, story_slug)

    async def check_permission(
        self, user_id: str, story_slug: str, capability: Capability | str
    ) -> bool:
        return await self.permissions.check_permission(user_id, story_slug, capability)


def build_core(
    *,
    engine: AsyncEngine | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    config: StoryTreeConfig | None = None,
    notifier: Notifier | None = None,
    event_logger: EventLogger | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> StoryTreeCore:
    """Compose the full object graph.

    Nothing here is looked up from a container: every collaborator is passed
    in explicitly so tests can swap the engine, clock or notifier.
    """
    config = config or get_config()
    event_logger = event_logger or get_event_logger()
    if session_factory is None:
        session_factory = create_session_factory(engine or get_engine())
    notifier = notifier if notifier is not None else LoggingNotifier()

    coordinator = TransactionCoordinator(session_factory, config.transaction, event_logger)
    stories = StoryRepository()
    chapters = ChapterRepository()
    versions = ChapterVersionRepository()
    counters = BranchCounterRepository()
    collaborator_repo = CollaboratorRepository()
    pr_repo = PullRequestRepository()
    votes = PRVoteRepository()

    permissions = PermissionService(coordinator, stories, collaborator_repo, event_logger)
    tree = ChapterTreeManager(
        coordinator,
        stories,
        chapters,
        versions,
        counters,
        permissions,
        notifier=notifier,
        event_logger=event_logger,
    )
    validator = PullRequestValidator(stories, chapters, pr_repo, permissions)
    pull_requests = PullRequestService(
        coordinator,
        validator,
        stories,
        pr_repo,
        votes,
        permissions,
        tree,
        notifier=notifier,
        event_logger=event_logger,
        settings=config.pull_request,
        clock=clock,
    )
    collaborators = CollaboratorService(
        coordinator,
        stories,
        collaborator_repo,
        permissions,
        notifier=notifier,
        event_logger=event_logger,
        clock=clock,
    )
    return StoryTreeCore(
        coordinator=coordinator,
        stories=stories,
        chapters=chapters,
        versions=versions,
        permissions=permissions,
        tree=tree,
        pull_requests=pull_requests,
        collaborators=collaborators,
        notifier=notifier,
        event_logger=event_logger,
    )


# --------- Orchestrator state ---------

_IS_READY: bool = False


@dataclass
class _BootstrapStatus:
    started_at: float
    finished_at: float | None
    db_ready: bool
    db_migrated: bool
    steps: list[dict[str, Any]]
    error: str | None


_STATUS: _BootstrapStatus = _BootstrapStatus(
    started_at=0.0,
    finished_at=None,
    db_ready=False,
    db_migrated=False,
    steps=[],
    error=None,
)


class BootstrapError(RuntimeError):
    """Bootstrap failed unexpectedly."""


class BootstrapTimeout(TimeoutError):
    """Bootstrap step exceeded timeout."""


def _set_readiness(flag: bool) -> None:
    global _IS_READY
    _IS_READY = flag


def is_ready() -> bool:
    """Return True if bootstrap completed successfully."""
    return _IS_READY


def bootstrap_status() -> dict[str, object]:
    """Return a copy of current bootstrap status."""
    return asdict(_STATUS)


async def _wait_for_database(
    engine: AsyncEngine,
    *,
    timeout: float,
    backoff_initial: float,
    backoff_factor: float,
    max_attempts: int,
) -> None:
    """Wait for the database by running SELECT 1 with exponential backoff."""
    attempt = 0
    delay = backoff_initial
    start = time.monotonic()
    while True:
        attempt += 1
        try:
            async with engine.connect() as conn:
                await conn.execute(sa_text("SELECT 1"))
            _STATUS.db_ready = True
            logger.info("bootstrap.db.ready", extra={"attempt": attempt})
            return
        except Exception as exc:
            elapsed = time.monotonic() - start
            _STATUS.steps.append({"step": "db_wait", "attempt": attempt, "error": str(exc)})
            if elapsed > timeout or attempt >= max_attempts:
                raise BootstrapTimeout(
                    f"Database wait timed out after {elapsed:.1f}s; last error: {exc}"
                ) from exc
            logger.warning("bootstrap.db.retry", extra={"attempt": attempt, "delay": delay})
            await asyncio.sleep(delay)
            delay *= backoff_factor


async def bootstrap_all(
    *,
    timeout_db: float = 60.0,
    backoff_initial: float = 0.5,
    backoff_factor: float = 1.5,
    max_attempts: int = 20,
    migrate: bool = True,
) -> None:
    """Run the full bootstrap sequence, failing fast on irrecoverable errors.

    Steps:
      1) Load environment
      2) Wait for the database, then run migrations
      3) Mark ready
    """
    if is_ready():
        logger.info("bootstrap.already_ready")
        return

    _STATUS.started_at = time.time()
    _STATUS.finished_at = None
    _STATUS.steps.clear()
    _STATUS.error = None
    _set_readiness(False)

    logger.info("bootstrap.env.load.start")
    config = load_env()
    init_logging(level=config.system.log_level, format=config.system.log_format or None)
    logger.info("bootstrap.env.load.end")

    if not config.database.url:
        _STATUS.error = "Missing database URL (STORYTREE_DATABASE_URL or POSTGRES_*)"
        logger.error("bootstrap.db.url_missing")
        raise BootstrapError(_STATUS.error)

    engine = get_engine()
    logger.info("bootstrap.db.wait.start")
    await _wait_for_database(
        engine,
        timeout=timeout_db,
        backoff_initial=backoff_initial,
        backoff_factor=backoff_factor,
        max_attempts=max_attempts,
    )
    logger.info("bootstrap.db.wait.end")

    if migrate:
        logger.info("bootstrap.db.migrate.start")
        await ensure_schema(engine)
        _STATUS.db_migrated = True
        logger.info("bootstrap.db.migrate.end")

    _set_readiness(True)
    _STATUS.finished_at = time.time()
    logger.info("bootstrap.ready", extra={"status": bootstrap_status()})


__all__ = [
    "BootstrapError",
    "BootstrapTimeout",
    "StoryTreeCore",
    "bootstrap_all",
    "bootstrap_status",
    "build_core",
    "is_ready",
]
