"""Shared fixtures: an in-memory SQLite database and a fully wired core."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio

from storytree.bootstrap import StoryTreeCore, build_core
from storytree.canon.db import create_all, create_engine, create_session_factory
from storytree.config import StoryTreeConfig, TransactionConfig
from storytree.core.logs import EventLogger
from storytree.models import (
    Chapter,
    CollaboratorRole,
    CollaboratorStatus,
    Story,
    StorySettings,
)
from storytree.services import NotificationEvent

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

OWNER = "owner-1"
STORY_SLUG = "my-story"


class FakeClock:
    """Clock the tests move by hand."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 1, 12, 0, tzinfo=UTC))


class RecordingNotifier:
    """Notifier that keeps every notification it receives."""

    def __init__(self) -> None:
        self.sent: list[tuple[NotificationEvent, dict[str, Any]]] = []

    async def notify(self, event: NotificationEvent, payload: dict[str, Any]) -> None:
        self.sent.append((event, dict(payload)))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def event_logger() -> EventLogger:
    return EventLogger(max_events=1000)


@pytest.fixture
def config() -> StoryTreeConfig:
    return StoryTreeConfig(transaction=TransactionConfig(retry_attempts=2, retry_backoff=0.0))


@pytest_asyncio.fixture
async def engine():
    engine = create_engine(url=TEST_DATABASE_URL)
    await create_all(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def core(session_factory, config, notifier, event_logger, clock) -> StoryTreeCore:
    return build_core(
        session_factory=session_factory,
        config=config,
        notifier=notifier,
        event_logger=event_logger,
        clock=clock,
    )


@pytest_asyncio.fixture
async def story(core: StoryTreeCore) -> Story:
    return await core.create_story(
        Story(slug=STORY_SLUG, title="My Story", creator_id=OWNER, settings=StorySettings())
    )


@pytest_asyncio.fixture
async def root(core: StoryTreeCore, story: Story) -> Chapter:
    return await core.create_root_chapter(story.slug, OWNER, "Intro", "Once upon a time.")


@pytest.fixture
def add_member(core: StoryTreeCore) -> Callable[..., Awaitable[None]]:
    """Invite ``user_id`` as ``role`` from the owner and accept the invitation."""

    async def _add(
        user_id: str,
        role: CollaboratorRole,
        *,
        story_slug: str = STORY_SLUG,
        accept: bool = True,
    ) -> None:
        await core.invite_collaborator(story_slug, OWNER, user_id, role)
        if accept:
            await core.update_collaborator_status(
                story_slug, user_id, user_id, CollaboratorStatus.ACCEPTED
            )

    return _add


@pytest_asyncio.fixture
async def members(add_member) -> AsyncIterator[dict[str, CollaboratorRole]]:
    roles = {
        "coauthor-1": CollaboratorRole.CO_AUTHOR,
        "moderator-1": CollaboratorRole.MODERATOR,
        "reviewer-1": CollaboratorRole.REVIEWER,
        "contributor-1": CollaboratorRole.CONTRIBUTOR,
    }
    for user_id, role in roles.items():
        await add_member(user_id, role)
    yield roles
