# src/storytree/services/permissions.py
"""Resolve a user's role in a story and gate actions on its capabilities."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from storytree.canon.repositories import CollaboratorRepository, StoryRepository
from storytree.core.errors import ForbiddenError
from storytree.core.logs import EventLogger, EventType, Priority, get_event_logger
from storytree.domain.roles import Capability, has_capability
from storytree.models import CollaboratorRole, Story

from .transactions import TransactionCoordinator


class PermissionService:
    """Role lookups shared by every mutating service.

    The story creator is always the owner, whether or not a collaborator row
    exists. Other users hold a role only through an accepted membership.
    """

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        stories: StoryRepository,
        collaborators: CollaboratorRepository,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.stories = stories
        self.collaborators = collaborators
        self.event_logger = event_logger or get_event_logger()

    async def role_in(
        self, session: AsyncSession, story: Story, user_id: str
    ) -> CollaboratorRole | None:
        if story.creator_id == user_id:
            return CollaboratorRole.OWNER
        member = await self.collaborators.find_accepted(session, story.slug, user_id)
        return member.role if member else None

    async def require(
        self,
        session: AsyncSession,
        story: Story,
        user_id: str,
        capability: Capability,
        message: str | None = None,
    ) -> CollaboratorRole:
        """Return the user's role, raising ``ForbiddenError`` if it lacks ``capability``."""
        role = await self.role_in(session, story, user_id)
        if role is None:
            await self._denied(story, user_id, capability, None)
            raise ForbiddenError(
                "You are not a collaborator on this story", "NOT_A_COLLABORATOR"
            )
        if not has_capability(role, capability):
            await self._denied(story, user_id, capability, role)
            raise ForbiddenError(
                message or f"Your role ({role.value}) does not allow this action",
                "INSUFFICIENT_ROLE",
            )
        return role

    async def _denied(
        self,
        story: Story,
        user_id: str,
        capability: Capability,
        role: CollaboratorRole | None,
    ) -> None:
        await self.event_logger.log(
            EventType.PERMISSION,
            f"Denied {capability.value}",
            Priority.NORMAL,
            metadata={"capability": capability.value, "role": role.value if role else None},
            story_slug=story.slug,
            user_id=user_id,
        )

    async def resolve_role(self, user_id: str, story_slug: str) -> CollaboratorRole | None:
        async def _resolve(session: AsyncSession) -> CollaboratorRole | None:
            story = await self.stories.find_by_slug(session, story_slug)
            if story is None:
                return None
            return await self.role_in(session, story, user_id)

        return await self.coordinator.run("resolve_role", _resolve)

    async def check_permission(
        self, user_id: str, story_slug: str, capability: Capability | str
    ) -> bool:
        return has_capability(await self.resolve_role(user_id, story_slug), capability)


__all__ = ["PermissionService"]
