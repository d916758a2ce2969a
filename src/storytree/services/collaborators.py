# src/storytree/services/collaborators.py
"""Story collaborator invitations and membership changes."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from storytree.canon.repositories import CollaboratorRepository, StoryRepository
from storytree.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from storytree.core.logs import EventLogger, EventType, Priority, get_event_logger
from storytree.domain.roles import Capability, can_role_invite, check_role_hierarchy
from storytree.models import (
    CollaboratorRole,
    CollaboratorStatus,
    Story,
    StoryCollaborator,
    utcnow,
)

from .notifications import NotificationEvent, Notifier, dispatch_notification
from .permissions import PermissionService
from .transactions import TransactionCoordinator

_RESPONSE_EVENTS = {
    CollaboratorStatus.ACCEPTED: NotificationEvent.COLLAB_ACCEPTED,
    CollaboratorStatus.DECLINED: NotificationEvent.COLLAB_DECLINED,
}


class CollaboratorService:
    def __init__(
        self,
        coordinator: TransactionCoordinator,
        stories: StoryRepository,
        collaborators: CollaboratorRepository,
        permissions: PermissionService,
        notifier: Notifier | None = None,
        event_logger: EventLogger | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.coordinator = coordinator
        self.stories = stories
        self.collaborators = collaborators
        self.permissions = permissions
        self.notifier = notifier
        self.event_logger = event_logger or get_event_logger()
        self.clock = clock

    async def _load_story(self, session: AsyncSession, slug: str) -> Story:
        story = await self.stories.find_by_slug(session, slug)
        if story is None:
            raise NotFoundError("Story not found", "STORY_NOT_FOUND")
        return story

    async def _log(self, message: str, story_slug: str, user_id: str, **metadata: object) -> None:
        await self.event_logger.log(
            EventType.COLLABORATOR,
            message,
            Priority.NORMAL,
            metadata=dict(metadata),
            story_slug=story_slug,
            user_id=user_id,
        )

    async def invite_collaborator(
        self,
        slug: str,
        inviter_id: str,
        invitee_id: str,
        role: CollaboratorRole,
    ) -> StoryCollaborator:
        """Create a pending membership for ``invitee_id``.

        The inviter needs invite rights and may only hand out roles strictly
        below their own. A declined invitation can be sent again.
        """

        async def _invite(session: AsyncSession) -> StoryCollaborator:
            story = await self._load_story(session, slug)
            inviter_role = await self.permissions.role_in(session, story, inviter_id)
            if inviter_role is None:
                raise ForbiddenError(
                    "Only collaborators of this story can send invitations", "NOT_A_COLLABORATOR"
                )
            if not can_role_invite(inviter_role):
                raise ForbiddenError(
                    "Your role does not allow inviting collaborators", "INSUFFICIENT_ROLE"
                )
            if invitee_id == story.creator_id:
                raise ConflictError("This user is already the owner of the story", "ALREADY_OWNER")
            existing = await self.collaborators.find_member(session, slug, invitee_id)
            if existing is not None and existing.status is CollaboratorStatus.REMOVED:
                raise ConflictError(
                    "This user was removed from the story and cannot be invited again",
                    "COLLABORATOR_REMOVED",
                )
            if existing is not None and existing.status is not CollaboratorStatus.DECLINED:
                raise ConflictError(
                    "This user is already a collaborator of the story", "ALREADY_COLLABORATOR"
                )
            if not check_role_hierarchy(inviter_role, role):
                raise ForbiddenError(
                    f"A {inviter_role.value} cannot invite a {CollaboratorRole(role).value}",
                    "ROLE_HIERARCHY",
                )
            now = self.clock()
            if existing is not None:
                member = await self.collaborators.update_member(
                    session,
                    slug,
                    invitee_id,
                    expected_status=CollaboratorStatus.DECLINED,
                    role=CollaboratorRole(role).value,
                    status=CollaboratorStatus.PENDING.value,
                    invited_by=inviter_id,
                    invited_at=now,
                    accepted_at=None,
                )
                if member is None:
                    raise ConflictError("Invitation changed concurrently", "WRITE_CONFLICT")
                return member
            return await self.collaborators.add(
                session,
                StoryCollaborator(
                    slug=slug,
                    user_id=invitee_id,
                    role=role,
                    status=CollaboratorStatus.PENDING,
                    invited_by=inviter_id,
                    invited_at=now,
                ),
            )

        member = await self.coordinator.run("invite_collaborator", _invite)
        await self._log(
            f"Invited {invitee_id} as {member.role.value}",
            slug,
            inviter_id,
            invitee_id=invitee_id,
            role=member.role.value,
        )
        await dispatch_notification(
            self.notifier,
            NotificationEvent.COLLAB_INVITATION,
            {
                "recipient_id": invitee_id,
                "actor_id": inviter_id,
                "story_slug": slug,
                "role": member.role.value,
            },
            event_logger=self.event_logger,
        )
        return member

    async def update_collaborator_status(
        self,
        slug: str,
        user_id: str,
        actor_id: str,
        status: CollaboratorStatus,
    ) -> StoryCollaborator:
        """Accept or decline a pending invitation; only the invitee may answer."""
        status = CollaboratorStatus(status)
        if status not in _RESPONSE_EVENTS:
            raise BadRequestError(
                "An invitation can only be accepted or declined", "INVALID_STATUS"
            )
        if actor_id != user_id:
            raise ForbiddenError(
                "Only the invited user can respond to an invitation", "FORBIDDEN"
            )

        async def _respond(session: AsyncSession) -> tuple[StoryCollaborator, Story]:
            story = await self._load_story(session, slug)
            current = await self.collaborators.find_member(session, slug, user_id)
            if current is None:
                raise NotFoundError("Invitation not found", "INVITATION_NOT_FOUND")
            if current.status is not CollaboratorStatus.PENDING:
                raise BadRequestError(
                    f"Invitation is already {current.status.value}", "INVITATION_NOT_PENDING"
                )
            values: dict[str, object] = {"status": status.value}
            if status is CollaboratorStatus.ACCEPTED:
                values["accepted_at"] = self.clock()
            member = await self.collaborators.update_member(
                session,
                slug,
                user_id,
                expected_status=CollaboratorStatus.PENDING,
                **values,
            )
            if member is None:
                raise ConflictError("Invitation changed concurrently", "WRITE_CONFLICT")
            return member, story

        member, story = await self.coordinator.run("update_collaborator_status", _respond)
        await self._log(f"Invitation {status.value}", slug, user_id, status=status.value)
        await dispatch_notification(
            self.notifier,
            _RESPONSE_EVENTS[status],
            {
                "recipient_id": member.invited_by or story.creator_id,
                "actor_id": user_id,
                "story_slug": slug,
                "role": member.role.value,
            },
            event_logger=self.event_logger,
        )
        return member

    async def remove_collaborator(
        self, slug: str, user_id: str, actor_id: str
    ) -> StoryCollaborator:
        """Mark a membership removed; a user may also leave on their own."""

        async def _remove(session: AsyncSession) -> StoryCollaborator:
            story = await self._load_story(session, slug)
            if user_id == story.creator_id:
                raise BadRequestError("The story owner cannot be removed", "OWNER_REMOVAL")
            current = await self.collaborators.find_member(session, slug, user_id)
            if current is None or current.status in (
                CollaboratorStatus.REMOVED,
                CollaboratorStatus.DECLINED,
            ):
                raise NotFoundError("Collaborator not found", "COLLABORATOR_NOT_FOUND")
            if actor_id != user_id:
                actor_role = await self.permissions.require(
                    session, story, actor_id, Capability.REMOVE_COLLABORATORS
                )
                if not check_role_hierarchy(actor_role, current.role):
                    raise ForbiddenError(
                        f"A {actor_role.value} cannot remove a {current.role.value}",
                        "ROLE_HIERARCHY",
                    )
            member = await self.collaborators.update_member(
                session,
                slug,
                user_id,
                expected_status=current.status,
                status=CollaboratorStatus.REMOVED.value,
            )
            if member is None:
                raise ConflictError("Collaborator changed concurrently", "WRITE_CONFLICT")
            return member

        member = await self.coordinator.run("remove_collaborator", _remove)
        await self._log(f"Removed {user_id}", slug, actor_id, removed_user_id=user_id)
        return member

    async def change_role(
        self, slug: str, user_id: str, actor_id: str, role: CollaboratorRole
    ) -> StoryCollaborator:
        role = CollaboratorRole(role)

        async def _change(session: AsyncSession) -> StoryCollaborator:
            story = await self._load_story(session, slug)
            if user_id == story.creator_id:
                raise BadRequestError("The story owner's role cannot change", "OWNER_ROLE")
            actor_role = await self.permissions.require(
                session, story, actor_id, Capability.CHANGE_PERMISSIONS
            )
            current = await self.collaborators.find_member(session, slug, user_id)
            if current is None or current.status not in (
                CollaboratorStatus.PENDING,
                CollaboratorStatus.ACCEPTED,
            ):
                raise NotFoundError("Collaborator not found", "COLLABORATOR_NOT_FOUND")
            if not (
                check_role_hierarchy(actor_role, current.role)
                and check_role_hierarchy(actor_role, role)
            ):
                raise ForbiddenError(
                    f"A {actor_role.value} cannot assign the {role.value} role",
                    "ROLE_HIERARCHY",
                )
            member = await self.collaborators.update_member(
                session, slug, user_id, expected_status=current.status, role=role.value
            )
            if member is None:
                raise ConflictError("Collaborator changed concurrently", "WRITE_CONFLICT")
            return member

        member = await self.coordinator.run("change_role", _change)
        await self._log(f"Role of {user_id} set to {role.value}", slug, actor_id, role=role.value)
        return member

    async def list_collaborators(
        self, slug: str, status: CollaboratorStatus | None = None
    ) -> list[StoryCollaborator]:
        async def _list(session: AsyncSession) -> list[StoryCollaborator]:
            await self._load_story(session, slug)
            return await self.collaborators.list_for_story(session, slug, status)

        return await self.coordinator.run("list_collaborators", _list)


__all__ = ["CollaboratorService"]
