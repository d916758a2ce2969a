"""Tests for invitations, membership changes and permission checks."""

import pytest

from storytree.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from storytree.models import CollaboratorRole, CollaboratorStatus
from storytree.services import NotificationEvent

from .conftest import OWNER, STORY_SLUG


async def test_invite_and_accept(core, story, notifier, clock):
    invited = await core.invite_collaborator(
        STORY_SLUG, OWNER, "alice", CollaboratorRole.CONTRIBUTOR
    )
    assert invited.status is CollaboratorStatus.PENDING
    assert invited.invited_by == OWNER
    assert await core.resolve_role("alice", STORY_SLUG) is None

    clock.advance(hours=1)
    accepted = await core.update_collaborator_status(
        STORY_SLUG, "alice", "alice", CollaboratorStatus.ACCEPTED
    )
    assert accepted.status is CollaboratorStatus.ACCEPTED
    assert accepted.accepted_at == clock.now
    assert await core.resolve_role("alice", STORY_SLUG) is CollaboratorRole.CONTRIBUTOR

    assert [(e, p["recipient_id"]) for e, p in notifier.sent] == [
        (NotificationEvent.COLLAB_INVITATION, "alice"),
        (NotificationEvent.COLLAB_ACCEPTED, OWNER),
    ]


async def test_decline_and_reinvite(core, story):
    await core.invite_collaborator(STORY_SLUG, OWNER, "bob", CollaboratorRole.REVIEWER)
    declined = await core.update_collaborator_status(
        STORY_SLUG, "bob", "bob", CollaboratorStatus.DECLINED
    )
    assert declined.status is CollaboratorStatus.DECLINED
    assert declined.accepted_at is None

    again = await core.invite_collaborator(STORY_SLUG, OWNER, "bob", CollaboratorRole.MODERATOR)
    assert again.status is CollaboratorStatus.PENDING
    assert again.role is CollaboratorRole.MODERATOR


async def test_only_invitee_may_respond(core, story):
    await core.invite_collaborator(STORY_SLUG, OWNER, "carol", CollaboratorRole.REVIEWER)
    with pytest.raises(ForbiddenError):
        await core.update_collaborator_status(
            STORY_SLUG, "carol", OWNER, CollaboratorStatus.ACCEPTED
        )
    with pytest.raises(BadRequestError) as exc_info:
        await core.update_collaborator_status(
            STORY_SLUG, "carol", "carol", CollaboratorStatus.REMOVED
        )
    assert exc_info.value.code == "INVALID_STATUS"

    await core.update_collaborator_status(STORY_SLUG, "carol", "carol", "accepted")
    with pytest.raises(BadRequestError) as exc_info:
        await core.update_collaborator_status(
            STORY_SLUG, "carol", "carol", CollaboratorStatus.DECLINED
        )
    assert exc_info.value.code == "INVITATION_NOT_PENDING"


async def test_respond_without_invitation(core, story):
    with pytest.raises(NotFoundError) as exc_info:
        await core.update_collaborator_status(
            STORY_SLUG, "dave", "dave", CollaboratorStatus.ACCEPTED
        )
    assert exc_info.value.code == "INVITATION_NOT_FOUND"


async def test_invite_conflicts(core, story, members):
    with pytest.raises(ConflictError) as exc_info:
        await core.invite_collaborator(STORY_SLUG, "coauthor-1", OWNER, CollaboratorRole.REVIEWER)
    assert exc_info.value.code == "ALREADY_OWNER"

    with pytest.raises(ConflictError) as exc_info:
        await core.invite_collaborator(
            STORY_SLUG, OWNER, "reviewer-1", CollaboratorRole.CONTRIBUTOR
        )
    assert exc_info.value.code == "ALREADY_COLLABORATOR"


async def test_invite_role_rules(core, story, members):
    with pytest.raises(ForbiddenError) as exc_info:
        await core.invite_collaborator(
            STORY_SLUG, "coauthor-1", "erin", CollaboratorRole.CO_AUTHOR
        )
    assert exc_info.value.code == "ROLE_HIERARCHY"

    with pytest.raises(ForbiddenError) as exc_info:
        await core.invite_collaborator(
            STORY_SLUG, "contributor-1", "erin", CollaboratorRole.CONTRIBUTOR
        )
    assert exc_info.value.code == "INSUFFICIENT_ROLE"

    with pytest.raises(ForbiddenError) as exc_info:
        await core.invite_collaborator(STORY_SLUG, "stranger", "erin", CollaboratorRole.REVIEWER)
    assert exc_info.value.code == "NOT_A_COLLABORATOR"

    invited = await core.invite_collaborator(
        STORY_SLUG, "coauthor-1", "erin", CollaboratorRole.MODERATOR
    )
    assert invited.invited_by == "coauthor-1"


async def test_invite_rights_checked_before_membership(core, story, members):
    with pytest.raises(ForbiddenError) as exc_info:
        await core.invite_collaborator(
            STORY_SLUG, "contributor-1", "reviewer-1", CollaboratorRole.CONTRIBUTOR
        )
    assert exc_info.value.code == "INSUFFICIENT_ROLE"

    with pytest.raises(ForbiddenError) as exc_info:
        await core.invite_collaborator(
            STORY_SLUG, "contributor-1", OWNER, CollaboratorRole.CONTRIBUTOR
        )
    assert exc_info.value.code == "INSUFFICIENT_ROLE"


async def test_removed_member_cannot_be_reinvited(core, story, members):
    await core.remove_collaborator(STORY_SLUG, "reviewer-1", OWNER)
    with pytest.raises(ConflictError) as exc_info:
        await core.invite_collaborator(STORY_SLUG, OWNER, "reviewer-1", CollaboratorRole.REVIEWER)
    assert exc_info.value.code == "COLLABORATOR_REMOVED"
    assert "removed" in exc_info.value.message


async def test_invite_into_missing_story(core):
    with pytest.raises(NotFoundError):
        await core.invite_collaborator("nope", OWNER, "erin", CollaboratorRole.REVIEWER)


async def test_remove_collaborator(core, story, members):
    with pytest.raises(BadRequestError) as exc_info:
        await core.remove_collaborator(STORY_SLUG, OWNER, "coauthor-1")
    assert exc_info.value.code == "OWNER_REMOVAL"

    # co-authors cannot remove anyone
    with pytest.raises(ForbiddenError):
        await core.remove_collaborator(STORY_SLUG, "reviewer-1", "coauthor-1")

    removed = await core.remove_collaborator(STORY_SLUG, "reviewer-1", OWNER)
    assert removed.status is CollaboratorStatus.REMOVED
    assert await core.resolve_role("reviewer-1", STORY_SLUG) is None

    left = await core.remove_collaborator(STORY_SLUG, "contributor-1", "contributor-1")
    assert left.status is CollaboratorStatus.REMOVED

    with pytest.raises(NotFoundError):
        await core.remove_collaborator(STORY_SLUG, "contributor-1", OWNER)


async def test_change_role(core, story, members):
    promoted = await core.change_role(
        STORY_SLUG, "contributor-1", OWNER, CollaboratorRole.MODERATOR
    )
    assert promoted.role is CollaboratorRole.MODERATOR
    assert await core.resolve_role("contributor-1", STORY_SLUG) is CollaboratorRole.MODERATOR

    with pytest.raises(ForbiddenError):
        await core.change_role(STORY_SLUG, "reviewer-1", "coauthor-1", CollaboratorRole.MODERATOR)
    with pytest.raises(BadRequestError):
        await core.change_role(STORY_SLUG, OWNER, OWNER, CollaboratorRole.REVIEWER)


async def test_list_collaborators(core, story, members, add_member):
    await add_member("pending-1", CollaboratorRole.REVIEWER, accept=False)
    everyone = await core.list_collaborators(STORY_SLUG)
    assert {m.user_id for m in everyone} == set(members) | {"pending-1"}
    pending = await core.list_collaborators(STORY_SLUG, CollaboratorStatus.PENDING)
    assert [m.user_id for m in pending] == ["pending-1"]


async def test_check_permission(core, story, members):
    assert await core.check_permission(OWNER, STORY_SLUG, "can_delete_story")
    assert not await core.check_permission("coauthor-1", STORY_SLUG, "can_delete_story")
    assert await core.check_permission("moderator-1", STORY_SLUG, "can_merge_prs")
    assert not await core.check_permission("reviewer-1", STORY_SLUG, "can_write_chapters")
    assert not await core.check_permission("stranger", STORY_SLUG, "can_review_prs")
    assert not await core.check_permission(OWNER, "nope", "can_review_prs")
    assert await core.resolve_role(OWNER, STORY_SLUG) is CollaboratorRole.OWNER
