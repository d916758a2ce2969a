# src/storytree/domain/roles.py
"""Collaborator role ranking and the fixed capability table.

Ranks are ordered contributor < reviewer < moderator < co_author < owner.
A role may only hand out roles strictly below its own rank.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum

from storytree.models import CollaboratorRole

ROLE_HIERARCHY: dict[CollaboratorRole, int] = {
    CollaboratorRole.CONTRIBUTOR: 0,
    CollaboratorRole.REVIEWER: 1,
    CollaboratorRole.MODERATOR: 2,
    CollaboratorRole.CO_AUTHOR: 3,
    CollaboratorRole.OWNER: 4,
}


class Capability(str, Enum):
    """Names of the switches on :class:`RoleCapabilities`."""

    EDIT_STORY_SETTINGS = "can_edit_story_settings"
    DELETE_STORY = "can_delete_story"
    ARCHIVE_STORY = "can_archive_story"
    WRITE_CHAPTERS = "can_write_chapters"
    EDIT_ANY_CHAPTER = "can_edit_any_chapter"
    DELETE_ANY_CHAPTER = "can_delete_any_chapter"
    APPROVE_PRS = "can_approve_prs"
    REJECT_PRS = "can_reject_prs"
    REVIEW_PRS = "can_review_prs"
    MERGE_PRS = "can_merge_prs"
    INVITE_COLLABORATORS = "can_invite_collaborators"
    REMOVE_COLLABORATORS = "can_remove_collaborators"
    CHANGE_PERMISSIONS = "can_change_permissions"
    MODERATE_COMMENTS = "can_moderate_comments"
    DELETE_COMMENTS = "can_delete_comments"
    BAN_FROM_STORY = "can_ban_from_story"
    VIEW_STORY_ANALYTICS = "can_view_story_analytics"


@dataclass(frozen=True)
class RoleCapabilities:
    """What a role may do inside a story."""

    can_edit_story_settings: bool = False
    can_delete_story: bool = False
    can_archive_story: bool = False
    can_write_chapters: bool = False
    can_edit_any_chapter: bool = False
    can_delete_any_chapter: bool = False
    can_approve_prs: bool = False
    can_reject_prs: bool = False
    can_review_prs: bool = False
    can_merge_prs: bool = False
    can_invite_collaborators: bool = False
    can_remove_collaborators: bool = False
    can_change_permissions: bool = False
    can_moderate_comments: bool = False
    can_delete_comments: bool = False
    can_ban_from_story: bool = False
    can_view_story_analytics: bool = False

    def allows(self, capability: Capability | str) -> bool:
        """Whether ``capability`` is granted; unknown names raise ``ValueError``."""
        return bool(getattr(self, Capability(capability).value))

    def granted(self) -> list[str]:
        return [f.name for f in fields(self) if getattr(self, f.name)]


CAPABILITY_NAMES: frozenset[str] = frozenset(c.value for c in Capability)

_ALL = {name: True for name in CAPABILITY_NAMES}

ROLE_CAPABILITIES: dict[CollaboratorRole, RoleCapabilities] = {
    CollaboratorRole.OWNER: RoleCapabilities(**_ALL),
    CollaboratorRole.CO_AUTHOR: RoleCapabilities(
        **{
            **_ALL,
            "can_delete_story": False,
            "can_remove_collaborators": False,
            "can_change_permissions": False,
        }
    ),
    CollaboratorRole.MODERATOR: RoleCapabilities(
        can_write_chapters=True,
        can_approve_prs=True,
        can_reject_prs=True,
        can_review_prs=True,
        can_merge_prs=True,
        can_moderate_comments=True,
        can_delete_comments=True,
        can_ban_from_story=True,
    ),
    # Reviewers review; they do not author chapters or open PRs.
    CollaboratorRole.REVIEWER: RoleCapabilities(can_review_prs=True),
    CollaboratorRole.CONTRIBUTOR: RoleCapabilities(can_write_chapters=True),
}


def _coerce(role: CollaboratorRole | str) -> CollaboratorRole:
    return role if isinstance(role, CollaboratorRole) else CollaboratorRole(role)


def role_rank(role: CollaboratorRole | str) -> int:
    return ROLE_HIERARCHY[_coerce(role)]


def capabilities_for(role: CollaboratorRole | str | None) -> RoleCapabilities:
    """Return the capability record for ``role``; no role grants nothing."""
    if role is None:
        return RoleCapabilities()
    return ROLE_CAPABILITIES[_coerce(role)]


def has_capability(role: CollaboratorRole | str | None, capability: Capability | str) -> bool:
    return capabilities_for(role).allows(capability)


def check_role_hierarchy(
    inviter_role: CollaboratorRole | str, target_role: CollaboratorRole | str
) -> bool:
    """True iff ``inviter_role`` outranks ``target_role``."""
    return role_rank(target_role) < role_rank(inviter_role)


def can_role_create_pr(role: CollaboratorRole | str | None) -> bool:
    return has_capability(role, Capability.WRITE_CHAPTERS)


def can_role_publish_chapters(
    role: CollaboratorRole | str | None, *, require_approval: bool = True
) -> bool:
    """Whether ``role`` may add a chapter without opening a pull request.

    Roles that approve PRs always may. When the story does not require
    approval, any role that writes chapters may too.
    """
    if can_role_approve_pr(role):
        return True
    return not require_approval and can_role_create_pr(role)


def can_role_approve_pr(role: CollaboratorRole | str | None) -> bool:
    return has_capability(role, Capability.APPROVE_PRS)


def can_role_invite(role: CollaboratorRole | str | None) -> bool:
    return has_capability(role, Capability.INVITE_COLLABORATORS)


__all__ = [
    "CAPABILITY_NAMES",
    "Capability",
    "ROLE_CAPABILITIES",
    "ROLE_HIERARCHY",
    "RoleCapabilities",
    "can_role_approve_pr",
    "can_role_create_pr",
    "can_role_invite",
    "can_role_publish_chapters",
    "capabilities_for",
    "check_role_hierarchy",
    "has_capability",
    "role_rank",
]
