# src/storytree/domain/__init__.py
"""Pure domain rules: roles, tree positions and the pull request lifecycle."""

from .chapter_rules import ROOT_POSITION, TreePosition, can_branch_from, child_hierarchy, target_key
from .pull_request_rules import (
    PullRequestStateMachine,
    compute_approvals_status,
    should_auto_approve,
)
from .roles import (
    ROLE_CAPABILITIES,
    Capability,
    ROLE_HIERARCHY,
    RoleCapabilities,
    can_role_approve_pr,
    can_role_create_pr,
    can_role_invite,
    can_role_publish_chapters,
    capabilities_for,
    check_role_hierarchy,
    has_capability,
)

__all__ = [
    "ROOT_POSITION",
    "TreePosition",
    "can_branch_from",
    "child_hierarchy",
    "target_key",
    "PullRequestStateMachine",
    "compute_approvals_status",
    "should_auto_approve",
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
]
