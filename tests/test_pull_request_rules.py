"""Tests for the pull request state machine and approval rules."""

from datetime import UTC, datetime, timedelta

import pytest

from storytree.core.errors import BadRequestError
from storytree.domain.chapter_rules import ROOT_POSITION, can_branch_from, child_hierarchy, target_key
from storytree.domain.pull_request_rules import (
    PullRequestStateMachine,
    compute_approvals_status,
    minutes_between,
    should_auto_approve,
)
from storytree.models import Chapter, ChapterStatus, PRStatus

CREATED = datetime(2024, 1, 1, tzinfo=UTC)


def _auto(**overrides):
    params = {
        "enabled": True,
        "is_draft": False,
        "status": PRStatus.OPEN,
        "score": 10,
        "threshold": 5,
        "created_at": CREATED,
        "time_window": 7,
        "now": CREATED + timedelta(days=2),
    }
    params.update(overrides)
    return should_auto_approve(**params)


@pytest.mark.parametrize(
    "current,trigger,expected",
    [
        (PRStatus.OPEN, "approve", PRStatus.APPROVED),
        (PRStatus.OPEN, "reject", PRStatus.REJECTED),
        (PRStatus.OPEN, "close", PRStatus.CLOSED),
        (PRStatus.APPROVED, "close", PRStatus.CLOSED),
        (PRStatus.APPROVED, "merge", PRStatus.MERGED),
    ],
)
def test_allowed_transitions(current, trigger, expected):
    assert PullRequestStateMachine(current).fire(trigger) is expected


@pytest.mark.parametrize(
    "current,trigger",
    [
        (PRStatus.OPEN, "merge"),
        (PRStatus.APPROVED, "approve"),
        (PRStatus.APPROVED, "reject"),
        (PRStatus.MERGED, "close"),
        (PRStatus.REJECTED, "approve"),
        (PRStatus.CLOSED, "merge"),
    ],
)
def test_forbidden_transitions(current, trigger):
    with pytest.raises(BadRequestError) as exc_info:
        PullRequestStateMachine(current, "pr-1").fire(trigger)
    assert exc_info.value.code == "INVALID_PR_STATUS"


def test_terminal_states_have_no_triggers():
    for status in (PRStatus.REJECTED, PRStatus.CLOSED, PRStatus.MERGED):
        machine = PullRequestStateMachine(status)
        assert not any(machine.can(t) for t in ("approve", "reject", "close", "merge"))


def test_machine_accepts_plain_strings():
    machine = PullRequestStateMachine("open")
    assert machine.can("approve")
    assert machine.fire("approve") is PRStatus.APPROVED
    assert machine.status is PRStatus.APPROVED


def test_auto_approval_inside_window():
    assert _auto()


def test_auto_approval_never_below_threshold():
    assert not _auto(score=4)


def test_auto_approval_never_after_window():
    assert not _auto(now=CREATED + timedelta(days=8))


def test_auto_approval_respects_flags():
    assert not _auto(enabled=False)
    assert not _auto(is_draft=True)
    assert not _auto(status=PRStatus.APPROVED)


def test_approvals_summary():
    status = compute_approvals_status(2, ["a", "b", "a"], ["c", "b"])
    assert status.approvers == ["a", "b"]
    assert status.blockers == ["c"]
    assert status.received == 2
    assert status.pending == 0
    assert not status.can_merge
    assert compute_approvals_status(1, ["a"], []).can_merge


def test_minutes_between():
    assert minutes_between(CREATED, CREATED + timedelta(hours=2, seconds=30)) == 120


def _chapter(slug, **extra):
    return Chapter(slug=slug, story_slug="s", author_id="u", title=slug.title(), **extra)


def test_child_hierarchy_extends_parent():
    parent = _chapter("b", parent_chapter_slug="a", ancestor_slugs=["a"], depth=1)
    position = child_hierarchy(parent)
    assert position.depth == 2
    assert position.ancestor_slugs == ("a", "b")
    assert position.parent_slug == "b"
    assert ROOT_POSITION.depth == 0 and ROOT_POSITION.parent_slug is None


def test_can_branch_from():
    parent = _chapter("a")
    assert can_branch_from(parent, "s").ok
    other_story = can_branch_from(parent, "other")
    assert not other_story.ok and other_story.code == "INVALID_PARENT_CHAPTER"
    deleted = can_branch_from(_chapter("d", status=ChapterStatus.DELETED), "s")
    with pytest.raises(BadRequestError):
        deleted.unwrap()


def test_target_key():
    assert target_key("c1", "root") == "c1"
    assert target_key(None, "root") == "new:root"
