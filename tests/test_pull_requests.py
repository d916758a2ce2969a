"""Tests for the pull request lifecycle."""

import pytest
import pytest_asyncio

from storytree.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from storytree.domain.chapter_rules import target_key
from storytree.models import (
    AutoApproveConfig,
    ChapterStatus,
    CreatePullRequestInput,
    EditType,
    PRLabel,
    PRStatus,
    PRType,
    ReviewDecision,
    TimelineAction,
    new_id,
)
from storytree.services import NotificationEvent

from .conftest import OWNER, STORY_SLUG

CONTRIBUTOR = "contributor-1"
REVIEWER = "reviewer-1"
MODERATOR = "moderator-1"


@pytest_asyncio.fixture
async def chapter(core, root, members):
    return await core.create_child_chapter(
        STORY_SLUG, root.slug, OWNER, "Chapter One", "Line one.\nLine two."
    )


def edit_input(chapter_slug, author_id=CONTRIBUTOR, **extra):
    return CreatePullRequestInput(
        story_slug=STORY_SLUG,
        author_id=author_id,
        pr_type=PRType.EDIT_CHAPTER,
        title="Tighten chapter one",
        chapter_slug=chapter_slug,
        proposed="Line one.\nLine two, improved.",
        **extra,
    )


def new_input(parent_slug, author_id=CONTRIBUTOR, **extra):
    return CreatePullRequestInput(
        story_slug=STORY_SLUG,
        author_id=author_id,
        pr_type=PRType.NEW_CHAPTER,
        title="A new path",
        parent_chapter_slug=parent_slug,
        proposed="The path forks.",
        **extra,
    )


async def test_create_edit_pull_request(core, chapter, notifier):
    notifier.sent.clear()
    pr = await core.create_pull_request(edit_input(chapter.slug))

    assert pr.status is PRStatus.OPEN
    assert pr.chapter_slug == chapter.slug
    assert pr.parent_chapter_slug == chapter.parent_chapter_slug
    assert pr.changes.original == chapter.content
    assert pr.changes.additions_count == 1
    assert pr.changes.deletions_count == 1
    assert [e.action for e in pr.timeline] == [TimelineAction.CREATED]
    assert pr.approvals_status.required == 1

    marked = await core.get_chapter(chapter.slug)
    assert marked.pull_request.is_pr
    assert marked.pull_request.pr_id == pr.id
    assert marked.pull_request.status == "open"
    assert [(e, p["recipient_id"]) for e, p in notifier.sent] == [
        (NotificationEvent.PR_OPENED, OWNER)
    ]


async def test_reviewer_cannot_open_pull_request(core, root, members):
    with pytest.raises(ForbiddenError):
        await core.create_pull_request(new_input(root.slug, author_id=REVIEWER))
    assert await core.list_pull_requests(STORY_SLUG) == []


async def test_outsiders_and_pending_members_are_forbidden(core, root, add_member):
    await add_member("pending-1", "contributor", accept=False)
    for user_id in ("stranger", "pending-1"):
        with pytest.raises(ForbiddenError):
            await core.create_pull_request(new_input(root.slug, author_id=user_id))


async def test_duplicate_open_pull_request_conflicts(core, chapter):
    await core.create_pull_request(edit_input(chapter.slug))
    with pytest.raises(ConflictError) as exc_info:
        await core.create_pull_request(edit_input(chapter.slug))
    assert exc_info.value.code == "DUPLICATE_OPEN_PR"
    # another author may still propose a change to the same chapter
    other = await core.create_pull_request(edit_input(chapter.slug, author_id="coauthor-1"))
    assert other.status is PRStatus.OPEN


async def test_closing_frees_the_target(core, chapter):
    pr = await core.create_pull_request(edit_input(chapter.slug))
    closed = await core.close_pull_request(pr.id, CONTRIBUTOR, "Not ready")
    assert closed.status is PRStatus.CLOSED
    assert closed.closed_by == CONTRIBUTOR
    assert closed.close_reason == "Not ready"
    again = await core.create_pull_request(edit_input(chapter.slug))
    assert again.id != pr.id


async def test_approved_pull_request_does_not_block_a_new_one(core, chapter):
    pr = await core.create_pull_request(edit_input(chapter.slug))
    await core.approve_pull_request(pr.id, MODERATOR)
    follow_up = await core.create_pull_request(edit_input(chapter.slug))
    assert follow_up.status is PRStatus.OPEN
    assert follow_up.id != pr.id


async def test_schema_rejects_second_open_pull_request(core, chapter):
    pr = await core.create_pull_request(edit_input(chapter.slug))
    repo = core.pull_requests.pull_requests
    twin = pr.model_copy(update={"id": new_id(), "timeline": []})

    async def _insert(session):
        return await repo.insert(session, twin, target_key(chapter.slug, chapter.slug))

    with pytest.raises(ConflictError) as exc_info:
        await core.coordinator.run("insert_twin", _insert)
    assert exc_info.value.code == "WRITE_CONFLICT"


async def test_validation_failures(core, root, chapter):
    with pytest.raises(NotFoundError) as exc_info:
        await core.create_pull_request(edit_input("missing"))
    assert exc_info.value.code == "CHAPTER_NOT_FOUND"

    with pytest.raises(NotFoundError) as exc_info:
        await core.create_pull_request(new_input("missing"))
    assert exc_info.value.code == "PARENT_CHAPTER_NOT_FOUND"

    with pytest.raises(BadRequestError):
        await core.create_pull_request(new_input(None))

    with pytest.raises(NotFoundError) as exc_info:
        await core.create_pull_request(
            edit_input(chapter.slug).model_copy(update={"story_slug": "nope"})
        )
    assert exc_info.value.code == "STORY_NOT_FOUND"


async def test_merge_requires_approval(core, chapter):
    pr = await core.create_pull_request(edit_input(chapter.slug))
    with pytest.raises(BadRequestError) as exc_info:
        await core.merge_pull_request(pr.id, OWNER)
    assert exc_info.value.code == "INVALID_PR_STATUS"
    assert (await core.get_chapter(chapter.slug)).version == 1


async def test_merge_edit_replaces_content(core, chapter, notifier, clock):
    pr = await core.create_pull_request(edit_input(chapter.slug))
    approved = await core.approve_pull_request(pr.id, MODERATOR)
    assert approved.status is PRStatus.APPROVED
    assert approved.reviewed_by == MODERATOR
    assert approved.approvals_status.can_merge

    clock.advance(minutes=90)
    notifier.sent.clear()
    merged = await core.merge_pull_request(pr.id, OWNER)

    assert merged.status is PRStatus.MERGED
    assert merged.merged_by == OWNER
    assert merged.merged_at == clock.now
    assert merged.stats.time_to_merge == 90
    assert merged.timeline[-1].action is TimelineAction.MERGED

    updated = await core.get_chapter(chapter.slug)
    assert updated.content == "Line one.\nLine two, improved."
    assert updated.version == 2
    assert updated.pull_request.status == "merged"

    versions = await core.get_chapter_versions(chapter.slug)
    assert [(v.version, v.content, v.edit_type) for v in versions] == [
        (1, "Line one.\nLine two.", EditType.PR_MERGE)
    ]
    assert versions[0].pr_id == pr.id
    assert [e for e, _ in notifier.sent] == [NotificationEvent.PR_MERGED]


async def test_merge_new_chapter_creates_child(core, root, chapter):
    pr = await core.create_pull_request(new_input(root.slug))
    assert pr.chapter_slug is None
    assert pr.parent_chapter_slug == root.slug
    await core.approve_pull_request(pr.id, OWNER)
    merged = await core.merge_pull_request(pr.id, "coauthor-1")

    created = await core.get_chapter(merged.chapter_slug)
    assert created.parent_chapter_slug == root.slug
    assert created.author_id == CONTRIBUTOR
    assert created.content == "The path forks."
    assert created.depth == 1
    assert created.branch_index == 2
    assert created.pull_request.pr_id == pr.id
    assert (await core.get_chapter(root.slug)).stats.child_branches == 2


async def test_merge_delete_soft_deletes(core, root, chapter):
    pr = await core.create_pull_request(
        CreatePullRequestInput(
            story_slug=STORY_SLUG,
            author_id=CONTRIBUTOR,
            pr_type=PRType.DELETE_CHAPTER,
            title="Remove chapter one",
            chapter_slug=chapter.slug,
        )
    )
    assert pr.changes.original == chapter.content
    await core.approve_pull_request(pr.id, OWNER)
    await core.merge_pull_request(pr.id, OWNER)

    deleted = await core.get_chapter(chapter.slug)
    assert deleted.status is ChapterStatus.DELETED
    assert (await core.get_chapter_details(root.slug)).children == []
    # branch indexes are never reused
    fresh = await core.create_child_chapter(STORY_SLUG, root.slug, OWNER, "Replacement", "...")
    assert fresh.branch_index == 2


async def test_stale_edit_cannot_merge(core, chapter):
    first = await core.create_pull_request(edit_input(chapter.slug))
    second = await core.create_pull_request(edit_input(chapter.slug, author_id="coauthor-1"))
    await core.approve_pull_request(first.id, OWNER)
    await core.approve_pull_request(second.id, OWNER)
    await core.merge_pull_request(first.id, OWNER)

    with pytest.raises(ConflictError) as exc_info:
        await core.merge_pull_request(second.id, OWNER)
    assert exc_info.value.code == "CHAPTER_CHANGED_SINCE_PR"
    assert (await core.get_pull_request(second.id)).status is PRStatus.APPROVED
    assert (await core.get_chapter(chapter.slug)).version == 2


async def test_terminal_pull_requests_stay_terminal(core, chapter):
    pr = await core.create_pull_request(edit_input(chapter.slug))
    rejected = await core.reject_pull_request(pr.id, MODERATOR, "Off tone")
    assert rejected.status is PRStatus.REJECTED
    assert rejected.rejection_reason == "Off tone"
    for action in (core.approve_pull_request, core.merge_pull_request, core.close_pull_request):
        with pytest.raises(BadRequestError):
            await action(pr.id, OWNER)


async def test_reject_and_close_need_rights(core, chapter):
    pr = await core.create_pull_request(edit_input(chapter.slug))
    with pytest.raises(ForbiddenError) as exc_info:
        await core.reject_pull_request(pr.id, REVIEWER)
    assert exc_info.value.code == "INSUFFICIENT_ROLE"
    with pytest.raises(ForbiddenError):
        await core.close_pull_request(pr.id, "stranger")
    with pytest.raises(ForbiddenError):
        await core.merge_pull_request(pr.id, CONTRIBUTOR)
    closed = await core.close_pull_request(pr.id, MODERATOR)
    assert closed.status is PRStatus.CLOSED


async def test_approved_pull_request_can_be_closed(core, chapter):
    pr = await core.create_pull_request(edit_input(chapter.slug))
    await core.approve_pull_request(pr.id, OWNER)
    closed = await core.close_pull_request(pr.id, CONTRIBUTOR)
    assert closed.status is PRStatus.CLOSED


async def test_votes(core, chapter):
    pr = await core.create_pull_request(edit_input(chapter.slug))
    await core.cast_vote(pr.id, "reader-1", 1)
    await core.cast_vote(pr.id, "reader-2", 1)
    voted = await core.cast_vote(pr.id, "reader-3", -1)
    assert (voted.votes.upvotes, voted.votes.downvotes, voted.votes.score) == (2, 1, 1)

    # repeating a vote changes nothing, flipping it moves both counters
    same = await core.cast_vote(pr.id, "reader-1", 1)
    assert same.votes.score == 1
    flipped = await core.cast_vote(pr.id, "reader-3", 1)
    assert (flipped.votes.upvotes, flipped.votes.downvotes, flipped.votes.score) == (3, 0, 3)

    with pytest.raises(BadRequestError) as exc_info:
        await core.cast_vote(pr.id, "reader-4", 0)
    assert exc_info.value.code == "INVALID_VOTE"


async def test_votes_rejected_on_closed_pull_request(core, chapter):
    pr = await core.create_pull_request(edit_input(chapter.slug))
    await core.close_pull_request(pr.id, CONTRIBUTOR)
    with pytest.raises(BadRequestError) as exc_info:
        await core.cast_vote(pr.id, "reader-1", 1)
    assert exc_info.value.code == "PR_NOT_VOTABLE"


async def _vote_up(core, pr_id, count):
    result = None
    for n in range(count):
        result = await core.cast_vote(pr_id, f"reader-{n}", 1)
    return result


AUTO = AutoApproveConfig(enabled=True, threshold=5, time_window=7)


async def test_auto_approval_skipped_after_window(core, chapter, clock):
    pr = await core.create_pull_request(edit_input(chapter.slug, auto_approve=AUTO))
    clock.advance(days=8)
    voted = await _vote_up(core, pr.id, 10)
    assert voted.votes.score == 10
    assert voted.status is PRStatus.OPEN
    assert (await core.get_pull_request(pr.id)).status is PRStatus.OPEN


async def test_auto_approval_inside_window(core, chapter, clock, notifier):
    pr = await core.create_pull_request(edit_input(chapter.slug, auto_approve=AUTO))
    clock.advance(days=2)
    notifier.sent.clear()
    voted = await _vote_up(core, pr.id, 10)
    assert voted.status is PRStatus.APPROVED
    assert voted.votes.score == 10
    assert voted.reviewed_by == "system"
    assert voted.auto_approve.auto_approved_at == clock.now
    assert TimelineAction.AUTO_APPROVED in [e.action for e in voted.timeline]
    assert (NotificationEvent.PR_APPROVED, CONTRIBUTOR) in [
        (e, p["recipient_id"]) for e, p in notifier.sent
    ]


async def test_auto_approval_not_before_threshold(core, chapter, clock):
    pr = await core.create_pull_request(edit_input(chapter.slug, auto_approve=AUTO))
    voted = await _vote_up(core, pr.id, 4)
    assert voted.status is PRStatus.OPEN
    assert voted.auto_approve.qualified_at is None


async def test_draft_lifecycle(core, chapter, clock):
    pr = await core.create_pull_request(edit_input(chapter.slug, is_draft=True, auto_approve=AUTO))
    assert pr.is_draft and pr.drafted_at == clock.now
    with pytest.raises(BadRequestError) as exc_info:
        await core.approve_pull_request(pr.id, OWNER)
    assert exc_info.value.code == "PR_IS_DRAFT"

    # drafts collect votes but are not auto-approved until ready
    voted = await _vote_up(core, pr.id, 5)
    assert voted.status is PRStatus.OPEN

    with pytest.raises(ForbiddenError) as exc_info:
        await core.mark_ready(pr.id, OWNER)
    assert exc_info.value.code == "NOT_PR_AUTHOR"

    ready = await core.mark_ready(pr.id, CONTRIBUTOR)
    assert not ready.is_draft
    assert ready.status is PRStatus.APPROVED

    with pytest.raises(BadRequestError):
        await core.mark_draft(pr.id, CONTRIBUTOR, "more work")


async def test_mark_draft(core, chapter):
    pr = await core.create_pull_request(edit_input(chapter.slug))
    drafted = await core.mark_draft(pr.id, CONTRIBUTOR, "more work")
    assert drafted.is_draft
    assert drafted.draft_reason == "more work"
    assert drafted.timeline[-1].action is TimelineAction.MARKED_DRAFT


async def test_reviews(core, chapter):
    pr = await core.create_pull_request(edit_input(chapter.slug))
    reviewed = await core.submit_review(pr.id, REVIEWER, ReviewDecision.APPROVE, "Nice")
    assert reviewed.approvals_status.approvers == [REVIEWER]
    assert reviewed.approvals_status.can_merge
    assert reviewed.stats.reviews_received == 1
    assert reviewed.status is PRStatus.OPEN

    blocked = await core.submit_review(pr.id, MODERATOR, ReviewDecision.REQUEST_CHANGES)
    assert blocked.approvals_status.blockers == [MODERATOR]
    assert not blocked.approvals_status.can_merge
    assert blocked.timeline[-1].action is TimelineAction.CHANGES_REQUESTED

    commented = await core.submit_review(pr.id, MODERATOR, ReviewDecision.COMMENT, "Hmm")
    assert commented.approvals_status.blockers == [MODERATOR]
    assert commented.stats.reviews_received == 3

    with pytest.raises(ForbiddenError):
        await core.submit_review(pr.id, "stranger", ReviewDecision.APPROVE)


async def test_self_review_rejected(core, chapter):
    pr = await core.create_pull_request(edit_input(chapter.slug, author_id="coauthor-1"))
    with pytest.raises(BadRequestError) as exc_info:
        await core.submit_review(pr.id, "coauthor-1", ReviewDecision.APPROVE)
    assert exc_info.value.code == "SELF_REVIEW"


async def test_labels(core, chapter):
    pr = await core.create_pull_request(edit_input(chapter.slug, labels=[PRLabel.NEEDS_REVIEW]))
    assert pr.labels == [PRLabel.NEEDS_REVIEW]
    labelled = await core.set_labels(pr.id, REVIEWER, [PRLabel.GRAMMAR, PRLabel.GRAMMAR])
    assert labelled.labels == [PRLabel.GRAMMAR]
    entry = labelled.timeline[-1]
    assert entry.action is TimelineAction.LABELS_CHANGED
    assert entry.metadata == {"added": ["grammar"], "removed": ["needs_review"]}
    with pytest.raises(ForbiddenError):
        await core.set_labels(pr.id, CONTRIBUTOR, [])


async def test_list_pull_requests(core, root, chapter):
    first = await core.create_pull_request(edit_input(chapter.slug))
    second = await core.create_pull_request(new_input(root.slug))
    await core.close_pull_request(second.id, CONTRIBUTOR)

    assert {p.id for p in await core.list_pull_requests(STORY_SLUG)} == {first.id, second.id}
    open_prs = await core.list_pull_requests(STORY_SLUG, PRStatus.OPEN)
    assert [p.id for p in open_prs] == [first.id]
    with pytest.raises(NotFoundError):
        await core.get_pull_request("missing")


async def test_content_limit(core, chapter, config):
    limit = config.pull_request.max_content_length
    with pytest.raises(BadRequestError) as exc_info:
        await core.create_pull_request(
            edit_input(chapter.slug).model_copy(update={"proposed": "x" * (limit + 1)})
        )
    assert exc_info.value.code == "CONTENT_TOO_LONG"


async def test_notifier_failure_does_not_break_operation(core, chapter, event_logger):
    class BrokenNotifier:
        async def notify(self, event, payload):
            raise RuntimeError("mail server down")

    core.pull_requests.notifier = BrokenNotifier()
    pr = await core.create_pull_request(edit_input(chapter.slug))
    assert (await core.get_pull_request(pr.id)).status is PRStatus.OPEN
    failures = [e for e in event_logger.get_events() if "failed" in e.message]
    assert failures and failures[-1].metadata["error_type"] == "RuntimeError"
