# src/storytree/services/pull_requests.py
"""Pull Request Lifecycle Engine.

Creation is validated up front by :class:`PullRequestValidator`; every later
status change goes through :class:`PullRequestStateMachine` and is persisted
with a conditional ``UPDATE`` so two concurrent transitions cannot both win.
Notifications are queued while the transaction runs and sent after commit.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from storytree.canon.repositories import (
    ChapterRepository,
    PRVoteRepository,
    PullRequestRepository,
    StoryRepository,
)
from storytree.config import PullRequestConfig
from storytree.core.env import get_config
from storytree.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from storytree.core.logs import EventLogger, EventType, Priority, get_event_logger
from storytree.core.result import Err, Ok, bad_request, conflict, forbidden, not_found
from storytree.domain.chapter_rules import can_branch_from, target_key
from storytree.domain.pull_request_rules import (
    PullRequestStateMachine,
    compute_approvals_status,
    minutes_between,
    should_auto_approve,
)
from storytree.domain.roles import Capability, can_role_create_pr
from storytree.models import (
    TERMINAL_STATUSES,
    AutoApproveConfig,
    Chapter,
    ChapterPullRequest,
    ChapterStatus,
    CollaboratorRole,
    CreatePullRequestInput,
    EditType,
    PRLabel,
    PRStatus,
    PRType,
    PullRequest,
    ReviewDecision,
    Story,
    TimelineAction,
    TimelineEntry,
    new_id,
    utcnow,
)

from .chapter_tree import ChapterTreeManager
from .diff_engine import resolve_changes
from .notifications import NotificationEvent, Notifier, dispatch_notification
from .permissions import PermissionService
from .transactions import TransactionCoordinator

SYSTEM_ACTOR = "system"

Outbox = list[tuple[NotificationEvent, dict[str, Any]]]


@dataclass(frozen=True)
class ValidatedCreate:
    """Everything the create path learned while validating."""

    story: Story
    role: CollaboratorRole
    target: Chapter
    target_key: str


class PullRequestValidator:
    """Checks a create request in a fixed order and reports the first failure."""

    def __init__(
        self,
        stories: StoryRepository,
        chapters: ChapterRepository,
        pull_requests: PullRequestRepository,
        permissions: PermissionService,
    ) -> None:
        self.stories = stories
        self.chapters = chapters
        self.pull_requests = pull_requests
        self.permissions = permissions

    async def validate_create_request(
        self, session: AsyncSession, data: CreatePullRequestInput
    ) -> Ok[ValidatedCreate] | Err:
        # 1. story exists
        story = await self.stories.find_by_slug(session, data.story_slug)
        if story is None:
            return not_found("Story not found", "STORY_NOT_FOUND")

        # 2. accepted collaborator (the creator is always the owner)
        role = await self.permissions.role_in(session, story, data.author_id)
        if role is None:
            return forbidden(
                "You must be an accepted collaborator to create a pull request.",
                "FORBIDDEN",
            )

        # 3. role may author chapters
        if not can_role_create_pr(role):
            return forbidden(
                "Your collaborator role does not permit creating pull requests.",
                "FORBIDDEN",
            )

        # 4. target hierarchy
        if data.pr_type is PRType.NEW_CHAPTER:
            if not story.settings.allow_branching:
                return bad_request("Branching is disabled for this story", "BRANCHING_DISABLED")
            if not data.parent_chapter_slug:
                return bad_request("parent_chapter_slug is required", "INVALID_INPUT")
            target = await self.chapters.find_by_slug(session, data.parent_chapter_slug)
            if target is None:
                return not_found("Parent chapter not found", "PARENT_CHAPTER_NOT_FOUND")
            branchable = can_branch_from(target, story.slug)
            if isinstance(branchable, Err):
                return branchable
        else:
            if not data.chapter_slug:
                return bad_request("chapter_slug is required", "INVALID_INPUT")
            target = await self.chapters.find_by_slug(session, data.chapter_slug)
            if target is None:
                return not_found("Chapter not found", "CHAPTER_NOT_FOUND")
            if target.story_slug != story.slug:
                return bad_request(
                    "Target chapter does not belong to this story.", "INVALID_CHAPTER"
                )
            if target.status is ChapterStatus.DELETED:
                return bad_request("Target chapter is deleted.", "CHAPTER_DELETED")

        # 5. no duplicate open PR on the same target
        key = target_key(
            None if data.pr_type is PRType.NEW_CHAPTER else target.slug,
            target.slug,
        )
        duplicate = await self.pull_requests.find_open_for_target(
            session, story.slug, data.author_id, key
        )
        if duplicate is not None:
            return conflict(
                "You already have an open pull request for this chapter. "
                "Close or merge it first.",
                "DUPLICATE_OPEN_PR",
            )

        return Ok(ValidatedCreate(story=story, role=role, target=target, target_key=key))


class PullRequestService:
    """Create, vote on, review and merge chapter pull requests."""

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        validator: PullRequestValidator,
        stories: StoryRepository,
        pull_requests: PullRequestRepository,
        votes: PRVoteRepository,
        permissions: PermissionService,
        tree: ChapterTreeManager,
        notifier: Notifier | None = None,
        event_logger: EventLogger | None = None,
        settings: PullRequestConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.coordinator = coordinator
        self.validator = validator
        self.stories = stories
        self.pull_requests = pull_requests
        self.votes = votes
        self.permissions = permissions
        self.tree = tree
        self.notifier = notifier
        self.event_logger = event_logger or get_event_logger()
        self._settings = settings
        self.clock = clock

    @property
    def settings(self) -> PullRequestConfig:
        return self._settings or get_config().pull_request

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self, session: AsyncSession, pr_id: str) -> PullRequest:
        pr = await self.pull_requests.find_by_id(session, pr_id)
        if pr is None:
            raise NotFoundError(f"Pull request {pr_id} not found", "PR_NOT_FOUND")
        return pr

    async def _load_story(self, session: AsyncSession, story_slug: str) -> Story:
        story = await self.stories.find_by_slug(session, story_slug)
        if story is None:
            raise NotFoundError("Story not found", "STORY_NOT_FOUND")
        return story

    async def _save(
        self,
        session: AsyncSession,
        pr: PullRequest,
        expected: PRStatus | tuple[PRStatus, ...],
        **values: Any,
    ) -> PullRequest:
        expected_status = expected if isinstance(expected, tuple) else (expected,)
        updated = await self.pull_requests.update_fields(
            session, pr.id, expected_status=expected_status, **values
        )
        if updated is None:
            raise ConflictError(
                f"Pull request {pr.id} changed while it was being updated",
                "PR_STATE_CHANGED",
            )
        return updated

    async def _record(
        self,
        session: AsyncSession,
        pr: PullRequest,
        action: TimelineAction,
        performed_by: str,
        **metadata: Any,
    ) -> None:
        await self.pull_requests.append_timeline(
            session,
            pr.id,
            TimelineEntry(
                action=action,
                performed_by=performed_by,
                performed_at=self.clock(),
                metadata=metadata,
            ),
        )

    async def _mark_target(
        self,
        session: AsyncSession,
        pr: PullRequest,
        chapter_slug: str | None = None,
        **marker: Any,
    ) -> None:
        slug = chapter_slug or pr.chapter_slug
        if not slug:
            return
        await self.tree.mark_pull_request(
            session,
            slug,
            ChapterPullRequest(is_pr=True, pr_id=pr.id, **marker),
        )

    async def _flush(self, outbox: Outbox) -> None:
        for event, payload in outbox:
            await dispatch_notification(
                self.notifier, event, payload, event_logger=self.event_logger
            )

    @staticmethod
    def _notice(pr: PullRequest, recipient_id: str, actor_id: str, **extra: Any) -> dict[str, Any]:
        return {
            "recipient_id": recipient_id,
            "actor_id": actor_id,
            "story_slug": pr.story_slug,
            "pr_id": pr.id,
            "title": pr.title,
            **extra,
        }

    async def _log_transition(self, pr: PullRequest, actor_id: str, message: str) -> None:
        await self.event_logger.log(
            EventType.PULL_REQUEST,
            message,
            Priority.HIGH,
            metadata={"pr_id": pr.id, "status": pr.status.value, "pr_type": pr.pr_type.value},
            story_slug=pr.story_slug,
            user_id=actor_id,
        )

    def _auto_approve_config(
        self, story: Story, requested: AutoApproveConfig | None
    ) -> AutoApproveConfig:
        if requested is not None:
            return AutoApproveConfig(
                enabled=requested.enabled,
                threshold=requested.threshold,
                time_window=requested.time_window,
            )
        settings = story.settings
        return AutoApproveConfig(
            enabled=settings.auto_approve_threshold is not None,
            threshold=settings.auto_approve_threshold
            or self.settings.default_auto_approve_threshold,
            time_window=settings.auto_approve_time_window
            or self.settings.default_auto_approve_time_window,
        )

    async def _maybe_auto_approve(
        self, session: AsyncSession, pr: PullRequest, outbox: Outbox
    ) -> PullRequest:
        """Approve ``pr`` on the spot if its votes qualify it."""
        config = pr.auto_approve
        if not config.enabled or pr.status is not PRStatus.OPEN or pr.is_draft:
            return pr
        now = self.clock()
        qualified_at = config.qualified_at
        if qualified_at is None and pr.votes.score >= config.threshold:
            qualified_at = now
        fire = should_auto_approve(
            enabled=config.enabled,
            is_draft=pr.is_draft,
            status=pr.status,
            score=pr.votes.score,
            threshold=config.threshold,
            created_at=pr.created_at or now,
            time_window=config.time_window,
            now=now,
        )
        if not fire:
            if qualified_at != config.qualified_at:
                updated = config.model_copy(update={"qualified_at": qualified_at})
                return await self._save(
                    session, pr, PRStatus.OPEN, auto_approve=updated.model_dump(mode="json")
                )
            return pr

        status = PullRequestStateMachine(pr.status, pr.id).fire("approve")
        updated = config.model_copy(update={"qualified_at": qualified_at, "auto_approved_at": now})
        pr = await self._save(
            session,
            pr,
            PRStatus.OPEN,
            status=status.value,
            auto_approve=updated.model_dump(mode="json"),
            reviewed_by=SYSTEM_ACTOR,
            reviewed_at=now,
        )
        await self._record(
            session,
            pr,
            TimelineAction.AUTO_APPROVED,
            SYSTEM_ACTOR,
            score=pr.votes.score,
            threshold=config.threshold,
        )
        await self._mark_target(
            session, pr, status=status.value, reviewed_by=SYSTEM_ACTOR, reviewed_at=now
        )
        outbox.append(
            (NotificationEvent.PR_APPROVED, self._notice(pr, pr.author_id, SYSTEM_ACTOR))
        )
        await self._log_transition(pr, SYSTEM_ACTOR, f"Pull request {pr.id} auto-approved")
        return await self._load(session, pr.id)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_pull_request(self, data: CreatePullRequestInput) -> PullRequest:
        if len(data.proposed) > self.settings.max_content_length:
            raise BadRequestError(
                f"Proposed content exceeds {self.settings.max_content_length} characters",
                "CONTENT_TOO_LONG",
            )
        outbox: Outbox = []

        async def _create(session: AsyncSession) -> PullRequest:
            outbox.clear()
            checked = (await self.validator.validate_create_request(session, data)).unwrap()
            story, target = checked.story, checked.target
            is_new = data.pr_type is PRType.NEW_CHAPTER
            # The original text always comes from the stored chapter.
            changes = resolve_changes(
                data.pr_type, None if is_new else target.content, data.proposed
            )
            now = self.clock()
            required = story.settings.min_approvals
            if required is None:
                required = self.settings.default_required_approvals
            pr = PullRequest(
                id=new_id(),
                title=data.title,
                description=data.description,
                story_slug=story.slug,
                chapter_slug=None if is_new else target.slug,
                parent_chapter_slug=target.slug if is_new else target.parent_chapter_slug,
                author_id=data.author_id,
                pr_type=data.pr_type,
                changes=changes,
                status=PRStatus.OPEN,
                auto_approve=self._auto_approve_config(story, data.auto_approve),
                approvals_status=compute_approvals_status(required, [], []),
                labels=list(dict.fromkeys(data.labels)),
                is_draft=data.is_draft,
                drafted_at=now if data.is_draft else None,
                timeline=[
                    TimelineEntry(
                        action=TimelineAction.CREATED,
                        performed_by=data.author_id,
                        performed_at=now,
                        metadata={"pr_type": data.pr_type.value},
                    )
                ],
                created_at=now,
            )
            pr = await self.pull_requests.insert(session, pr, checked.target_key)
            if not is_new:
                await self._mark_target(
                    session, pr, status=PRStatus.OPEN.value, submitted_at=now
                )
            if story.creator_id != data.author_id:
                outbox.append(
                    (
                        NotificationEvent.PR_OPENED,
                        self._notice(pr, story.creator_id, data.author_id, pr_type=pr.pr_type.value),
                    )
                )
            return pr

        pr = await self.coordinator.run("create_pull_request", _create)
        await self.event_logger.log(
            EventType.PULL_REQUEST,
            f"Pull request {pr.id} opened",
            Priority.NORMAL,
            metadata={
                "pr_id": pr.id,
                "pr_type": pr.pr_type.value,
                "chapter_slug": pr.chapter_slug,
                "parent_chapter_slug": pr.parent_chapter_slug,
                "additions": pr.changes.additions_count,
                "deletions": pr.changes.deletions_count,
            },
            story_slug=pr.story_slug,
            user_id=pr.author_id,
        )
        await self._flush(outbox)
        return pr

    async def get_pull_request(self, pr_id: str) -> PullRequest:
        """Read a PR, approving it first if its votes have qualified it."""
        outbox: Outbox = []

        async def _get(session: AsyncSession) -> PullRequest:
            outbox.clear()
            return await self._maybe_auto_approve(session, await self._load(session, pr_id), outbox)

        pr = await self.coordinator.run("get_pull_request", _get)
        await self._flush(outbox)
        return pr

    async def list_pull_requests(
        self, story_slug: str, status: PRStatus | None = None
    ) -> list[PullRequest]:
        async def _list(session: AsyncSession) -> list[PullRequest]:
            await self._load_story(session, story_slug)
            return await self.pull_requests.find_by_story(session, story_slug, status)

        return await self.coordinator.run("list_pull_requests", _list)

    async def cast_vote(self, pr_id: str, user_id: str, vote: int) -> PullRequest:
        """Record an up (1) or down (-1) vote; one vote per user per PR."""
        if vote not in (1, -1):
            raise BadRequestError("Vote must be 1 or -1", "INVALID_VOTE")
        outbox: Outbox = []

        async def _vote(session: AsyncSession) -> PullRequest:
            outbox.clear()
            pr = await self._load(session, pr_id)
            story = await self._load_story(session, pr.story_slug)
            if not story.settings.allow_voting:
                raise BadRequestError("Voting is disabled for this story", "VOTING_DISABLED")
            if pr.status not in (PRStatus.OPEN, PRStatus.APPROVED):
                raise BadRequestError(
                    f"Cannot vote on a pull request that is {pr.status.value}",
                    "PR_NOT_VOTABLE",
                )
            existing = await self.votes.find_vote(session, pr_id, user_id)
            if existing is not None and existing.vote == vote:
                return pr
            if existing is None:
                await self.votes.record(session, pr_id, user_id, vote)
                up, down = (1, 0) if vote == 1 else (0, 1)
            else:
                await self.votes.change(session, pr_id, user_id, vote)
                up, down = (1, -1) if vote == 1 else (-1, 1)
            pr = await self.pull_requests.apply_vote_delta(session, pr_id, up, down)
            if pr is None:
                raise NotFoundError(f"Pull request {pr_id} not found", "PR_NOT_FOUND")
            await self._record(
                session,
                pr,
                TimelineAction.VOTED,
                user_id,
                vote=vote,
                changed=existing is not None,
            )
            return await self._maybe_auto_approve(session, await self._load(session, pr_id), outbox)

        pr = await self.coordinator.run("cast_vote", _vote)
        await self.event_logger.log(
            EventType.PR_VOTE,
            f"Vote {vote:+d} on pull request {pr_id}",
            Priority.NORMAL,
            metadata={"pr_id": pr_id, "vote": vote, "score": pr.votes.score},
            story_slug=pr.story_slug,
            user_id=user_id,
        )
        await self._flush(outbox)
        return pr

    async def submit_review(
        self,
        pr_id: str,
        reviewer_id: str,
        decision: ReviewDecision,
        comment: str | None = None,
    ) -> PullRequest:
        async def _review(session: AsyncSession) -> PullRequest:
            pr = await self._load(session, pr_id)
            story = await self._load_story(session, pr.story_slug)
            await self.permissions.require(session, story, reviewer_id, Capability.REVIEW_PRS)
            if reviewer_id == pr.author_id:
                raise BadRequestError("You cannot review your own pull request", "SELF_REVIEW")
            if pr.status is not PRStatus.OPEN:
                raise BadRequestError(
                    f"Cannot review a pull request that is {pr.status.value}",
                    "INVALID_PR_STATUS",
                )
            approvers = [a for a in pr.approvals_status.approvers if a != reviewer_id]
            blockers = [b for b in pr.approvals_status.blockers if b != reviewer_id]
            if decision is ReviewDecision.APPROVE:
                approvers.append(reviewer_id)
            elif decision is ReviewDecision.REQUEST_CHANGES:
                blockers.append(reviewer_id)
            else:
                approvers = pr.approvals_status.approvers
                blockers = pr.approvals_status.blockers
            approvals = compute_approvals_status(
                pr.approvals_status.required, approvers, blockers
            )
            stats = pr.stats.model_copy(
                update={"reviews_received": pr.stats.reviews_received + 1}
            )
            pr = await self._save(
                session,
                pr,
                PRStatus.OPEN,
                approvals_status=approvals.model_dump(mode="json"),
                stats=stats.model_dump(mode="json"),
            )
            action = (
                TimelineAction.CHANGES_REQUESTED
                if decision is ReviewDecision.REQUEST_CHANGES
                else TimelineAction.REVIEW_SUBMITTED
            )
            await self._record(
                session, pr, action, reviewer_id, decision=decision.value, comment=comment
            )
            return await self._load(session, pr_id)

        pr = await self.coordinator.run("submit_review", _review)
        await self._log_transition(pr, reviewer_id, f"Review {decision.value} on {pr_id}")
        return pr

    async def approve_pull_request(self, pr_id: str, user_id: str) -> PullRequest:
        outbox: Outbox = []

        async def _approve(session: AsyncSession) -> PullRequest:
            outbox.clear()
            pr = await self._load(session, pr_id)
            story = await self._load_story(session, pr.story_slug)
            await self.permissions.require(session, story, user_id, Capability.APPROVE_PRS)
            if pr.is_draft:
                raise BadRequestError("Draft pull requests cannot be approved", "PR_IS_DRAFT")
            status = PullRequestStateMachine(pr.status, pr.id).fire("approve")
            now = self.clock()
            approvals = compute_approvals_status(
                pr.approvals_status.required,
                [*pr.approvals_status.approvers, user_id],
                pr.approvals_status.blockers,
            )
            pr = await self._save(
                session,
                pr,
                PRStatus.OPEN,
                status=status.value,
                reviewed_by=user_id,
                reviewed_at=now,
                approvals_status=approvals.model_dump(mode="json"),
            )
            await self._record(session, pr, TimelineAction.APPROVED, user_id)
            await self._mark_target(
                session, pr, status=status.value, reviewed_by=user_id, reviewed_at=now
            )
            if pr.author_id != user_id:
                outbox.append((NotificationEvent.PR_APPROVED, self._notice(pr, pr.author_id, user_id)))
            return await self._load(session, pr_id)

        pr = await self.coordinator.run("approve_pull_request", _approve)
        await self._log_transition(pr, user_id, f"Pull request {pr_id} approved")
        await self._flush(outbox)
        return pr

    async def reject_pull_request(
        self, pr_id: str, user_id: str, reason: str | None = None
    ) -> PullRequest:
        outbox: Outbox = []

        async def _reject(session: AsyncSession) -> PullRequest:
            outbox.clear()
            pr = await self._load(session, pr_id)
            story = await self._load_story(session, pr.story_slug)
            await self.permissions.require(session, story, user_id, Capability.REJECT_PRS)
            status = PullRequestStateMachine(pr.status, pr.id).fire("reject")
            now = self.clock()
            pr = await self._save(
                session,
                pr,
                PRStatus.OPEN,
                status=status.value,
                reviewed_by=user_id,
                reviewed_at=now,
                rejection_reason=reason,
            )
            await self._record(session, pr, TimelineAction.REJECTED, user_id, reason=reason)
            await self._mark_target(
                session,
                pr,
                status=status.value,
                reviewed_by=user_id,
                reviewed_at=now,
                rejection_reason=reason,
            )
            if pr.author_id != user_id:
                outbox.append(
                    (NotificationEvent.PR_REJECTED, self._notice(pr, pr.author_id, user_id, reason=reason))
                )
            return await self._load(session, pr_id)

        pr = await self.coordinator.run("reject_pull_request", _reject)
        await self._log_transition(pr, user_id, f"Pull request {pr_id} rejected")
        await self._flush(outbox)
        return pr

    async def close_pull_request(
        self, pr_id: str, user_id: str, reason: str | None = None
    ) -> PullRequest:
        """Withdraw an open or approved PR; allowed for its author or rejecters."""
        outbox: Outbox = []

        async def _close(session: AsyncSession) -> PullRequest:
            outbox.clear()
            pr = await self._load(session, pr_id)
            if pr.author_id != user_id:
                story = await self._load_story(session, pr.story_slug)
                await self.permissions.require(
                    session,
                    story,
                    user_id,
                    Capability.REJECT_PRS,
                    "Only the author or a reviewer with reject rights can close this pull request",
                )
            previous = pr.status
            status = PullRequestStateMachine(pr.status, pr.id).fire("close")
            now = self.clock()
            pr = await self._save(
                session,
                pr,
                previous,
                status=status.value,
                closed_at=now,
                closed_by=user_id,
                close_reason=reason,
            )
            await self._record(session, pr, TimelineAction.CLOSED, user_id, reason=reason)
            await self._mark_target(session, pr, status=status.value)
            if pr.author_id != user_id:
                outbox.append(
                    (NotificationEvent.PR_CLOSED, self._notice(pr, pr.author_id, user_id, reason=reason))
                )
            return await self._load(session, pr_id)

        pr = await self.coordinator.run("close_pull_request", _close)
        await self._log_transition(pr, user_id, f"Pull request {pr_id} closed")
        await self._flush(outbox)
        return pr

    async def merge_pull_request(self, pr_id: str, user_id: str) -> PullRequest:
        """Apply an approved PR to the chapter tree in one transaction."""
        outbox: Outbox = []

        async def _merge(session: AsyncSession) -> PullRequest:
            outbox.clear()
            pr = await self._load(session, pr_id)
            story = await self._load_story(session, pr.story_slug)
            await self.permissions.require(session, story, user_id, Capability.MERGE_PRS)
            status = PullRequestStateMachine(pr.status, pr.id).fire("merge")
            now = self.clock()

            chapter_slug = pr.chapter_slug
            if pr.pr_type is PRType.NEW_CHAPTER:
                if not pr.parent_chapter_slug:
                    raise BadRequestError("Pull request has no parent chapter", "INVALID_INPUT")
                chapter = await self.tree.create_child(
                    story,
                    pr.author_id,
                    pr.parent_chapter_slug,
                    pr.title,
                    pr.changes.proposed,
                    session,
                )
                chapter_slug = chapter.slug
            elif pr.pr_type is PRType.EDIT_CHAPTER:
                current = await self.tree.chapters.find_by_slug(session, chapter_slug or "")
                if current is not None and current.content != (pr.changes.original or ""):
                    raise ConflictError(
                        "The chapter changed after this pull request was opened",
                        "CHAPTER_CHANGED_SINCE_PR",
                    )
                await self.tree.replace_content(
                    session,
                    chapter_slug or "",
                    content=pr.changes.proposed,
                    edited_by=pr.author_id,
                    edit_type=EditType.PR_MERGE,
                    pr_id=pr.id,
                    edit_reason=pr.title,
                )
            else:
                await self.tree.soft_delete(
                    session,
                    chapter_slug or "",
                    deleted_by=pr.author_id,
                    pr_id=pr.id,
                    reason=pr.description or pr.title,
                )

            stats = pr.stats.model_copy(
                update={"time_to_merge": minutes_between(pr.created_at or now, now)}
            )
            pr = await self._save(
                session,
                pr,
                PRStatus.APPROVED,
                status=status.value,
                merged_at=now,
                merged_by=user_id,
                chapter_slug=chapter_slug,
                stats=stats.model_dump(mode="json"),
            )
            await self._record(
                session, pr, TimelineAction.MERGED, user_id, chapter_slug=chapter_slug
            )
            await self._mark_target(
                session,
                pr,
                chapter_slug,
                status=status.value,
                reviewed_by=pr.reviewed_by,
                reviewed_at=pr.reviewed_at,
            )
            if pr.author_id != user_id:
                outbox.append(
                    (
                        NotificationEvent.PR_MERGED,
                        self._notice(pr, pr.author_id, user_id, chapter_slug=chapter_slug),
                    )
                )
            return await self._load(session, pr_id)

        pr = await self.coordinator.run("merge_pull_request", _merge)
        await self._log_transition(pr, user_id, f"Pull request {pr_id} merged")
        await self._flush(outbox)
        return pr

    async def mark_draft(self, pr_id: str, user_id: str, reason: str | None = None) -> PullRequest:
        async def _draft(session: AsyncSession) -> PullRequest:
            pr = await self._load(session, pr_id)
            self._require_author(pr, user_id)
            if pr.status is not PRStatus.OPEN:
                raise BadRequestError("Only open pull requests can become drafts", "INVALID_PR_STATUS")
            if pr.is_draft:
                return pr
            pr = await self._save(
                session,
                pr,
                PRStatus.OPEN,
                is_draft=True,
                draft_reason=reason,
                drafted_at=self.clock(),
            )
            await self._record(session, pr, TimelineAction.MARKED_DRAFT, user_id, reason=reason)
            return await self._load(session, pr_id)

        return await self.coordinator.run("mark_draft", _draft)

    async def mark_ready(self, pr_id: str, user_id: str) -> PullRequest:
        outbox: Outbox = []

        async def _ready(session: AsyncSession) -> PullRequest:
            outbox.clear()
            pr = await self._load(session, pr_id)
            self._require_author(pr, user_id)
            if not pr.is_draft:
                return pr
            pr = await self._save(
                session, pr, PRStatus.OPEN, is_draft=False, draft_reason=None
            )
            await self._record(session, pr, TimelineAction.READY_FOR_REVIEW, user_id)
            return await self._maybe_auto_approve(session, await self._load(session, pr_id), outbox)

        pr = await self.coordinator.run("mark_ready", _ready)
        await self._flush(outbox)
        return pr

    async def set_labels(self, pr_id: str, user_id: str, labels: list[PRLabel]) -> PullRequest:
        async def _label(session: AsyncSession) -> PullRequest:
            pr = await self._load(session, pr_id)
            story = await self._load_story(session, pr.story_slug)
            await self.permissions.require(session, story, user_id, Capability.REVIEW_PRS)
            if pr.status in TERMINAL_STATUSES:
                raise BadRequestError(
                    f"Cannot label a pull request that is {pr.status.value}",
                    "INVALID_PR_STATUS",
                )
            new_labels = list(dict.fromkeys(PRLabel(label) for label in labels))
            before = set(pr.labels)
            pr = await self._save(
                session,
                pr,
                pr.status,
                labels=[label.value for label in new_labels],
            )
            await self._record(
                session,
                pr,
                TimelineAction.LABELS_CHANGED,
                user_id,
                added=sorted(label.value for label in set(new_labels) - before),
                removed=sorted(label.value for label in before - set(new_labels)),
            )
            return await self._load(session, pr_id)

        return await self.coordinator.run("set_labels", _label)

    @staticmethod
    def _require_author(pr: PullRequest, user_id: str) -> None:
        if pr.author_id != user_id:
            raise ForbiddenError("Only the author can change this pull request", "NOT_PR_AUTHOR")


__all__ = ["PullRequestService", "PullRequestValidator", "ValidatedCreate"]
