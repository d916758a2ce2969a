# src/storytree/domain/pull_request_rules.py
"""Pull request state machine and approval rules.

Lifecycle::

    open -> approved -> merged
      |        |
      |        +----> closed
      +-> rejected
      +-> closed

``rejected``, ``closed`` and ``merged`` are terminal.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta

from transitions import Machine, MachineError

from storytree.core.errors import BadRequestError
from storytree.models import ApprovalsStatus, PRStatus, ensure_utc

logger = logging.getLogger(__name__)

STATES = [status.value for status in PRStatus]

TRANSITIONS = [
    {"trigger": "approve", "source": "open", "dest": "approved"},
    {"trigger": "reject", "source": "open", "dest": "rejected"},
    {"trigger": "close", "source": ["open", "approved"], "dest": "closed"},
    {"trigger": "merge", "source": "approved", "dest": "merged"},
]


class PullRequestStateMachine:
    """Validates status changes of a single pull request.

    The machine only decides whether a trigger is legal from the current
    status; persisting the result is up to the caller.
    """

    def __init__(self, status: PRStatus | str, pr_id: str | None = None) -> None:
        self.pr_id = pr_id
        initial = status.value if isinstance(status, PRStatus) else status
        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        logger.debug(
            "PR %s: %s -> %s (%s)",
            self.pr_id,
            event.transition.source,
            event.transition.dest,
            event.event.name,
        )

    @property
    def status(self) -> PRStatus:
        return PRStatus(self.state)

    def can(self, trigger: str) -> bool:
        return trigger in self.machine.get_triggers(self.state)

    def fire(self, trigger: str) -> PRStatus:
        """Run ``trigger`` and return the new status.

        Raises:
            BadRequestError: when ``trigger`` is not allowed from the current status.
        """
        try:
            self.trigger(trigger)
        except MachineError as exc:
            raise BadRequestError(
                f"Cannot {trigger} a pull request that is {self.state}",
                "INVALID_PR_STATUS",
            ) from exc
        return self.status


def should_auto_approve(
    *,
    enabled: bool,
    is_draft: bool,
    status: PRStatus,
    score: int,
    threshold: int,
    created_at: datetime,
    time_window: int,
    now: datetime,
) -> bool:
    """Whether a PR qualifies for auto-approval at ``now``.

    >>> from datetime import UTC
    >>> created = datetime(2024, 1, 1, tzinfo=UTC)
    >>> should_auto_approve(enabled=True, is_draft=False, status=PRStatus.OPEN,
    ...     score=12, threshold=10, created_at=created, time_window=7,
    ...     now=created + timedelta(days=2))
    True
    """
    if not enabled or is_draft or status is not PRStatus.OPEN:
        return False
    if score < threshold:
        return False
    return ensure_utc(now) - ensure_utc(created_at) <= timedelta(days=time_window)


def compute_approvals_status(
    required: int, approvers: Iterable[str], blockers: Iterable[str]
) -> ApprovalsStatus:
    """Rebuild the approval summary from the reviewer lists."""
    approvers = list(dict.fromkeys(approvers))
    blockers = list(dict.fromkeys(b for b in blockers if b not in approvers))
    received = len(approvers)
    return ApprovalsStatus(
        required=required,
        received=received,
        pending=max(required - received, 0),
        approvers=approvers,
        blockers=blockers,
        can_merge=received >= required and not blockers,
    )


def minutes_between(start: datetime, end: datetime) -> int:
    return int((ensure_utc(end) - ensure_utc(start)).total_seconds() // 60)


__all__ = [
    "PullRequestStateMachine",
    "STATES",
    "TRANSITIONS",
    "compute_approvals_status",
    "minutes_between",
    "should_auto_approve",
]
