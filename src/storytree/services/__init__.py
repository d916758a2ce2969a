# src/storytree/services/__init__.py
"""Application services operating on the chapter tree and pull requests."""

from .chapter_tree import ChapterTreeManager
from .collaborators import CollaboratorService
from .diff_engine import resolve_changes
from .notifications import LoggingNotifier, NotificationEvent, Notifier, dispatch_notification
from .permissions import PermissionService
from .pull_requests import PullRequestService, PullRequestValidator
from .transactions import TransactionCoordinator

__all__ = [
    "ChapterTreeManager",
    "CollaboratorService",
    "LoggingNotifier",
    "NotificationEvent",
    "Notifier",
    "PermissionService",
    "PullRequestService",
    "PullRequestValidator",
    "TransactionCoordinator",
    "dispatch_notification",
    "resolve_changes",
]
