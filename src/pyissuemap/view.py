"""View adapter boundary.

The engine never renders anything itself; it reports the reconciled
feature collection and user-facing notifications through this contract.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from pyissuemap.exceptions import AuthRequiredError
from pyissuemap.models.comment import Comment
from pyissuemap.models.issue import Issue

_logger = logging.getLogger(__name__)


class ViewAdapter(Protocol):
    def render(self, feature_collection: dict[str, Any]) -> None: ...

    def notify_vote_change(self, issue_id: str, new_count: int, voted: bool) -> None: ...

    def notify_error(self, message: str) -> None: ...

    def notify_auth_required(self, message: str) -> None: ...

    def focus_issue(self, issue: Issue) -> None: ...

    def render_comments(self, issue_id: str, comments: tuple[Comment, ...]) -> None: ...


class NullView:
    """View adapter that only logs. Used when no UI is attached."""

    def render(self, feature_collection: dict[str, Any]) -> None:
        _logger.debug("render features=%d", len(feature_collection.get("features", [])))

    def notify_vote_change(self, issue_id: str, new_count: int, voted: bool) -> None:
        _logger.debug("vote change issue=%s count=%d voted=%s", issue_id, new_count, voted)

    def notify_error(self, message: str) -> None:
        _logger.debug("error notification: %s", message)

    def notify_auth_required(self, message: str) -> None:
        _logger.debug("sign-in required: %s", message)

    def focus_issue(self, issue: Issue) -> None:
        _logger.debug("focus issue=%s", issue.id)

    def render_comments(self, issue_id: str, comments: tuple[Comment, ...]) -> None:
        _logger.debug("render comments issue=%s count=%d", issue_id, len(comments))


def report_error(view: ViewAdapter, exc: Exception, action: str) -> None:
    """Convert a failure at an operation boundary into a notification."""
    if isinstance(exc, AuthRequiredError):
        view.notify_auth_required(f"Please sign in to {action}")
        return
    view.notify_error(f"Failed to {action}: {exc}")
