"""Optimistic mutations: votes, issue creation and comments.

Votes follow a fixed protocol: snapshot the affected fields, patch the
feature store, call the backend, then either confirm (and invalidate cached
pages) or patch the snapshot back.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import pydantic

from pyissuemap.backend import BackendStore
from pyissuemap.exceptions import AuthRequiredError, ConflictError, IssueMapError, ValidationError
from pyissuemap.models.comment import Comment, CommentDraft
from pyissuemap.models.issue import Issue, IssueDraft
from pyissuemap.orchestrator import QueryOrchestrator
from pyissuemap.state.comments import CommentStore
from pyissuemap.state.events import ChangeSource, FeatureChange, MergeKind
from pyissuemap.state.store import FeatureStore
from pyissuemap.view import ViewAdapter, report_error

_logger = logging.getLogger(__name__)


class MutationKind(StrEnum):
    VOTE_TOGGLE = "vote_toggle"
    CREATE_ISSUE = "create_issue"
    ADD_COMMENT = "add_comment"
    DELETE_COMMENT = "delete_comment"


class SettleState(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(slots=True)
class PendingMutation:
    """One in-flight optimistic change.

    ``snapshot`` holds the exact field values before the optimistic patch;
    a failed mutation patches them back verbatim.
    """

    id: int
    kind: MutationKind
    user_id: str
    issue_id: str | None = None
    snapshot: dict[str, Any] = field(default_factory=dict)
    optimistic: dict[str, Any] = field(default_factory=dict)
    state: SettleState = SettleState.PENDING
    error: BaseException | None = None
    created_at: float = field(default_factory=time.monotonic)


def validation_errors(exc: pydantic.ValidationError) -> dict[str, str]:
    """Flatten pydantic errors into ``{"field": "message"}``."""
    errors: dict[str, str] = {}
    for item in exc.errors():
        name = ".".join(str(part) for part in item.get("loc", ())) or "__root__"
        errors.setdefault(name, str(item.get("msg", "invalid value")))
    return errors


class MutationManager:
    def __init__(
        self,
        backend: BackendStore,
        store: FeatureStore,
        orchestrator: QueryOrchestrator,
        view: ViewAdapter,
        *,
        comments: CommentStore | None = None,
    ) -> None:
        self._backend = backend
        self._store = store
        self._orchestrator = orchestrator
        self._view = view
        self._comments = comments if comments is not None else CommentStore()
        self._vote_locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._vote_waiters: dict[tuple[str, str], int] = {}
        self._pending: dict[int, PendingMutation] = {}
        self._ids = itertools.count(1)

    @property
    def pending(self) -> tuple[PendingMutation, ...]:
        return tuple(self._pending.values())

    def _begin(self, kind: MutationKind, user_id: str, **kwargs: Any) -> PendingMutation:
        mutation = PendingMutation(id=next(self._ids), kind=kind, user_id=user_id, **kwargs)
        self._pending[mutation.id] = mutation
        return mutation

    def _settle(self, mutation: PendingMutation, *, error: BaseException | None = None) -> None:
        mutation.state = SettleState.FAILED if error is not None else SettleState.CONFIRMED
        mutation.error = error
        self._pending.pop(mutation.id, None)
        _logger.debug(
            "Mutation %d (%s) settled state=%s issue=%s",
            mutation.id,
            mutation.kind.value,
            mutation.state.value,
            mutation.issue_id,
        )

    # ------------------------------------------------------------------
    # Votes
    # ------------------------------------------------------------------

    async def toggle_vote(self, issue_id: str, user_id: str | None) -> bool:
        """Flip the user's vote on *issue_id*; return the voted state after settling.

        Backend failures roll back and notify the view. Anything else,
        cancellation included, rolls back and propagates. Toggles for the
        same issue and user run one at a time, in call order.
        """
        if not user_id:
            report_error(self._view, AuthRequiredError("No signed-in user"), "vote")
            return False

        key = (issue_id, user_id)
        lock = self._vote_locks.setdefault(key, asyncio.Lock())
        self._vote_waiters[key] = self._vote_waiters.get(key, 0) + 1
        try:
            async with lock:
                return await self._toggle_vote_locked(issue_id, user_id)
        finally:
            remaining = self._vote_waiters[key] - 1
            if remaining:
                self._vote_waiters[key] = remaining
            else:
                del self._vote_waiters[key]
                del self._vote_locks[key]

    async def _toggle_vote_locked(self, issue_id: str, user_id: str) -> bool:
        issue = self._store.get(issue_id)
        if issue is None:
            self._view.notify_error("Failed to vote: issue is not loaded")
            return False

        was_voted = issue.has_voted
        snapshot = {"has_voted": issue.has_voted, "votes_count": issue.votes_count}
        delta = -1 if was_voted else 1
        optimistic = {"has_voted": not was_voted, "votes_count": max(0, issue.votes_count + delta)}
        mutation = self._begin(
            MutationKind.VOTE_TOGGLE,
            user_id,
            issue_id=issue_id,
            snapshot=snapshot,
            optimistic=optimistic,
        )

        self._store.apply(FeatureChange.patch(issue_id, optimistic, ChangeSource.OPTIMISTIC))
        self._view.notify_vote_change(issue_id, optimistic["votes_count"], optimistic["has_voted"])

        try:
            if was_voted:
                await self._backend.delete_vote(issue_id, user_id)
            else:
                try:
                    await self._backend.insert_vote(issue_id, user_id)
                except ConflictError:
                    _logger.debug("Vote already recorded for issue=%s", issue_id)
        except BaseException as exc:
            self._settle(mutation, error=exc)
            self._store.apply(FeatureChange.patch(issue_id, snapshot, ChangeSource.ROLLBACK))
            self._view.notify_vote_change(issue_id, snapshot["votes_count"], snapshot["has_voted"])
            if not isinstance(exc, IssueMapError):
                raise
            report_error(self._view, exc, "update vote")
            return was_voted

        self._settle(mutation)
        self._orchestrator.invalidate_issue(issue_id)
        return not was_voted

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    async def create_issue(
        self,
        draft: IssueDraft | Mapping[str, Any],
        user_id: str | None,
    ) -> Issue | None:
        """Validate and insert a new issue.

        Raises :class:`AuthRequiredError` without a user and
        :class:`ValidationError` for invalid input, both before any network
        call. Backend failures notify the view and return ``None``.
        """
        if not user_id:
            raise AuthRequiredError("Sign in to report an issue")
        if not isinstance(draft, IssueDraft):
            try:
                draft = IssueDraft.model_validate(dict(draft))
            except pydantic.ValidationError as exc:
                raise ValidationError("Invalid issue", errors=validation_errors(exc)) from exc

        mutation = self._begin(MutationKind.CREATE_ISSUE, user_id)
        try:
            issue = await self._backend.insert_issue(draft.to_row(user_id))
        except IssueMapError as exc:
            self._settle(mutation, error=exc)
            report_error(self._view, exc, "create issue")
            return None

        mutation.issue_id = issue.id
        self._settle(mutation)
        self._store.apply(FeatureChange.insert(issue, ChangeSource.MUTATION))
        self._orchestrator.invalidate_tier(issue.location_type)
        self._view.focus_issue(issue)
        return issue

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    async def add_comment(self, issue_id: str, content: str, user_id: str | None) -> Comment | None:
        if not user_id:
            raise AuthRequiredError("Sign in to comment")
        try:
            draft = CommentDraft(issue_id=issue_id, content=content)
        except pydantic.ValidationError as exc:
            raise ValidationError("Invalid comment", errors=validation_errors(exc)) from exc

        mutation = self._begin(MutationKind.ADD_COMMENT, user_id, issue_id=issue_id)
        try:
            comment = await self._backend.insert_comment(draft.to_row(user_id))
        except IssueMapError as exc:
            self._settle(mutation, error=exc)
            report_error(self._view, exc, "add comment")
            return None

        self._settle(mutation)
        if self._comments.apply(MergeKind.INSERT, comment):
            self._bump_comment_count(issue_id, 1)
        return comment

    async def delete_comment(self, comment_id: str, user_id: str | None) -> bool:
        if not user_id:
            report_error(self._view, AuthRequiredError("No signed-in user"), "delete comment")
            return False

        existing = self._comments.find(comment_id)
        issue_id = existing.issue_id if existing is not None else None
        mutation = self._begin(MutationKind.DELETE_COMMENT, user_id, issue_id=issue_id)
        try:
            deleted = await self._backend.delete_comment(comment_id, user_id)
        except IssueMapError as exc:
            self._settle(mutation, error=exc)
            report_error(self._view, exc, "delete comment")
            return False

        self._settle(mutation)
        if deleted and issue_id is not None and self._comments.remove(issue_id, comment_id):
            self._bump_comment_count(issue_id, -1)
        return deleted

    def _bump_comment_count(self, issue_id: str, delta: int) -> None:
        issue = self._store.get(issue_id)
        if issue is not None:
            count = max(0, issue.comments_count + delta)
            self._store.apply(FeatureChange.patch(issue_id, {"comments_count": count}, ChangeSource.MUTATION))
        self._orchestrator.invalidate_issue(issue_id)
