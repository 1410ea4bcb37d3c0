"""Realtime reconciliation of pushed row changes.

A :class:`ChangeFeed` delivers :class:`ChangeEvent` objects per scope
(``issues`` or ``comments/<issue_id>``) together with transport status
updates. :class:`RealtimeReconciler` owns one :class:`Subscription` per
scope, converts events into store merges and triggers a resync after each
recovery from transport loss. Events missed during the outage are not
replayed; the resync covers them.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, field_validator

from pyissuemap.models.comment import Comment
from pyissuemap.models.issue import Issue
from pyissuemap.state.comments import CommentStore
from pyissuemap.state.events import ChangeSource, FeatureChange, MergeKind
from pyissuemap.state.store import FeatureStore

_logger = logging.getLogger(__name__)

ISSUES_SCOPE = "issues"
COMMENTS_SCOPE_PREFIX = "comments/"


def comments_scope(issue_id: str) -> str:
    return f"{COMMENTS_SCOPE_PREFIX}{issue_id}"


class ChangeKind(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class FeedStatus(StrEnum):
    SUBSCRIBED = "subscribed"
    TRANSPORT_ERROR = "transport_error"
    RECOVERED = "recovered"
    CLOSED = "closed"


class SubscriptionState(StrEnum):
    DISCONNECTED = "disconnected"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"


class ChangeEvent(BaseModel):
    """A row change pushed by the backend.

    ``before`` carries at least the primary key for deletes; ``after`` the
    full new row for inserts and updates.
    """

    model_config = ConfigDict(frozen=True)

    kind: ChangeKind
    table: str
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @property
    def row(self) -> dict[str, Any]:
        if self.kind == ChangeKind.DELETE:
            return self.before or self.after or {}
        return self.after or {}


EventHandler = Callable[[ChangeEvent], None]
StatusHandler = Callable[[FeedStatus], None]


class ChangeFeed(Protocol):
    """Push channel the reconciler subscribes through.

    Handlers are always invoked on the event loop thread.
    """

    def subscribe(self, scope: str, on_event: EventHandler, on_status: StatusHandler) -> None: ...

    def unsubscribe(self, scope: str) -> None: ...


def feature_change_from_event(event: ChangeEvent) -> FeatureChange:
    """Translate an ``issues`` table event into a store merge.

    Raises ``ValueError`` (including pydantic validation errors) for
    payloads that cannot be merged.
    """
    row = event.row
    if event.kind == ChangeKind.DELETE:
        issue_id = row.get("id")
        if issue_id in (None, ""):
            raise ValueError("delete event without an id")
        return FeatureChange.delete(str(issue_id), ChangeSource.REALTIME)
    issue = Issue.model_validate(row)
    if event.kind == ChangeKind.INSERT:
        return FeatureChange.insert(issue, ChangeSource.REALTIME)
    return FeatureChange.update(issue, ChangeSource.REALTIME)


class Subscription:
    """Handle for one scope's subscription.

    Created by :class:`RealtimeReconciler`; callers only read :attr:`state`
    and call :meth:`unsubscribe`.
    """

    def __init__(self, reconciler: RealtimeReconciler, scope: str) -> None:
        self._reconciler = reconciler
        self._scope = scope
        self._state = SubscriptionState.DISCONNECTED
        self.recoveries = 0

    @property
    def scope(self) -> str:
        return self._scope

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state == SubscriptionState.ACTIVE

    def unsubscribe(self) -> None:
        self._reconciler.release(self)

    def _transition(self, state: SubscriptionState) -> None:
        if state == self._state:
            return
        _logger.debug("Subscription %s: %s -> %s", self._scope, self._state.value, state.value)
        self._state = state

    def __repr__(self) -> str:
        return f"Subscription(scope={self._scope!r}, state={self._state.value!r})"


class RealtimeReconciler:
    """Merge pushed changes into the feature and comment stores."""

    def __init__(
        self,
        feed: ChangeFeed | None,
        store: FeatureStore,
        comments: CommentStore,
        resync: Callable[[], Awaitable[Any]],
        *,
        resync_comments: Callable[[str], Awaitable[Any]] | None = None,
    ) -> None:
        self._feed = feed
        self._store = store
        self._comments = comments
        self._resync = resync
        self._resync_comments = resync_comments
        self._subscriptions: dict[str, Subscription] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self.dropped_events = 0

    @property
    def subscriptions(self) -> dict[str, Subscription]:
        return dict(self._subscriptions)

    def subscribe_issues(self) -> Subscription:
        return self._subscribe(ISSUES_SCOPE)

    def subscribe_comments(self, issue_id: str) -> Subscription:
        return self._subscribe(comments_scope(issue_id))

    def _subscribe(self, scope: str) -> Subscription:
        existing = self._subscriptions.get(scope)
        if existing is not None:
            return existing

        subscription = Subscription(self, scope)
        self._subscriptions[scope] = subscription
        if self._feed is None:
            _logger.debug("No change feed configured; %s stays disconnected", scope)
            return subscription

        subscription._transition(SubscriptionState.SUBSCRIBING)
        self._feed.subscribe(
            scope,
            functools.partial(self._on_event, scope),
            functools.partial(self._on_status, scope),
        )
        return subscription

    def release(self, subscription: Subscription) -> None:
        scope = subscription.scope
        if self._subscriptions.get(scope) is not subscription:
            return
        del self._subscriptions[scope]
        subscription._transition(SubscriptionState.DISCONNECTED)
        if self._feed is not None:
            self._feed.unsubscribe(scope)

    def _on_status(self, scope: str, status: FeedStatus) -> None:
        subscription = self._subscriptions.get(scope)
        if subscription is None:
            return
        state = subscription.state

        if status == FeedStatus.SUBSCRIBED:
            if state == SubscriptionState.SUBSCRIBING:
                subscription._transition(SubscriptionState.ACTIVE)
        elif status == FeedStatus.TRANSPORT_ERROR:
            if state in (SubscriptionState.ACTIVE, SubscriptionState.SUBSCRIBING):
                subscription._transition(SubscriptionState.RECONNECTING)
        elif status == FeedStatus.RECOVERED:
            # A scope subscribed during an outage first goes live on recovery.
            if state in (SubscriptionState.RECONNECTING, SubscriptionState.SUBSCRIBING):
                subscription._transition(SubscriptionState.ACTIVE)
                subscription.recoveries += 1
                self._schedule_resync(scope)
        elif status == FeedStatus.CLOSED:
            subscription._transition(SubscriptionState.DISCONNECTED)

    def _schedule_resync(self, scope: str) -> None:
        if scope == ISSUES_SCOPE:
            coro = self._resync()
        elif scope.startswith(COMMENTS_SCOPE_PREFIX) and self._resync_comments is not None:
            coro = self._resync_comments(scope[len(COMMENTS_SCOPE_PREFIX) :])
        else:
            return
        _logger.debug("Resync after recovery scope=%s", scope)
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_resync_done)

    def _on_resync_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.warning("Resync after reconnect failed: %s", exc)

    async def drain(self) -> None:
        """Wait for scheduled resyncs."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_event(self, scope: str, event: ChangeEvent) -> None:
        try:
            if scope == ISSUES_SCOPE:
                self._store.apply(feature_change_from_event(event))
            elif scope.startswith(COMMENTS_SCOPE_PREFIX):
                self._apply_comment(scope[len(COMMENTS_SCOPE_PREFIX) :], event)
        except Exception:
            self.dropped_events += 1
            _logger.debug("Dropping %s event on %s", event.kind.value, scope, exc_info=True)

    def _apply_comment(self, issue_id: str, event: ChangeEvent) -> None:
        row = event.row
        if event.kind == ChangeKind.DELETE:
            comment_id = row.get("id")
            if comment_id in (None, ""):
                raise ValueError("delete event without an id")
            self._comments.remove(issue_id, str(comment_id))
            return
        comment = Comment.model_validate({"issue_id": issue_id, **row})
        kind = MergeKind.INSERT if event.kind == ChangeKind.INSERT else MergeKind.UPDATE
        self._comments.apply(kind, comment)

    async def aclose(self) -> None:
        for subscription in list(self._subscriptions.values()):
            self.release(subscription)
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
