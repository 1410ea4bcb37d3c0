"""Deterministic in-memory feature store.

This is the only component allowed to change the rendered issue set. Page
loads, realtime events and optimistic mutations all go through
:meth:`FeatureStore.apply`. Issues are keyed by identifier, so the set can
never hold two entries with the same id.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from pyissuemap.models.issue import Issue
from pyissuemap.state.events import ChangeSource, FeatureChange, MergeKind

_logger = logging.getLogger(__name__)

StoreListener = Callable[["FeatureStore", FeatureChange], None]


class FeatureStore:
    """The rendered feature collection and its single merge entry point.

    Every applied change that modifies the set bumps :attr:`revision`.
    Loads record the revision at issuance; when their snapshot lands,
    issues merged after that point are kept and issues deleted after it
    are not brought back.
    """

    def __init__(self) -> None:
        self._issues: dict[str, Issue] = {}
        self._revision = 0
        # Revision of the last non-query merge per issue, and of deletes.
        self._touched: dict[str, int] = {}
        self._tombstones: dict[str, int] = {}
        self._listeners: list[StoreListener] = []

    @property
    def revision(self) -> int:
        return self._revision

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def apply(self, change: FeatureChange) -> bool:
        """Merge *change*; return whether the rendered set changed."""
        if change.kind == MergeKind.SNAPSHOT:
            changed = self._apply_snapshot(change)
        elif change.kind == MergeKind.INSERT:
            changed = self._apply_insert(change)
        elif change.kind == MergeKind.UPDATE:
            changed = self._apply_update(change)
        elif change.kind == MergeKind.DELETE:
            changed = self._apply_delete(change)
        else:
            changed = self._apply_patch(change)

        if changed:
            self._notify(change)
        return changed

    # ------------------------------------------------------------------
    # Merge kinds
    # ------------------------------------------------------------------

    def _mark(self, issue_id: str, source: ChangeSource) -> None:
        self._revision += 1
        if source != ChangeSource.QUERY:
            self._touched[issue_id] = self._revision

    def _apply_insert(self, change: FeatureChange) -> bool:
        issue = change.issue
        assert issue is not None  # noqa: S101
        if issue.id in self._issues:
            # Already present (optimistic insert, earlier echo): idempotent.
            return False
        self._tombstones.pop(issue.id, None)
        self._issues[issue.id] = issue
        self._mark(issue.id, change.source)
        return True

    def _apply_update(self, change: FeatureChange) -> bool:
        issue = change.issue
        assert issue is not None  # noqa: S101
        existing = self._issues.get(issue.id)
        if existing is None:
            return self._apply_insert(change)
        updated = existing.model_copy(update=issue.mutable_fields())
        if updated == existing:
            return False
        self._issues[issue.id] = updated
        self._mark(issue.id, change.source)
        return True

    def _apply_delete(self, change: FeatureChange) -> bool:
        issue_id = change.target_id
        assert issue_id is not None  # noqa: S101
        if self._issues.pop(issue_id, None) is None:
            return False
        self._mark(issue_id, change.source)
        self._tombstones[issue_id] = self._revision
        self._touched.pop(issue_id, None)
        return True

    def _apply_patch(self, change: FeatureChange) -> bool:
        issue_id = change.target_id
        assert issue_id is not None  # noqa: S101
        existing = self._issues.get(issue_id)
        if existing is None:
            return False
        updates: dict[str, Any] = {k: v for k, v in change.changes.items() if k != "id"}
        updated = existing.model_copy(update=updates)
        if updated == existing:
            return False
        self._issues[issue_id] = updated
        self._mark(issue_id, change.source)
        return True

    def _apply_snapshot(self, change: FeatureChange) -> bool:
        issued = change.issued_revision
        merged: dict[str, Issue] = {}

        for issue in change.issues:
            if issue.id in merged:
                continue
            if self._tombstones.get(issue.id, -1) > issued:
                continue
            existing = self._issues.get(issue.id)
            if existing is not None and self._touched.get(issue.id, -1) > issued:
                merged[issue.id] = existing
            else:
                merged[issue.id] = issue

        # Issues merged after the load was issued survive the snapshot.
        for issue_id, existing in self._issues.items():
            if issue_id not in merged and self._touched.get(issue_id, -1) > issued:
                merged[issue_id] = existing

        changed = list(merged.items()) != list(self._issues.items())
        self._issues = merged
        self._revision += 1
        self._touched = {k: v for k, v in self._touched.items() if v > issued}
        self._tombstones = {k: v for k, v in self._tombstones.items() if v > issued}
        return changed

    def _notify(self, change: FeatureChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(self, change)
            except Exception:
                _logger.debug("Feature store listener failed", exc_info=True)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def get(self, issue_id: str) -> Issue | None:
        return self._issues.get(issue_id)

    def issues(self) -> tuple[Issue, ...]:
        return tuple(self._issues.values())

    def ids(self) -> list[str]:
        return list(self._issues)

    def feature_collection(self) -> dict[str, Any]:
        """GeoJSON FeatureCollection of the rendered issues."""
        return {
            "type": "FeatureCollection",
            "features": [issue.to_feature() for issue in self._issues.values()],
        }

    def __len__(self) -> int:
        return len(self._issues)

    def __contains__(self, issue_id: object) -> bool:
        return issue_id in self._issues
