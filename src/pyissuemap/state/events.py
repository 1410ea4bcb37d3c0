"""Normalized merge events.

Every path that changes the rendered issue set (page loads, realtime
events, optimistic mutations and their rollbacks) converts its input into a
:class:`FeatureChange`. Only the state/store layer is allowed to apply them.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pyissuemap.models.issue import Issue


class ChangeSource(StrEnum):
    QUERY = "query"
    REALTIME = "realtime"
    MUTATION = "mutation"
    OPTIMISTIC = "optimistic"
    ROLLBACK = "rollback"


class MergeKind(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    PATCH = "patch"
    SNAPSHOT = "snapshot"


class FeatureChange(BaseModel):
    """A proposed change to the rendered feature set.

    * ``insert`` / ``update`` carry ``issue``.
    * ``delete`` carries ``issue_id``.
    * ``patch`` carries ``issue_id`` and ``changes`` (local-only field patch).
    * ``snapshot`` carries ``issues`` and ``issued_revision``: the store
      revision at the moment the load was issued.
    """

    model_config = ConfigDict(frozen=True)

    kind: MergeKind
    source: ChangeSource
    issue: Issue | None = None
    issue_id: str | None = None
    changes: dict[str, Any] = Field(default_factory=dict)
    issues: tuple[Issue, ...] = ()
    issued_revision: int = 0
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def _check_payload(self) -> FeatureChange:
        if self.kind in (MergeKind.INSERT, MergeKind.UPDATE) and self.issue is None:
            raise ValueError(f"{self.kind} change requires an issue")
        if self.kind in (MergeKind.DELETE, MergeKind.PATCH) and not self.target_id:
            raise ValueError(f"{self.kind} change requires an issue_id")
        return self

    @property
    def target_id(self) -> str | None:
        if self.issue is not None:
            return self.issue.id
        return self.issue_id

    @classmethod
    def insert(cls, issue: Issue, source: ChangeSource) -> FeatureChange:
        return cls(kind=MergeKind.INSERT, source=source, issue=issue)

    @classmethod
    def update(cls, issue: Issue, source: ChangeSource) -> FeatureChange:
        return cls(kind=MergeKind.UPDATE, source=source, issue=issue)

    @classmethod
    def delete(cls, issue_id: str, source: ChangeSource) -> FeatureChange:
        return cls(kind=MergeKind.DELETE, source=source, issue_id=issue_id)

    @classmethod
    def patch(cls, issue_id: str, changes: dict[str, Any], source: ChangeSource) -> FeatureChange:
        return cls(kind=MergeKind.PATCH, source=source, issue_id=issue_id, changes=changes)

    @classmethod
    def snapshot(cls, issues: tuple[Issue, ...], issued_revision: int) -> FeatureChange:
        return cls(
            kind=MergeKind.SNAPSHOT,
            source=ChangeSource.QUERY,
            issues=issues,
            issued_revision=issued_revision,
        )
