"""Pydantic request/result models for issue queries.

These models provide a consistent "validate → normalize → execute" flow
between the query orchestrator and the backend store.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pyissuemap.models.issue import Issue, IssueCategory
from pyissuemap.models.location import BoundingBox, LocationTier


class SortOrder(StrEnum):
    NEWEST = "newest"
    MOST_VOTED = "most_voted"

    @property
    def column(self) -> str:
        return "votes_count" if self is SortOrder.MOST_VOTED else "created_at"


class IssueQuery(BaseModel):
    """One page of issues scoped to a location tier."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
    )

    tier: LocationTier
    bounds: BoundingBox | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1)
    sort: SortOrder = SortOrder.NEWEST
    search: str | None = None
    categories: frozenset[IssueCategory] = frozenset()

    @field_validator("search")
    @classmethod
    def _blank_search_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def scoped(self) -> bool:
        """Whether bounds and tier filters apply (everything but ``global``)."""
        return self.tier != LocationTier.GLOBAL


class IssuePage(BaseModel):
    """A page of issues plus the exact total across all pages."""

    model_config = ConfigDict(frozen=True)

    issues: tuple[Issue, ...] = ()
    total: int = Field(default=0, ge=0)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1)

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total

    @property
    def issue_ids(self) -> frozenset[str]:
        return frozenset(issue.id for issue in self.issues)
