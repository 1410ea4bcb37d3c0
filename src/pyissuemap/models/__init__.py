"""Typed models for pyissuemap."""

from pyissuemap.models.comment import Comment, CommentDraft
from pyissuemap.models.issue import MUTABLE_FIELDS, Issue, IssueCategory, IssueDraft
from pyissuemap.models.location import (
    UNKNOWN_LOCATION,
    WORLD,
    BoundingBox,
    Coordinate,
    GeocodeResult,
    LocationContext,
    LocationTier,
    Viewport,
)
from pyissuemap.models.requests import IssuePage, IssueQuery, SortOrder

__all__ = [
    "MUTABLE_FIELDS",
    "UNKNOWN_LOCATION",
    "WORLD",
    "BoundingBox",
    "Comment",
    "CommentDraft",
    "Coordinate",
    "GeocodeResult",
    "Issue",
    "IssueCategory",
    "IssueDraft",
    "IssuePage",
    "IssueQuery",
    "LocationContext",
    "LocationTier",
    "SortOrder",
    "Viewport",
]
