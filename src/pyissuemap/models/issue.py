"""Issue models: rows read from the store and drafts written to it."""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pyissuemap.models._base import FallbackStrEnum, IssueMapBaseModel
from pyissuemap.models.location import Coordinate, LocationTier

MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 1000


class IssueCategory(FallbackStrEnum):
    """Fixed set of issue categories. Unknown values parse as ``OTHER``."""

    ENVIRONMENT = "environment"
    INFRASTRUCTURE = "infrastructure"
    SAFETY = "safety"
    COMMUNITY = "community"
    EDUCATION = "education"
    HEALTH = "health"
    OTHER = "other"

    @classmethod
    def fallback(cls) -> IssueCategory:
        return cls.OTHER

    @property
    def label(self) -> str:
        return self.value.capitalize()


#: Fields a realtime UPDATE is allowed to replace in place.
MUTABLE_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "category",
    "location_name",
    "votes_count",
    "comments_count",
)


class Issue(IssueMapBaseModel):
    """A report pinned to a coordinate.

    ``has_voted`` is client-only: it is derived per session from the
    current user's vote rows and never written back.
    """

    _KEY_ALIASES: ClassVar[dict[str, str]] = {
        "lat": "latitude",
        "lng": "longitude",
        "vote_count": "votes_count",
        "comment_count": "comments_count",
    }

    id: str
    title: str = ""
    description: str = ""
    category: IssueCategory = IssueCategory.OTHER
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    location_type: LocationTier = LocationTier.GLOBAL
    location_name: str = ""
    user_id: str | None = None
    username: str | None = None
    created_at: datetime | None = None
    votes_count: int = Field(default=0, ge=0)
    comments_count: int = Field(default=0, ge=0)
    has_voted: bool = Field(default=False, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _flatten_profile(cls, values: Any) -> Any:
        # PostgREST embeds the author as ``profiles: {"username": ...}``.
        if not isinstance(values, dict):
            return values
        profile = values.get("profiles")
        if isinstance(profile, dict) and "username" not in values:
            merged = dict(values)
            merged["username"] = profile.get("username")
            return merged
        return values

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: Any) -> IssueCategory:
        return IssueCategory(value) if not isinstance(value, IssueCategory) else value

    @field_validator("location_type", mode="before")
    @classmethod
    def _coerce_tier(cls, value: Any) -> LocationTier:
        return LocationTier(value) if not isinstance(value, LocationTier) else value

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(lat=self.latitude, lng=self.longitude)

    def mutable_fields(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in MUTABLE_FIELDS}

    def to_feature(self) -> dict[str, Any]:
        """GeoJSON point feature as consumed by the map layer."""
        return {
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": [self.longitude, self.latitude]},
            "properties": {
                "id": self.id,
                "title": self.title,
                "description": self.description,
                "category": self.category.value,
                "location_name": self.location_name,
                "username": self.username,
                "created_at": self.created_at.isoformat() if self.created_at else None,
                "votes_count": self.votes_count,
                "comments_count": self.comments_count,
                "has_voted": self.has_voted,
            },
        }


class IssueDraft(BaseModel):
    """User input for a new issue.

    Unlike :class:`Issue` parsing, an unknown category is rejected here:
    the user must pick one of the known categories.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
    )

    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str = Field(..., min_length=1, max_length=MAX_DESCRIPTION_LENGTH)
    category: IssueCategory
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    location_type: LocationTier = LocationTier.GLOBAL
    location_name: str = ""

    @field_validator("category", mode="before")
    @classmethod
    def _known_category(cls, value: Any) -> Any:
        if isinstance(value, IssueCategory):
            return value
        normalized = str(value).strip().lower() if value is not None else ""
        if normalized not in {member.value for member in IssueCategory}:
            raise ValueError(f"unknown category {value!r}")
        return normalized

    def to_row(self, user_id: str) -> dict[str, Any]:
        row = self.model_dump(mode="json")
        row["user_id"] = user_id
        return row
