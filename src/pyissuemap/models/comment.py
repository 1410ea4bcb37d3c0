"""Comment models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pyissuemap.models._base import IssueMapBaseModel
from pyissuemap.models.issue import MAX_DESCRIPTION_LENGTH


class Comment(IssueMapBaseModel):
    """A comment on an issue thread."""

    id: str
    issue_id: str
    user_id: str | None = None
    username: str | None = None
    content: str = ""
    created_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_profile(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        profile = values.get("profiles")
        if isinstance(profile, dict) and "username" not in values:
            merged = dict(values)
            merged["username"] = profile.get("username")
            return merged
        return values

    @field_validator("id", "issue_id", "user_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value


class CommentDraft(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    issue_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1, max_length=MAX_DESCRIPTION_LENGTH)

    def to_row(self, user_id: str) -> dict[str, Any]:
        return {"issue_id": self.issue_id, "content": self.content, "user_id": user_id}
