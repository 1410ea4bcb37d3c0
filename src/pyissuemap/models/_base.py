"""Base model and enum for backend rows.

Every row model inherits from :class:`IssueMapBaseModel` which provides:

* frozen instances (rows are replaced wholesale, never mutated)
* a ``model_validator(mode="before")`` that drops ``None`` and blank
  strings so the field default is used instead of failing validation

Enums inherit from :class:`FallbackStrEnum`: values without a mapped
member resolve to the class's ``fallback()`` member instead of raising.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, model_validator


class FallbackStrEnum(StrEnum):
    """String enum that maps unknown values to a fallback member."""

    @classmethod
    def fallback(cls) -> FallbackStrEnum:
        """Member used for unmapped values. Defaults to the first member."""
        return next(iter(cls))

    @classmethod
    def _missing_(cls, value: object) -> FallbackStrEnum:
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        return cls.fallback()


class IssueMapBaseModel(BaseModel):
    """Base for rows read from the backend store."""

    _KEY_ALIASES: ClassVar[dict[str, str]] = {}

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_empty_values(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        working = dict(values)
        for old_key, new_key in cls._KEY_ALIASES.items():
            if old_key in working and new_key not in working:
                working[new_key] = working.pop(old_key)
        cleaned: dict[str, Any] = {}
        for key, value in working.items():
            if value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            cleaned[key] = value
        return cleaned
