"""Shared helpers for the PostgREST-style backend endpoint modules.

This module centralizes the most repeated patterns:
- building table URLs and auth headers
- pagination headers and ``Content-Range`` totals
- escaping user text for filter expressions

It is internal to pyissuemap and may change at any time.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any, TypeVar

import pydantic

from pyissuemap.config import IssueMapConfig
from pyissuemap.exceptions import QueryError

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)

REST_PREFIX = "/rest/v1"
ISSUE_SELECT = "*,profiles(username)"

# Characters with meaning inside PostgREST logical filter expressions.
_RESERVED = re.compile(r"[,()*:\"\\]")


def table_url(config: IssueMapConfig, table: str) -> str:
    return f"{config.backend_url.rstrip('/')}{REST_PREFIX}/{table}"


def build_headers(
    config: IssueMapConfig,
    *,
    access_token: str | None = None,
    prefer: str | None = None,
    offset: int | None = None,
    limit: int | None = None,
) -> dict[str, str]:
    """Build common request headers: API key, bearer token, paging."""
    headers: dict[str, str] = {}
    if config.api_key:
        headers["apikey"] = config.api_key
    bearer = access_token or config.api_key
    if bearer:
        headers["authorization"] = f"Bearer {bearer}"
    if prefer:
        headers["prefer"] = prefer
    if offset is not None and limit is not None:
        headers["range-unit"] = "items"
        headers["range"] = f"{offset}-{offset + limit - 1}"
    return headers


def parse_content_range(value: str | None) -> int | None:
    """Return the total from a ``Content-Range`` header (``0-9/57``, ``*/0``)."""
    if not value or "/" not in value:
        return None
    total = value.rsplit("/", 1)[1].strip()
    if not total.isdigit():
        return None
    return int(total)


def escape_term(term: str) -> str:
    """Strip characters that would break out of a filter expression."""
    return _RESERVED.sub(" ", term).strip()


def in_list(values: Iterable[str]) -> str:
    return "in.(" + ",".join(escape_term(v) for v in values) + ")"


def parse_rows(model: type[ModelT], data: Any, *, endpoint: str) -> list[ModelT]:
    """Validate a JSON array of rows; a malformed row fails the whole response."""
    rows = data if isinstance(data, list) else []
    try:
        return [model.model_validate(row) for row in rows if isinstance(row, dict)]
    except pydantic.ValidationError as exc:
        raise QueryError(
            f"Malformed {model.__name__} row: {exc.error_count()} error(s)",
            code="invalid_row",
            endpoint=endpoint,
        ) from exc


def parse_single_row(model: type[ModelT], data: Any, *, endpoint: str) -> ModelT:
    """Validate the representation returned by an insert (``return=representation``)."""
    if isinstance(data, list):
        data = data[0] if data else None
    if not isinstance(data, dict):
        raise QueryError(f"{model.__name__} insert returned no row", code="empty_response", endpoint=endpoint)
    return parse_rows(model, [data], endpoint=endpoint)[0]
