"""Comment table endpoints."""

from __future__ import annotations

from typing import Any

from pyissuemap._api._common import build_headers, parse_rows, parse_single_row, table_url
from pyissuemap._transport import Transport
from pyissuemap.config import IssueMapConfig
from pyissuemap.models.comment import Comment

_COMMENT_SELECT = "*,profiles(username)"


async def fetch_comments(
    config: IssueMapConfig,
    transport: Transport,
    issue_id: str,
    *,
    access_token: str | None = None,
) -> list[Comment]:
    response = await transport.request(
        "GET",
        table_url(config, "comments"),
        params={"select": _COMMENT_SELECT, "issue_id": f"eq.{issue_id}", "order": "created_at.asc"},
        headers=build_headers(config, access_token=access_token),
    )
    return parse_rows(Comment, response.data, endpoint=table_url(config, "comments"))


async def insert_comment(
    config: IssueMapConfig,
    transport: Transport,
    row: dict[str, Any],
    *,
    access_token: str | None = None,
) -> Comment:
    response = await transport.request(
        "POST",
        table_url(config, "comments"),
        params={"select": _COMMENT_SELECT},
        json_body=row,
        headers=build_headers(config, access_token=access_token, prefer="return=representation"),
    )
    return parse_single_row(Comment, response.data, endpoint=table_url(config, "comments"))


async def delete_comment(
    config: IssueMapConfig,
    transport: Transport,
    comment_id: str,
    user_id: str,
    *,
    access_token: str | None = None,
) -> bool:
    """Delete the user's own comment; returns whether a row was removed."""
    response = await transport.request(
        "DELETE",
        table_url(config, "comments"),
        params={"id": f"eq.{comment_id}", "user_id": f"eq.{user_id}"},
        headers=build_headers(config, access_token=access_token, prefer="return=representation"),
    )
    return isinstance(response.data, list) and len(response.data) > 0
