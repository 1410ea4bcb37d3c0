"""Vote table endpoints.

A vote is the existence of a ``(issue_id, user_id)`` row; there is no
boolean column.
"""

from __future__ import annotations

from collections.abc import Iterable

from pyissuemap._api._common import build_headers, in_list, table_url
from pyissuemap._transport import Transport
from pyissuemap.config import IssueMapConfig


async def insert_vote(
    config: IssueMapConfig,
    transport: Transport,
    issue_id: str,
    user_id: str,
    *,
    access_token: str | None = None,
) -> None:
    await transport.request(
        "POST",
        table_url(config, "votes"),
        json_body={"issue_id": issue_id, "user_id": user_id},
        headers=build_headers(config, access_token=access_token, prefer="return=minimal"),
    )


async def delete_vote(
    config: IssueMapConfig,
    transport: Transport,
    issue_id: str,
    user_id: str,
    *,
    access_token: str | None = None,
) -> None:
    await transport.request(
        "DELETE",
        table_url(config, "votes"),
        params={"issue_id": f"eq.{issue_id}", "user_id": f"eq.{user_id}"},
        headers=build_headers(config, access_token=access_token, prefer="return=minimal"),
    )


async def fetch_voted_issue_ids(
    config: IssueMapConfig,
    transport: Transport,
    user_id: str,
    issue_ids: Iterable[str],
    *,
    access_token: str | None = None,
) -> set[str]:
    """Return the subset of *issue_ids* the user has voted on."""
    wanted = sorted(set(issue_ids))
    if not wanted:
        return set()
    response = await transport.request(
        "GET",
        table_url(config, "votes"),
        params={"select": "issue_id", "user_id": f"eq.{user_id}", "issue_id": in_list(wanted)},
        headers=build_headers(config, access_token=access_token),
    )
    rows = response.data if isinstance(response.data, list) else []
    return {str(row["issue_id"]) for row in rows if isinstance(row, dict) and row.get("issue_id") is not None}
