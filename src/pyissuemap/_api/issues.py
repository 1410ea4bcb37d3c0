"""Issue table endpoints."""

from __future__ import annotations

import logging
from typing import Any

from pyissuemap._api._common import (
    ISSUE_SELECT,
    build_headers,
    escape_term,
    in_list,
    parse_content_range,
    parse_rows,
    parse_single_row,
    table_url,
)
from pyissuemap._transport import Transport
from pyissuemap.config import IssueMapConfig
from pyissuemap.models.issue import Issue
from pyissuemap.models.requests import IssueQuery

_logger = logging.getLogger(__name__)


def build_issue_params(query: IssueQuery) -> dict[str, str]:
    """Translate an :class:`IssueQuery` into PostgREST query parameters."""
    params: dict[str, str] = {
        "select": ISSUE_SELECT,
        "order": f"{query.sort.column}.desc,id.desc",
    }

    conditions: list[str] = []
    if query.scoped:
        params["location_type"] = f"eq.{query.tier.value}"
        bounds = query.bounds
        if bounds is not None:
            conditions.append(f"latitude.gte.{bounds.south}")
            conditions.append(f"latitude.lte.{bounds.north}")
            if bounds.wraps_antimeridian:
                conditions.append(f"or(longitude.gte.{bounds.west},longitude.lte.{bounds.east})")
            else:
                conditions.append(f"longitude.gte.{bounds.west}")
                conditions.append(f"longitude.lte.{bounds.east}")

    if query.search:
        term = escape_term(query.search)
        if term:
            conditions.append(f"or(title.ilike.*{term}*,description.ilike.*{term}*)")

    if conditions:
        params["and"] = "(" + ",".join(conditions) + ")"

    if query.categories:
        params["category"] = in_list(sorted(c.value for c in query.categories))
    return params


async def query_issues(
    config: IssueMapConfig,
    transport: Transport,
    query: IssueQuery,
    *,
    access_token: str | None = None,
) -> tuple[list[Issue], int]:
    """Fetch one page of issues and the exact total."""
    response = await transport.request(
        "GET",
        table_url(config, "issues"),
        params=build_issue_params(query),
        headers=build_headers(
            config,
            access_token=access_token,
            prefer="count=exact",
            offset=query.offset,
            limit=query.page_size,
        ),
    )
    issues = parse_rows(Issue, response.data, endpoint=table_url(config, "issues"))
    total = parse_content_range(response.headers.get("content-range"))
    if total is None:
        _logger.debug("No usable Content-Range on issue query; estimating total")
        total = query.offset + len(issues)
    return issues, total


async def insert_issue(
    config: IssueMapConfig,
    transport: Transport,
    row: dict[str, Any],
    *,
    access_token: str | None = None,
) -> Issue:
    """Insert an issue row and return the stored representation."""
    response = await transport.request(
        "POST",
        table_url(config, "issues"),
        params={"select": ISSUE_SELECT},
        json_body=row,
        headers=build_headers(config, access_token=access_token, prefer="return=representation"),
    )
    return parse_single_row(Issue, response.data, endpoint=table_url(config, "issues"))
