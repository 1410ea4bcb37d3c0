from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from pyissuemap._api import comments as comments_api
from pyissuemap._api import geocoding as geocoding_api
from pyissuemap._api import issues as issues_api
from pyissuemap._api import votes as votes_api
from pyissuemap._api._common import build_headers, escape_term, parse_content_range
from pyissuemap._transport import TransportResponse
from pyissuemap.config import IssueMapConfig
from pyissuemap.exceptions import QueryError
from pyissuemap.models.issue import IssueCategory
from pyissuemap.models.location import BoundingBox, LocationTier
from pyissuemap.models.requests import IssueQuery, SortOrder

CONFIG = IssueMapConfig(
    backend_url="https://db.example.test/",
    api_key="anon",
    geocoder_url="https://geo.example.test",
    geocoder_token="pk.test",
    realtime_enabled=False,
)


class _FakeTransport:
    def __init__(self, data: Any = None, headers: Mapping[str, str] | None = None) -> None:
        self.data = data
        self.headers = dict(headers or {})
        self.calls: list[dict[str, Any]] = []

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, str] | None = None,
        json_body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> TransportResponse:
        self.calls.append(
            {"method": method, "url": url, "params": dict(params or {}), "json": json_body, "headers": dict(headers or {})}
        )
        return TransportResponse(status=200, data=self.data, headers=self.headers)


def _row(issue_id: str) -> dict[str, Any]:
    return {"id": issue_id, "title": "t", "latitude": 1.0, "longitude": 2.0, "profiles": {"username": "ada"}}


def test_scoped_params_filter_bounds_and_tier() -> None:
    query = IssueQuery(
        tier=LocationTier.COUNTRY,
        bounds=BoundingBox(west=-5, south=41, east=9, north=51),
        sort=SortOrder.MOST_VOTED,
        search="street light",
        categories=frozenset({IssueCategory.SAFETY, IssueCategory.HEALTH}),
    )

    params = issues_api.build_issue_params(query)

    assert params["order"] == "votes_count.desc,id.desc"
    assert params["location_type"] == "eq.country"
    assert params["and"] == (
        "(latitude.gte.41.0,latitude.lte.51.0,longitude.gte.-5.0,longitude.lte.9.0,"
        "or(title.ilike.*street light*,description.ilike.*street light*))"
    )
    assert params["category"] == "in.(health,safety)"


def test_global_params_have_no_location_filters() -> None:
    params = issues_api.build_issue_params(IssueQuery(tier=LocationTier.GLOBAL))

    assert "location_type" not in params
    assert "and" not in params
    assert params["order"] == "created_at.desc,id.desc"


def test_antimeridian_bounds_use_or_on_longitude() -> None:
    query = IssueQuery(tier=LocationTier.STATE, bounds=BoundingBox(west=170, south=-20, east=-170, north=0))

    params = issues_api.build_issue_params(query)

    assert "or(longitude.gte.170.0,longitude.lte.-170.0)" in params["and"]


def test_search_term_is_escaped() -> None:
    assert escape_term("a,b(c)*") == "a b c"


def test_headers_and_content_range() -> None:
    headers = build_headers(CONFIG, access_token="user-jwt", prefer="count=exact", offset=10, limit=10)

    assert headers["apikey"] == "anon"
    assert headers["authorization"] == "Bearer user-jwt"
    assert headers["range"] == "10-19"
    assert build_headers(CONFIG)["authorization"] == "Bearer anon"
    assert parse_content_range("0-9/57") == 57
    assert parse_content_range("*/0") == 0
    assert parse_content_range("0-9/*") is None


@pytest.mark.asyncio
async def test_query_issues_reads_rows_and_total() -> None:
    transport = _FakeTransport([_row("a"), _row("b")], {"content-range": "0-1/12"})

    issues, total = await issues_api.query_issues(CONFIG, transport, IssueQuery(tier=LocationTier.GLOBAL, page=2))

    assert [issue.id for issue in issues] == ["a", "b"]
    assert issues[0].username == "ada"
    assert total == 12
    call = transport.calls[0]
    assert call["url"] == "https://db.example.test/rest/v1/issues"
    assert call["headers"]["prefer"] == "count=exact"
    assert call["headers"]["range"] == "10-19"


@pytest.mark.asyncio
async def test_malformed_row_is_query_error() -> None:
    transport = _FakeTransport([{"id": "a", "latitude": "north"}])

    with pytest.raises(QueryError) as excinfo:
        await issues_api.query_issues(CONFIG, transport, IssueQuery(tier=LocationTier.GLOBAL))

    assert excinfo.value.code == "invalid_row"


@pytest.mark.asyncio
async def test_insert_issue_returns_representation() -> None:
    transport = _FakeTransport([_row("new")])

    issue = await issues_api.insert_issue(CONFIG, transport, {"title": "t"})

    assert issue.id == "new"
    assert transport.calls[0]["headers"]["prefer"] == "return=representation"


@pytest.mark.asyncio
async def test_insert_issue_without_row_fails() -> None:
    with pytest.raises(QueryError):
        await issues_api.insert_issue(CONFIG, _FakeTransport([]), {"title": "t"})


@pytest.mark.asyncio
async def test_vote_endpoints() -> None:
    transport = _FakeTransport([{"issue_id": "b"}, {"issue_id": 3}])

    voted = await votes_api.fetch_voted_issue_ids(CONFIG, transport, "u-1", ["b", "a", "3"])
    await votes_api.delete_vote(CONFIG, transport, "a", "u-1")

    assert voted == {"b", "3"}
    assert transport.calls[0]["params"]["issue_id"] == "in.(3,a,b)"
    assert transport.calls[1]["method"] == "DELETE"
    assert transport.calls[1]["params"] == {"issue_id": "eq.a", "user_id": "eq.u-1"}


@pytest.mark.asyncio
async def test_fetch_voted_issue_ids_skips_empty_request() -> None:
    transport = _FakeTransport()

    assert await votes_api.fetch_voted_issue_ids(CONFIG, transport, "u-1", []) == set()
    assert transport.calls == []


@pytest.mark.asyncio
async def test_comment_endpoints() -> None:
    transport = _FakeTransport([{"id": "c1", "issue_id": "a", "content": "hi"}])

    thread = await comments_api.fetch_comments(CONFIG, transport, "a")
    deleted = await comments_api.delete_comment(CONFIG, transport, "c1", "u-1")

    assert [c.id for c in thread] == ["c1"]
    assert transport.calls[0]["params"]["order"] == "created_at.asc"
    assert deleted is True


@pytest.mark.asyncio
async def test_reverse_geocode_parses_first_feature() -> None:
    transport = _FakeTransport(
        {
            "features": [
                {"place_name": "France", "bbox": [-5.2, 41.3, 9.6, 51.1], "center": [2.2, 46.2]},
                {"place_name": "Elsewhere"},
            ]
        }
    )

    result = await geocoding_api.reverse_geocode(CONFIG, transport, 2.35, 48.85, "country")

    assert result is not None
    assert result.display_name == "France"
    assert result.bounds == BoundingBox(west=-5.2, south=41.3, east=9.6, north=51.1)
    call = transport.calls[0]
    assert call["url"] == "https://geo.example.test/geocoding/v5/mapbox.places/2.35,48.85.json"
    assert call["params"] == {"types": "country", "limit": "1", "access_token": "pk.test"}


@pytest.mark.asyncio
async def test_reverse_geocode_without_features_is_none() -> None:
    assert await geocoding_api.reverse_geocode(CONFIG, _FakeTransport({"features": []}), 0, 0, "region") is None


@pytest.mark.asyncio
async def test_search_places_skips_unnamed_features() -> None:
    transport = _FakeTransport({"features": [{"text": "Paris"}, {"bbox": [0, 0, 1, 1]}]})

    results = await geocoding_api.search_places(CONFIG, transport, "paris")

    assert [r.display_name for r in results] == ["Paris"]
    assert transport.calls[0]["params"]["types"] == "country,region,place"
