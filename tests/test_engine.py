from __future__ import annotations

from typing import Any

import pytest

from pyissuemap.config import IssueMapConfig
from pyissuemap.engine import IssueMapEngine
from pyissuemap.exceptions import IssueMapError, NetworkError
from pyissuemap.models.comment import Comment
from pyissuemap.models.issue import Issue
from pyissuemap.models.location import BoundingBox, Coordinate, GeocodeResult, LocationContext, LocationTier
from pyissuemap.models.requests import IssueQuery
from pyissuemap.realtime import (
    ISSUES_SCOPE,
    ChangeEvent,
    EventHandler,
    FeedStatus,
    StatusHandler,
    SubscriptionState,
    comments_scope,
)

PARIS = Coordinate(lat=48.8566, lng=2.3522)
FRANCE = LocationContext(
    tier=LocationTier.COUNTRY,
    name="France",
    center=PARIS,
    bounds=BoundingBox(west=-5.2, south=41.3, east=9.6, north=51.1),
)
CONFIG = IssueMapConfig(realtime_enabled=False, debounce_ms=0, throttle_ms=0)


def _issue(issue_id: str, **overrides: Any) -> Issue:
    row: dict[str, Any] = {
        "id": issue_id,
        "title": f"Issue {issue_id}",
        "category": "safety",
        "latitude": 48.85,
        "longitude": 2.35,
        "location_type": "country",
        "votes_count": 2,
    }
    row.update(overrides)
    return Issue.model_validate(row)


class _FakeBackend:
    def __init__(self) -> None:
        self.issues = [_issue("a"), _issue("b")]
        self.queries: list[IssueQuery] = []
        self.votes: set[tuple[str, str]] = set()
        self.comments: list[Comment] = [Comment(id="c1", issue_id="a", content="Seen it too")]
        self.comment_error: Exception | None = None

    async def query_issues(self, query: IssueQuery) -> tuple[list[Issue], int]:
        self.queries.append(query)
        return list(self.issues), len(self.issues)

    async def fetch_voted_issue_ids(self, user_id: str, issue_ids: Any) -> set[str]:
        return {issue_id for issue_id in issue_ids if (issue_id, user_id) in self.votes}

    async def insert_issue(self, row: dict[str, Any]) -> Issue:
        return _issue("new", **row)

    async def insert_vote(self, issue_id: str, user_id: str) -> None:
        self.votes.add((issue_id, user_id))

    async def delete_vote(self, issue_id: str, user_id: str) -> None:
        self.votes.discard((issue_id, user_id))

    async def fetch_comments(self, issue_id: str) -> list[Comment]:
        if self.comment_error is not None:
            raise self.comment_error
        return [comment for comment in self.comments if comment.issue_id == issue_id]

    async def insert_comment(self, row: dict[str, Any]) -> Comment:
        return Comment(id="c-new", **row)

    async def delete_comment(self, comment_id: str, user_id: str) -> bool:
        return True


class _FakeGeocoder:
    async def lookup(self, lng: float, lat: float, place_type: str) -> GeocodeResult | None:
        return GeocodeResult(display_name="France", bounds=FRANCE.bounds)

    async def search(self, query: str) -> list[GeocodeResult]:
        return [GeocodeResult(display_name="France", bounds=FRANCE.bounds)]


class _FakeFeed:
    def __init__(self) -> None:
        self.handlers: dict[str, tuple[EventHandler, StatusHandler]] = {}
        self.unsubscribed: list[str] = []

    def subscribe(self, scope: str, on_event: EventHandler, on_status: StatusHandler) -> None:
        self.handlers[scope] = (on_event, on_status)

    def unsubscribe(self, scope: str) -> None:
        self.handlers.pop(scope, None)
        self.unsubscribed.append(scope)

    def status(self, scope: str, status: FeedStatus) -> None:
        self.handlers[scope][1](status)


class _RecordingView:
    def __init__(self) -> None:
        self.renders: list[dict[str, Any]] = []
        self.votes: list[tuple[str, int, bool]] = []
        self.errors: list[str] = []
        self.auth: list[str] = []
        self.focused: list[str] = []
        self.threads: list[tuple[str, tuple[Comment, ...]]] = []

    def render(self, feature_collection: dict[str, Any]) -> None:
        self.renders.append(feature_collection)

    def notify_vote_change(self, issue_id: str, new_count: int, voted: bool) -> None:
        self.votes.append((issue_id, new_count, voted))

    def notify_error(self, message: str) -> None:
        self.errors.append(message)

    def notify_auth_required(self, message: str) -> None:
        self.auth.append(message)

    def focus_issue(self, issue: Issue) -> None:
        self.focused.append(issue.id)

    def render_comments(self, issue_id: str, comments: tuple[Comment, ...]) -> None:
        self.threads.append((issue_id, comments))


def _engine(
    backend: _FakeBackend | None = None, feed: _FakeFeed | None = None
) -> tuple[IssueMapEngine, _FakeBackend, _RecordingView]:
    backend = backend or _FakeBackend()
    view = _RecordingView()
    engine = IssueMapEngine(CONFIG, view=view, backend=backend, geocoder=_FakeGeocoder(), feed=feed)
    return engine, backend, view


def _ids(feature_collection: dict[str, Any]) -> list[str]:
    return sorted(feature["properties"]["id"] for feature in feature_collection["features"])


@pytest.mark.asyncio
async def test_engine_requires_context_manager() -> None:
    engine, _, _ = _engine()

    with pytest.raises(IssueMapError):
        await engine.load_issues(FRANCE)


@pytest.mark.asyncio
async def test_load_renders_feature_collection() -> None:
    engine, backend, view = _engine()

    async with engine:
        page = await engine.load_issues(FRANCE)

    assert page.total == 2
    assert _ids(view.renders[-1]) == ["a", "b"]
    assert engine.context == FRANCE
    assert backend.queries[0].tier is LocationTier.COUNTRY


@pytest.mark.asyncio
async def test_vote_requires_sign_in() -> None:
    engine, backend, view = _engine()

    async with engine:
        await engine.load_issues(FRANCE)
        voted = await engine.toggle_vote("a")

    assert voted is False
    assert view.auth
    assert backend.votes == set()


@pytest.mark.asyncio
async def test_signed_in_vote_updates_store_and_view() -> None:
    engine, backend, view = _engine()

    async with engine:
        await engine.set_user("u-1", "jwt")
        await engine.load_issues(FRANCE)
        voted = await engine.toggle_vote("a")
        issue = engine.store.get("a")

    assert voted is True
    assert backend.votes == {("a", "u-1")}
    assert issue is not None and issue.has_voted and issue.votes_count == 3
    assert view.votes == [("a", 3, True)]


@pytest.mark.asyncio
async def test_sign_out_drops_user_pages_and_votes() -> None:
    backend = _FakeBackend()
    backend.votes.add(("a", "u-1"))
    engine, _, _ = _engine(backend)

    async with engine:
        await engine.set_user("u-1")
        await engine.load_issues(FRANCE)
        assert engine.store.get("a").has_voted  # type: ignore[union-attr]

        await engine.sign_out()

        assert engine.session.user_id is None
        assert not engine.store.get("a").has_voted  # type: ignore[union-attr]
        assert len(engine.cache) == 1


@pytest.mark.asyncio
async def test_open_and_close_issue_thread() -> None:
    feed = _FakeFeed()
    engine, _, view = _engine(feed=feed)

    async with engine:
        thread = await engine.open_issue("a")
        assert comments_scope("a") in feed.handlers

        engine.close_issue("a")

        assert [c.id for c in thread] == ["c1"]
        assert view.threads[-1][0] == "a"
        assert feed.unsubscribed == [comments_scope("a")]
        assert engine.comments.thread("a") == ()


@pytest.mark.asyncio
async def test_open_issue_failure_notifies_view() -> None:
    backend = _FakeBackend()
    backend.comment_error = NetworkError("offline")
    engine, _, view = _engine(backend)

    async with engine:
        thread = await engine.open_issue("a")

    assert thread == ()
    assert view.errors == ["Failed to load comments: offline"]


@pytest.mark.asyncio
async def test_recovered_feed_triggers_refresh() -> None:
    feed = _FakeFeed()
    engine, backend, _ = _engine(feed=feed)

    async with engine:
        await engine.load_issues(FRANCE)
        feed.status(ISSUES_SCOPE, FeedStatus.SUBSCRIBED)
        feed.status(ISSUES_SCOPE, FeedStatus.TRANSPORT_ERROR)
        assert engine.reconciler.subscriptions[ISSUES_SCOPE].state is SubscriptionState.RECONNECTING

        feed.status(ISSUES_SCOPE, FeedStatus.RECOVERED)
        await engine.reconciler.drain()

    assert len(backend.queries) == 2


@pytest.mark.asyncio
async def test_realtime_insert_is_rendered() -> None:
    feed = _FakeFeed()
    engine, _, view = _engine(feed=feed)

    async with engine:
        await engine.load_issues(FRANCE)
        event = ChangeEvent(
            kind="insert",
            table="issues",
            after={"id": "c", "title": "New", "latitude": 48.0, "longitude": 2.0},
        )
        feed.handlers[ISSUES_SCOPE][0](event)

    assert _ids(view.renders[-1]) == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_create_issue_focuses_new_issue() -> None:
    engine, _, view = _engine()

    async with engine:
        await engine.set_user("u-1")
        issue = await engine.create_issue(
            {
                "title": "Pothole",
                "description": "Deep one",
                "category": "infrastructure",
                "latitude": 48.85,
                "longitude": 2.35,
                "location_type": "country",
                "location_name": "France",
            }
        )

    assert issue is not None
    assert view.focused == [issue.id]
    assert "new" in _ids(view.renders[-1])


@pytest.mark.asyncio
async def test_search_locations_uses_geocoder() -> None:
    engine, _, _ = _engine()

    async with engine:
        results = await engine.search_locations("fra")

    assert [r.display_name for r in results] == ["France"]
