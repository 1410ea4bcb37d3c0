"""High-level async engine for the issue map."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import aiohttp

from pyissuemap._cache import CacheStore
from pyissuemap._mqtt import MqttChangeFeed
from pyissuemap._transport import HttpTransport
from pyissuemap.backend import BackendStore, RestBackend
from pyissuemap.config import IssueMapConfig
from pyissuemap.exceptions import IssueMapError
from pyissuemap.geocoder import MapboxGeocoder, ReverseGeocoder
from pyissuemap.models.comment import Comment
from pyissuemap.models.issue import Issue, IssueCategory, IssueDraft
from pyissuemap.models.location import GeocodeResult, LocationContext, Viewport
from pyissuemap.models.requests import IssuePage, SortOrder
from pyissuemap.mutations import MutationManager
from pyissuemap.orchestrator import ISSUES_NAMESPACE, QueryOrchestrator
from pyissuemap.realtime import ChangeFeed, RealtimeReconciler, Subscription, comments_scope
from pyissuemap.resolver import LocationTierResolver
from pyissuemap.state.comments import CommentStore
from pyissuemap.state.events import FeatureChange
from pyissuemap.state.store import FeatureStore
from pyissuemap.view import NullView, ViewAdapter, report_error

_logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SessionContext:
    """Who is using the engine. Replaced on sign-in and sign-out."""

    user_id: str | None = None
    access_token: str | None = None


class IssueMapEngine:
    """Async engine for browsing, voting on and reporting map issues.

    Usage::

        async with IssueMapEngine(config, view=my_view) as engine:
            await engine.set_user(user_id, access_token)
            engine.on_viewport_changed(viewport)

    ``backend``, ``geocoder`` and ``feed`` may be injected; by default the
    engine talks HTTP through its own aiohttp session and, when
    ``config.realtime_enabled`` is set, listens on an MQTT change feed.
    """

    def __init__(
        self,
        config: IssueMapConfig,
        *,
        view: ViewAdapter | None = None,
        session: aiohttp.ClientSession | None = None,
        backend: BackendStore | None = None,
        geocoder: ReverseGeocoder | None = None,
        feed: ChangeFeed | None = None,
    ) -> None:
        self._config = config
        self._view: ViewAdapter = view if view is not None else NullView()
        self._external_session = session is not None
        self._http_session = session
        self._backend = backend
        self._geocoder = geocoder
        self._feed = feed
        self._owned_feed: MqttChangeFeed | None = None
        self._session = SessionContext()

        self._cache = CacheStore(config.cache_capacity)
        self._store = FeatureStore()
        self._comments = CommentStore()
        self._store.subscribe(self._on_store_change)
        self._comments.subscribe(self._view.render_comments)

        self._resolver: LocationTierResolver | None = None
        self._orchestrator: QueryOrchestrator | None = None
        self._mutations: MutationManager | None = None
        self._reconciler: RealtimeReconciler | None = None
        self._issues_subscription: Subscription | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> IssueMapEngine:
        if self._backend is None or self._geocoder is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            transport = HttpTransport(self._http_session, timeout=self._config.request_timeout)
            if self._backend is None:
                self._backend = RestBackend(self._config, transport, access_token=self._access_token)
            if self._geocoder is None:
                self._geocoder = MapboxGeocoder(self._config, transport)

        self._resolver = LocationTierResolver(self._geocoder, self._cache, self._config)
        self._orchestrator = QueryOrchestrator(
            self._backend,
            self._resolver,
            self._cache,
            self._store,
            self._view,
            self._config,
            user_id=self._user_id,
        )
        self._mutations = MutationManager(
            self._backend,
            self._store,
            self._orchestrator,
            self._view,
            comments=self._comments,
        )

        feed = self._feed
        if feed is None and self._config.realtime_enabled:
            feed = await self._start_feed()
        self._reconciler = RealtimeReconciler(
            feed,
            self._store,
            self._comments,
            self._resync,
            resync_comments=self._load_thread,
        )
        self._issues_subscription = self._reconciler.subscribe_issues()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._orchestrator is not None:
            await self._orchestrator.aclose()
        if self._reconciler is not None:
            await self._reconciler.aclose()
        if self._owned_feed is not None:
            await self._owned_feed.aclose()
            self._owned_feed = None
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._issues_subscription = None

    async def _start_feed(self) -> MqttChangeFeed | None:
        feed = MqttChangeFeed(self._config, loop=asyncio.get_running_loop())
        try:
            await feed.astart()
        except Exception:
            _logger.debug("MQTT change feed start failed; realtime disabled", exc_info=True)
            return None
        self._owned_feed = feed
        return feed

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _user_id(self) -> str | None:
        return self._session.user_id

    def _access_token(self) -> str | None:
        return self._session.access_token

    def _require_orchestrator(self) -> QueryOrchestrator:
        if self._orchestrator is None:
            raise IssueMapError("Engine not started. Use 'async with IssueMapEngine(...) as engine:'")
        return self._orchestrator

    def _require_mutations(self) -> MutationManager:
        if self._mutations is None:
            raise IssueMapError("Engine not started. Use 'async with IssueMapEngine(...) as engine:'")
        return self._mutations

    def _require_reconciler(self) -> RealtimeReconciler:
        if self._reconciler is None:
            raise IssueMapError("Engine not started. Use 'async with IssueMapEngine(...) as engine:'")
        return self._reconciler

    def _on_store_change(self, store: FeatureStore, _change: FeatureChange) -> None:
        self._view.render(store.feature_collection())

    async def _resync(self) -> None:
        await self.refresh()

    async def _load_thread(self, issue_id: str) -> tuple[Comment, ...]:
        assert self._backend is not None  # noqa: S101
        comments = await self._backend.fetch_comments(issue_id)
        self._comments.replace(issue_id, comments)
        return self._comments.thread(issue_id)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def config(self) -> IssueMapConfig:
        return self._config

    @property
    def session(self) -> SessionContext:
        return self._session

    @property
    def store(self) -> FeatureStore:
        return self._store

    @property
    def comments(self) -> CommentStore:
        return self._comments

    @property
    def cache(self) -> CacheStore:
        return self._cache

    @property
    def resolver(self) -> LocationTierResolver:
        if self._resolver is None:
            raise IssueMapError("Engine not started. Use 'async with IssueMapEngine(...) as engine:'")
        return self._resolver

    @property
    def orchestrator(self) -> QueryOrchestrator:
        return self._require_orchestrator()

    @property
    def mutations(self) -> MutationManager:
        return self._require_mutations()

    @property
    def reconciler(self) -> RealtimeReconciler:
        return self._require_reconciler()

    @property
    def context(self) -> LocationContext | None:
        return self._orchestrator.context if self._orchestrator is not None else None

    def feature_collection(self) -> dict[str, Any]:
        return self._store.feature_collection()

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def set_user(self, user_id: str, access_token: str | None = None) -> None:
        """Sign in *user_id* and reload the current page with their votes."""
        self._session = SessionContext(user_id=user_id, access_token=access_token)
        await self.refresh()

    async def sign_out(self) -> None:
        previous = self._session.user_id
        self._session = SessionContext()
        if previous is not None:
            self._cache.evict_where(
                lambda key, _value: isinstance(key, tuple) and key[:1] == (ISSUES_NAMESPACE,) and key[-1] == previous
            )
        await self.refresh()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def on_viewport_changed(self, viewport: Viewport) -> None:
        self._require_orchestrator().on_viewport_changed(viewport)

    async def load_issues(
        self,
        context: LocationContext,
        page: int = 1,
        *,
        sort: SortOrder = SortOrder.NEWEST,
        search: str | None = None,
        categories: Iterable[IssueCategory] | None = None,
    ) -> IssuePage:
        """Load one page for *context*. Raises on failure."""
        return await self._require_orchestrator().load_issues(
            context, page, sort=sort, search=search, categories=categories
        )

    async def refresh(self) -> IssuePage | None:
        """Reload the current page bypassing the cache; failures notify the view."""
        orchestrator = self._require_orchestrator()
        try:
            return await orchestrator.refresh()
        except IssueMapError as exc:
            report_error(self._view, exc, "refresh issues")
            return None

    async def change_page(self, page: int) -> IssuePage | None:
        try:
            return await self._require_orchestrator().change_page(page)
        except IssueMapError as exc:
            report_error(self._view, exc, "load issues")
            return None

    async def set_filters(
        self,
        *,
        sort: SortOrder | None = None,
        search: str | None = None,
        categories: Iterable[IssueCategory] | None = None,
    ) -> IssuePage | None:
        try:
            return await self._require_orchestrator().set_filters(sort=sort, search=search, categories=categories)
        except IssueMapError as exc:
            report_error(self._view, exc, "load issues")
            return None

    async def search_locations(self, query: str) -> list[GeocodeResult]:
        return await self.resolver.search(query)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def toggle_vote(self, issue_id: str) -> bool:
        return await self._require_mutations().toggle_vote(issue_id, self._session.user_id)

    async def create_issue(self, draft: IssueDraft | Mapping[str, Any]) -> Issue | None:
        return await self._require_mutations().create_issue(draft, self._session.user_id)

    async def add_comment(self, issue_id: str, content: str) -> Comment | None:
        return await self._require_mutations().add_comment(issue_id, content, self._session.user_id)

    async def delete_comment(self, comment_id: str) -> bool:
        return await self._require_mutations().delete_comment(comment_id, self._session.user_id)

    # ------------------------------------------------------------------
    # Comment threads
    # ------------------------------------------------------------------

    async def open_issue(self, issue_id: str) -> tuple[Comment, ...]:
        """Subscribe to the issue's comment thread and load it."""
        self._require_reconciler().subscribe_comments(issue_id)
        try:
            return await self._load_thread(issue_id)
        except IssueMapError as exc:
            report_error(self._view, exc, "load comments")
            return self._comments.thread(issue_id)

    def close_issue(self, issue_id: str) -> None:
        subscription = self._require_reconciler().subscriptions.get(comments_scope(issue_id))
        if subscription is not None:
            subscription.unsubscribe()
        self._comments.drop(issue_id)
