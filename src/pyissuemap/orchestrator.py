"""Query orchestration: viewport -> location context -> cached issue page.

Every load takes an issuance number. Only the newest issued load may render;
older results still return to their caller and still populate the cache.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Hashable, Iterable
from typing import Any

from pyissuemap._cache import CacheStore
from pyissuemap._timing import Debouncer, Throttler
from pyissuemap.backend import BackendStore
from pyissuemap.config import IssueMapConfig
from pyissuemap.exceptions import IssueMapError
from pyissuemap.models.issue import Issue, IssueCategory
from pyissuemap.models.location import LocationContext, LocationTier, Viewport
from pyissuemap.models.requests import IssuePage, IssueQuery, SortOrder
from pyissuemap.resolver import LocationTierResolver
from pyissuemap.state.events import FeatureChange
from pyissuemap.state.store import FeatureStore
from pyissuemap.view import ViewAdapter, report_error

_logger = logging.getLogger(__name__)

ISSUES_NAMESPACE = "issues"


@dataclasses.dataclass(frozen=True)
class QueryFilters:
    """Sort order and filters shared by viewport loads, refreshes and paging."""

    sort: SortOrder = SortOrder.NEWEST
    search: str | None = None
    categories: frozenset[IssueCategory] = frozenset()


class QueryOrchestrator:
    """Load issue pages for resolved location contexts.

    ``on_viewport_changed`` is the map-event entry point: it debounces, then
    throttles, then resolves the viewport and loads the first page.
    ``load_issues`` is the direct entry point and raises on failure.
    """

    def __init__(
        self,
        backend: BackendStore,
        resolver: LocationTierResolver,
        cache: CacheStore,
        store: FeatureStore,
        view: ViewAdapter,
        config: IssueMapConfig,
        user_id: Callable[[], str | None] = lambda: None,
    ) -> None:
        self._backend = backend
        self._resolver = resolver
        self._cache = cache
        self._store = store
        self._view = view
        self._config = config
        self._user_id = user_id

        self._issued = 0
        self._viewport_seq = 0
        self._context: LocationContext | None = None
        self._viewport: Viewport | None = None
        self._page = 1
        self._filters = QueryFilters()
        self.last_page: IssuePage | None = None

        self._debouncer = Debouncer(config.debounce_seconds, self._after_debounce)
        self._throttler = Throttler(config.throttle_seconds, self._load_viewport)

    @property
    def context(self) -> LocationContext | None:
        return self._context

    @property
    def viewport(self) -> Viewport | None:
        return self._viewport

    @property
    def page(self) -> int:
        return self._page

    @property
    def filters(self) -> QueryFilters:
        return self._filters

    @property
    def debouncer(self) -> Debouncer:
        return self._debouncer

    @property
    def throttler(self) -> Throttler:
        return self._throttler

    # ------------------------------------------------------------------
    # Direct loads
    # ------------------------------------------------------------------

    def cache_key(
        self,
        context: LocationContext,
        page: int,
        filters: QueryFilters,
    ) -> tuple[Hashable, ...]:
        if context.is_unknown and context.bounds is not None:
            scope: Hashable = context.bounds.rounded(self._config.bounds_cell_size)
        elif context.is_unknown:
            precision = self._config.geocode_precision
            scope = (round(context.center.lng, precision), round(context.center.lat, precision))
        else:
            scope = context.name
        return (
            ISSUES_NAMESPACE,
            context.tier.value,
            scope,
            page,
            filters.sort.value,
            filters.search or "",
            tuple(sorted(category.value for category in filters.categories)),
            self._user_id() or "",
        )

    async def load_issues(
        self,
        context: LocationContext,
        page: int = 1,
        *,
        sort: SortOrder = SortOrder.NEWEST,
        search: str | None = None,
        categories: Iterable[IssueCategory] | None = None,
        use_cache: bool = True,
    ) -> IssuePage:
        """Fetch one page for *context*; render it if it is still the newest load.

        Raises :class:`~pyissuemap.exceptions.NetworkError` (or a subclass)
        on failure; the rendered set and the current context, page and
        filters are left untouched.
        """
        filters = QueryFilters(
            sort=sort,
            search=search.strip() if search and search.strip() else None,
            categories=frozenset(categories or ()),
        )
        self._issued += 1
        ticket = self._issued
        issued_revision = self._store.revision

        key = self.cache_key(context, page, filters)
        if use_cache:
            cached = self._cache.get(key)
            if isinstance(cached, IssuePage):
                _logger.debug("Issue cache hit key=%s", key)
                self._render(cached, ticket, issued_revision, context, filters)
                return cached
        _logger.debug("Issue cache miss key=%s ticket=%d", key, ticket)

        query = IssueQuery(
            tier=context.tier,
            bounds=context.bounds if not context.is_global else None,
            page=page,
            page_size=self._config.page_size,
            sort=filters.sort,
            search=filters.search,
            categories=filters.categories,
        )
        issues, total = await self._backend.query_issues(query)
        issues, votes_known = await self._with_votes(issues)

        result = IssuePage(
            issues=tuple(issues),
            total=total,
            page=page,
            page_size=self._config.page_size,
        )
        if votes_known:
            self._cache.set(key, result, self._config.issue_cache_ttl_ms)
        self._render(result, ticket, issued_revision, context, filters)
        return result

    async def _with_votes(self, issues: list[Issue]) -> tuple[list[Issue], bool]:
        user_id = self._user_id()
        if not user_id or not issues:
            return issues, True
        try:
            voted = await self._backend.fetch_voted_issue_ids(user_id, [issue.id for issue in issues])
        except IssueMapError:
            _logger.debug("Vote lookup failed; page will not be cached", exc_info=True)
            return issues, False
        return [issue.model_copy(update={"has_voted": issue.id in voted}) for issue in issues], True

    def _render(
        self,
        page: IssuePage,
        ticket: int,
        issued_revision: int,
        context: LocationContext,
        filters: QueryFilters,
    ) -> bool:
        if ticket != self._issued:
            _logger.debug("Discarding superseded load ticket=%d newest=%d", ticket, self._issued)
            return False
        self._context = context
        self._page = page.page
        self._filters = filters
        self.last_page = page
        self._store.apply(FeatureChange.snapshot(page.issues, issued_revision))
        return True

    async def refresh(self) -> IssuePage | None:
        """Reload the current context and page, bypassing the cache."""
        context = self._context
        if context is None:
            if self._viewport is None:
                return None
            context = await self._resolver.resolve_viewport(self._viewport)
        return await self._load(context, self._page, use_cache=False)

    async def change_page(self, page: int) -> IssuePage | None:
        if self._context is None:
            return None
        return await self._load(self._context, page)

    async def set_filters(
        self,
        *,
        sort: SortOrder | None = None,
        search: str | None = None,
        categories: Iterable[IssueCategory] | None = None,
    ) -> IssuePage | None:
        """Replace the active filters and reload page 1 of the current context.

        ``None`` keeps the current value; pass ``""`` / ``()`` to clear.
        """
        current = self._filters
        filters = QueryFilters(
            sort=sort if sort is not None else current.sort,
            search=(search.strip() or None) if search is not None else current.search,
            categories=frozenset(categories) if categories is not None else current.categories,
        )
        if self._context is None:
            self._filters = filters
            return None
        return await self._load(self._context, 1, filters=filters)

    async def _load(
        self,
        context: LocationContext,
        page: int,
        *,
        use_cache: bool = True,
        filters: QueryFilters | None = None,
    ) -> IssuePage:
        if filters is None:
            filters = self._filters
        return await self.load_issues(
            context,
            page,
            sort=filters.sort,
            search=filters.search,
            categories=filters.categories,
            use_cache=use_cache,
        )

    # ------------------------------------------------------------------
    # Viewport path
    # ------------------------------------------------------------------

    def on_viewport_changed(self, viewport: Viewport) -> None:
        """Record the viewport and schedule a debounced, throttled load."""
        self._viewport = viewport
        self._debouncer.trigger(viewport)

    async def _after_debounce(self, viewport: Viewport) -> None:
        self._throttler.trigger(viewport)

    async def _load_viewport(self, viewport: Viewport) -> IssuePage | None:
        self._viewport_seq += 1
        seq = self._viewport_seq
        try:
            context = await self._resolver.resolve_viewport(viewport)
            if seq != self._viewport_seq:
                _logger.debug("Viewport superseded during resolve seq=%d", seq)
                return None
            return await self._load(context, 1)
        except IssueMapError as exc:
            report_error(self._view, exc, "load issues")
            return None

    async def settle(self) -> None:
        """Wait for scheduled viewport work that is already running."""
        await self._debouncer.drain()
        await self._throttler.drain()

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate_issue(self, issue_id: str) -> int:
        """Evict every cached page that contains *issue_id*."""

        def _contains(key: Hashable, value: Any) -> bool:
            return _is_issue_key(key) and isinstance(value, IssuePage) and issue_id in value.issue_ids

        evicted = self._cache.evict_where(_contains)
        _logger.debug("Invalidated %d cached page(s) for issue=%s", evicted, issue_id)
        return evicted

    def invalidate_tier(self, tier: LocationTier) -> int:
        """Evict cached pages of *tier* and of the ``global`` tier."""
        tiers = {tier.value, LocationTier.GLOBAL.value}

        def _in_tier(key: Hashable, value: Any) -> bool:
            return _is_issue_key(key) and key[1] in tiers  # type: ignore[index]

        evicted = self._cache.evict_where(_in_tier)
        _logger.debug("Invalidated %d cached page(s) for tier=%s", evicted, tier.value)
        return evicted

    async def aclose(self) -> None:
        await self._debouncer.aclose()
        await self._throttler.aclose()


def _is_issue_key(key: Hashable) -> bool:
    return isinstance(key, tuple) and len(key) > 1 and key[0] == ISSUES_NAMESPACE
