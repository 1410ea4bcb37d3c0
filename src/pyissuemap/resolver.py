"""Location tier resolution.

Maps a settled viewport (center + zoom) to a :class:`LocationContext`:
``global`` and ``continent`` are computed locally, ``country`` and
``state`` use a cached reverse-geocode lookup.
"""

from __future__ import annotations

import logging

from pyissuemap._cache import CacheStore
from pyissuemap.config import IssueMapConfig, TierThresholds
from pyissuemap.geocoder import ReverseGeocoder
from pyissuemap.models.location import (
    UNKNOWN_LOCATION,
    WORLD,
    BoundingBox,
    Coordinate,
    GeocodeResult,
    LocationContext,
    LocationTier,
    Viewport,
)

_logger = logging.getLogger(__name__)

LOCATION_NAMESPACE = "location"

NORTH_AMERICA = "North America"
SOUTH_AMERICA = "South America"
EUROPE = "Europe"
AFRICA = "Africa"
ASIA = "Asia"
OCEANIA = "Oceania"
ANTARCTICA = "Antarctica"

CONTINENTS: tuple[str, ...] = (NORTH_AMERICA, SOUTH_AMERICA, EUROPE, AFRICA, ASIA, OCEANIA, ANTARCTICA)

# Place type the geocoder is asked for at each network-backed tier.
_PLACE_TYPES: dict[LocationTier, str] = {
    LocationTier.COUNTRY: "country",
    LocationTier.STATE: "region",
}


def tier_for_zoom(zoom: float, thresholds: TierThresholds) -> LocationTier:
    if zoom >= thresholds.state:
        return LocationTier.STATE
    if zoom >= thresholds.country:
        return LocationTier.COUNTRY
    if zoom >= thresholds.continent:
        return LocationTier.CONTINENT
    return LocationTier.GLOBAL


def classify_continent(lat: float, lng: float) -> str:
    """Coarse continent label from coordinate bands.

    This is an approximation: the Europe/Africa/Asia boundaries (Turkey,
    the Caucasus, Sinai, the Arabian peninsula) are drawn with straight
    lines and will misclassify points near them.
    """
    if lat < -60:
        return ANTARCTICA
    if lng < -30:
        if lng < -100 and lat < 0:
            return OCEANIA
        return NORTH_AMERICA if lat >= 8 else SOUTH_AMERICA
    if lng < 60:
        if lat >= 45 or (lat >= 35 and lng <= 40):
            return EUROPE
        if lat < 35 and not (lng > 35 and lat > 12):
            return AFRICA
        return ASIA
    if lng >= 110 and lat < -10:
        return OCEANIA
    if lng >= 165 and lat < 0:
        return OCEANIA
    return ASIA


class LocationTierResolver:
    """Resolve viewports into location contexts.

    Reverse-geocode results are cached in the shared :class:`CacheStore`
    under ``("location", lng, lat, tier)`` with coordinates rounded to
    ``config.geocode_precision`` decimals. Failed lookups are not cached.
    """

    def __init__(
        self,
        geocoder: ReverseGeocoder,
        cache: CacheStore,
        config: IssueMapConfig,
    ) -> None:
        self._geocoder = geocoder
        self._cache = cache
        self._config = config

    async def resolve(
        self,
        center: Coordinate,
        zoom: float,
        bounds: BoundingBox | None = None,
    ) -> LocationContext:
        """Resolve *center*/*zoom* into a context. Never raises on geocoder failure."""
        tier = tier_for_zoom(zoom, self._config.thresholds)

        if tier == LocationTier.GLOBAL:
            return LocationContext(tier=tier, name=WORLD, center=center, bounds=None)

        if tier == LocationTier.CONTINENT:
            name = classify_continent(center.lat, center.lng)
            return LocationContext(tier=tier, name=name, center=center, bounds=bounds)

        result = await self._lookup(center, tier)
        if result is None:
            return LocationContext(tier=tier, name=UNKNOWN_LOCATION, center=center, bounds=bounds)
        return LocationContext(
            tier=tier,
            name=result.display_name,
            center=center,
            bounds=result.bounds or bounds,
        )

    async def resolve_viewport(self, viewport: Viewport) -> LocationContext:
        return await self.resolve(viewport.center, viewport.zoom, viewport.bounds)

    async def search(self, query: str) -> list[GeocodeResult]:
        return await self._geocoder.search(query)

    def cache_key(self, center: Coordinate, tier: LocationTier) -> tuple[str, float, float, str]:
        precision = self._config.geocode_precision
        return (LOCATION_NAMESPACE, round(center.lng, precision), round(center.lat, precision), tier.value)

    async def _lookup(self, center: Coordinate, tier: LocationTier) -> GeocodeResult | None:
        key = self.cache_key(center, tier)
        cached = self._cache.get(key)
        if isinstance(cached, GeocodeResult):
            _logger.debug("Location cache hit key=%s", key)
            return cached

        try:
            result = await self._geocoder.lookup(center.lng, center.lat, _PLACE_TYPES[tier])
        except Exception:
            _logger.debug("Geocoder raised for key=%s; degrading to unknown location", key, exc_info=True)
            return None

        if result is None:
            _logger.debug("Geocoder returned no place for key=%s", key)
            return None
        self._cache.set(key, result, self._config.location_cache_ttl_ms)
        return result
