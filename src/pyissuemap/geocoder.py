"""Reverse-geocoder collaborator.

Geocoding is best effort: :class:`MapboxGeocoder` never raises, it logs
and returns ``None`` (or an empty list) so callers can degrade.
"""

from __future__ import annotations

import logging
from typing import Protocol

from pyissuemap._api import geocoding as _geocoding_api
from pyissuemap._transport import Transport
from pyissuemap.config import IssueMapConfig
from pyissuemap.exceptions import IssueMapError
from pyissuemap.models.location import GeocodeResult

_logger = logging.getLogger(__name__)


class ReverseGeocoder(Protocol):
    async def lookup(self, lng: float, lat: float, place_type: str) -> GeocodeResult | None: ...

    async def search(self, query: str) -> list[GeocodeResult]: ...


class MapboxGeocoder:
    def __init__(self, config: IssueMapConfig, transport: Transport) -> None:
        self._config = config
        self._transport = transport

    async def lookup(self, lng: float, lat: float, place_type: str) -> GeocodeResult | None:
        try:
            return await _geocoding_api.reverse_geocode(self._config, self._transport, lng, lat, place_type)
        except IssueMapError:
            _logger.debug("Reverse geocode failed lng=%s lat=%s type=%s", lng, lat, place_type, exc_info=True)
            return None

    async def search(self, query: str) -> list[GeocodeResult]:
        if not query.strip():
            return []
        try:
            return await _geocoding_api.search_places(self._config, self._transport, query.strip())
        except IssueMapError:
            _logger.debug("Place search failed query=%r", query, exc_info=True)
            return []
