"""Mapbox Geocoding v5 endpoints (reverse lookup and place search)."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from pyissuemap._transport import Transport
from pyissuemap.config import IssueMapConfig
from pyissuemap.models.location import BoundingBox, Coordinate, GeocodeResult

_PLACES_PATH = "/geocoding/v5/mapbox.places"
SEARCH_TYPES = "country,region,place"


def _places_url(config: IssueMapConfig, query: str) -> str:
    return f"{config.geocoder_url.rstrip('/')}{_PLACES_PATH}/{quote(query, safe=',.-')}.json"


def parse_feature(feature: Any) -> GeocodeResult | None:
    """Convert one GeoJSON feature into a :class:`GeocodeResult`."""
    if not isinstance(feature, dict):
        return None
    name = feature.get("place_name") or feature.get("text")
    if not isinstance(name, str) or not name.strip():
        return None

    bounds: BoundingBox | None = None
    bbox = feature.get("bbox")
    if isinstance(bbox, list) and len(bbox) == 4:
        try:
            bounds = BoundingBox(west=bbox[0], south=bbox[1], east=bbox[2], north=bbox[3])
        except ValueError:
            bounds = None

    center: Coordinate | None = None
    raw_center = feature.get("center")
    if isinstance(raw_center, list) and len(raw_center) == 2:
        try:
            center = Coordinate(lng=raw_center[0], lat=raw_center[1])
        except ValueError:
            center = None

    return GeocodeResult(display_name=name.strip(), bounds=bounds, center=center)


def _features(data: Any) -> list[Any]:
    if not isinstance(data, dict):
        return []
    features = data.get("features")
    return features if isinstance(features, list) else []


async def reverse_geocode(
    config: IssueMapConfig,
    transport: Transport,
    lng: float,
    lat: float,
    place_type: str,
) -> GeocodeResult | None:
    response = await transport.request(
        "GET",
        _places_url(config, f"{lng},{lat}"),
        params={"types": place_type, "limit": "1", "access_token": config.geocoder_token},
    )
    for feature in _features(response.data):
        result = parse_feature(feature)
        if result is not None:
            return result
    return None


async def search_places(
    config: IssueMapConfig,
    transport: Transport,
    query: str,
    *,
    limit: int = 5,
) -> list[GeocodeResult]:
    response = await transport.request(
        "GET",
        _places_url(config, query),
        params={"types": SEARCH_TYPES, "limit": str(limit), "access_token": config.geocoder_token},
    )
    results = [parse_feature(feature) for feature in _features(response.data)]
    return [result for result in results if result is not None]
