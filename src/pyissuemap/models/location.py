"""Location models: tiers, coordinates, bounds and resolved contexts."""

from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict, Field

from pyissuemap.models._base import FallbackStrEnum

WORLD = "World"
UNKNOWN_LOCATION = "Unknown Location"


class LocationTier(FallbackStrEnum):
    """Semantic granularity used to scope issue queries."""

    GLOBAL = "global"
    CONTINENT = "continent"
    COUNTRY = "country"
    STATE = "state"


class Coordinate(BaseModel):
    """A WGS84 point."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class BoundingBox(BaseModel):
    """Axis-aligned box in degrees. ``west > east`` wraps the antimeridian."""

    model_config = ConfigDict(frozen=True)

    west: float = Field(..., ge=-180, le=180)
    south: float = Field(..., ge=-90, le=90)
    east: float = Field(..., ge=-180, le=180)
    north: float = Field(..., ge=-90, le=90)

    @classmethod
    def from_corners(cls, sw: tuple[float, float], ne: tuple[float, float]) -> BoundingBox:
        """Build from ``(lng, lat)`` south-west / north-east corners."""
        return cls(west=sw[0], south=sw[1], east=ne[0], north=ne[1])

    @property
    def wraps_antimeridian(self) -> bool:
        return self.west > self.east

    def contains(self, lat: float, lng: float) -> bool:
        if not self.south <= lat <= self.north:
            return False
        if self.wraps_antimeridian:
            return lng >= self.west or lng <= self.east
        return self.west <= lng <= self.east

    def rounded(self, cell_size: float) -> tuple[float, float, float, float]:
        """Snap outward to a grid of *cell_size* degrees (for cache keys)."""
        return (
            max(-180.0, math.floor(self.west / cell_size) * cell_size),
            max(-90.0, math.floor(self.south / cell_size) * cell_size),
            min(180.0, math.ceil(self.east / cell_size) * cell_size),
            min(90.0, math.ceil(self.north / cell_size) * cell_size),
        )


class Viewport(BaseModel):
    """What the map reports after the user pans or zooms."""

    model_config = ConfigDict(frozen=True)

    center: Coordinate
    zoom: float = Field(..., ge=0)
    bounds: BoundingBox | None = None


class GeocodeResult(BaseModel):
    """Reverse/forward geocoder answer."""

    model_config = ConfigDict(frozen=True)

    display_name: str
    bounds: BoundingBox | None = None
    center: Coordinate | None = None


class LocationContext(BaseModel):
    """Resolved semantic location for a settled viewport.

    Immutable; superseded (never updated) by the next resolution.
    """

    model_config = ConfigDict(frozen=True)

    tier: LocationTier
    name: str
    center: Coordinate
    bounds: BoundingBox | None = None

    @property
    def is_global(self) -> bool:
        return self.tier == LocationTier.GLOBAL

    @property
    def is_unknown(self) -> bool:
        return self.name == UNKNOWN_LOCATION
