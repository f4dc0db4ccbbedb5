"""Shared geodesic distance utilities.

Canonical haversine implementation used by the duplicate detector, the
streaming loader's region filter and the route matcher.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

_EARTH_RADIUS_M: float = 6_371_000.0  # Earth mean radius in metres

# Shortest length of one degree of latitude (at the equator), in metres
METERS_PER_DEGREE_LAT_MIN: float = 110_574.0


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres between two WGS-84 coordinates."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    )
    return _EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def coerce_lat_lon(lat: Any, lon: Any) -> tuple[float, float] | None:
    """Return a validated (lat, lon) float pair, or None if either is unusable."""
    try:
        lat_f = float(lat)
        lon_f = float(lon)
    except (TypeError, ValueError):
        return None
    if math.isnan(lat_f) or math.isnan(lon_f):
        return None
    if not (-90 <= lat_f <= 90) or not (-180 <= lon_f <= 180):
        return None
    return lat_f, lon_f


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned lat/lon box, inclusive on every edge."""

    north: float
    south: float
    east: float
    west: float

    def contains(self, lat: float, lon: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lon <= self.east


def service_region() -> BoundingBox:
    """Service-region bounding box from settings."""
    from incidentfusion.config import settings

    return BoundingBox(
        north=settings.SERVICE_REGION_NORTH,
        south=settings.SERVICE_REGION_SOUTH,
        east=settings.SERVICE_REGION_EAST,
        west=settings.SERVICE_REGION_WEST,
    )
