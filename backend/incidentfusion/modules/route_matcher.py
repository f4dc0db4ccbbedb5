"""Transit route attribution for incident coordinates.

Adaptive radius search: for each radius tier in ascending order (100 m, 250 m,
500 m by default) the shape-point source is scanned, shape ids within the
radius are collected and mapped through the GTFSIndex to route short names.
The first tier that yields any route wins; wider tiers are never scanned.

When geometry yields nothing (no coordinates, failed index, nothing nearby)
the incident text is matched against a curated table of named corridors and
areas, which gives a lower-confidence answer.

Any I/O or parse error during a geometry scan abandons the geometry step; the
text fallback still runs and the result carries the error. Nothing is raised.
"""
from __future__ import annotations

import csv
import enum
import logging
import re
from pathlib import Path
from typing import Iterator, Protocol

from rapidfuzz import fuzz

from incidentfusion.config import settings
from incidentfusion.modules.geo_stream_loader import GeoStreamLoader, StreamStats
from incidentfusion.modules.gtfs_index import GTFSIndex, GTFSIndexHolder
from incidentfusion.schemas.gtfs import (
    MatchConfidence,
    MatchMethod,
    RouteMatchResult,
    ShapePoint,
)
from incidentfusion.utils.bounded_cache import BoundedCache, EvictionPolicy
from incidentfusion.utils.geo import METERS_PER_DEGREE_LAT_MIN, coerce_lat_lon, haversine_meters
from incidentfusion.utils.text import normalize_text

logger = logging.getLogger(__name__)

_SHAPE_COLUMN_ALIASES = {"shape_pt_lng": "shape_pt_lon"}

_LOOKUP_ERRORS = (OSError, ValueError, csv.Error)  # MalformedHeaderError is a ValueError


# ---------------------------------------------------------------------------
# Shape-point sources
# ---------------------------------------------------------------------------

class ShapePointSource(Protocol):
    def points(self, stats: StreamStats | None = None) -> Iterator[ShapePoint]: ...


def _to_shape_point(row: dict) -> ShapePoint | None:
    """Row to ShapePoint; None when the shape id or point sequence is unusable."""
    shape_id = row.get("shape_id")
    if not shape_id:
        return None
    try:
        sequence = int(float(row.get("shape_pt_sequence") or ""))
    except (ValueError, OverflowError):
        return None
    return ShapePoint(shape_id, sequence, row["shape_pt_lat"], row["shape_pt_lon"])


def _iter_shape_points(
    loader: GeoStreamLoader, shapes_path: str | Path, stats: StreamStats
) -> Iterator[ShapePoint]:
    for row in loader.iter_records(
        shapes_path,
        required_columns=("shape_id",),
        coordinate_columns=("shape_pt_lat", "shape_pt_lon"),
        column_aliases=_SHAPE_COLUMN_ALIASES,
        stats=stats,
    ):
        point = _to_shape_point(row)
        if point is None:
            stats.skipped_malformed += 1
            continue
        yield point


class StreamingShapeSource:
    """Streams shapes.txt from disk on every scan.

    Each scan is bounded by the loader's record cap. Pass a StreamStats to
    ``points`` to learn whether that scan was truncated; nothing about a scan
    is kept on the source, so one source can serve concurrent lookups.
    """

    def __init__(self, shapes_path: str | Path, loader: GeoStreamLoader | None = None) -> None:
        self.shapes_path = Path(shapes_path)
        self.loader = loader or GeoStreamLoader.for_shape_scans()

    def points(self, stats: StreamStats | None = None) -> Iterator[ShapePoint]:
        return _iter_shape_points(
            self.loader, self.shapes_path, stats if stats is not None else StreamStats()
        )


class RegionalShapeCache:
    """In-region shape points streamed once into a bounded cache.

    The cache is registered with the loader so memory pressure during the load
    trims it; the matcher then scans the cached points instead of re-reading
    the file for every radius tier.
    """

    def __init__(
        self,
        max_entries: int | None = None,
        pressure_entries: int | None = None,
        loader: GeoStreamLoader | None = None,
    ) -> None:
        # Keyed by load order: duplicate (shape_id, sequence) rows are all kept, as when streaming
        self.cache: BoundedCache[int, ShapePoint] = BoundedCache(
            max_entries or settings.SHAPE_CACHE_MAX_ENTRIES,
            EvictionPolicy.FIFO,
            pressure_entries=pressure_entries or settings.SHAPE_CACHE_PRESSURE_ENTRIES,
        )
        # Full-file load: region filter on, no per-lookup record cap
        self.loader = loader or GeoStreamLoader.for_shape_scans(max_records=None)
        self.loader.register_cache(self.cache)
        self.load_stats: StreamStats | None = None
        self.truncated = False

    def load(self, shapes_path: str | Path) -> StreamStats:
        """Replace the cached points with the in-region points of ``shapes_path``."""
        self.cache.clear()
        stats = StreamStats()
        for position, point in enumerate(_iter_shape_points(self.loader, shapes_path, stats)):
            self.cache.put(position, point)
        self.load_stats = stats
        self.truncated = stats.truncated or self.cache.evictions > 0
        logger.info(
            "Regional shape cache loaded: %d points (%d out of region, %d malformed, %d evicted)",
            len(self.cache), stats.skipped_out_of_region, stats.skipped_malformed,
            self.cache.evictions,
        )
        return stats

    def points(self, stats: StreamStats | None = None) -> Iterator[ShapePoint]:
        """Cached points; ``stats`` is ignored, the cache is only filled by ``load``."""
        return self.cache.values()

    def __len__(self) -> int:
        return len(self.cache)


# ---------------------------------------------------------------------------
# Text-pattern fallback
# ---------------------------------------------------------------------------

class Corridor(str, enum.Enum):
    """Named roads and areas with a curated list of routes serving them."""

    A1 = "a1"
    A19 = "a19"
    A167 = "a167"
    A184 = "a184"
    A693 = "a693"
    A696 = "a696"
    COAST_ROAD = "coast road"
    CENTRAL_MOTORWAY = "central motorway"
    DURHAM_ROAD = "durham road"
    WEST_ROAD = "west road"
    TYNE_BRIDGE = "tyne bridge"
    REDHEUGH_BRIDGE = "redheugh bridge"
    METRO_CENTRE = "metro centre"
    NEWCASTLE = "newcastle"
    GATESHEAD = "gateshead"
    SUNDERLAND = "sunderland"
    DURHAM = "durham"
    CONSETT = "consett"
    STANLEY = "stanley"
    CHESTER_LE_STREET = "chester le street"
    WASHINGTON = "washington"
    SOUTH_SHIELDS = "south shields"
    WHITLEY_BAY = "whitley bay"
    CRAMLINGTON = "cramlington"

    @property
    def routes(self) -> tuple[str, ...]:
        return _CORRIDOR_ROUTES[self]


_CORRIDOR_ROUTES: dict[Corridor, tuple[str, ...]] = {
    Corridor.A1: ("10", "11", "21", "X21", "X9", "X10"),
    Corridor.A19: ("1", "2", "308", "309", "311"),
    Corridor.A167: ("21", "22", "X21", "6", "50"),
    Corridor.A184: ("1", "2", "307", "309", "327"),
    Corridor.A693: ("X30", "X31", "74", "84"),
    Corridor.A696: ("74", "43", "44"),
    Corridor.COAST_ROAD: ("1", "306", "307", "308", "309", "311"),
    Corridor.CENTRAL_MOTORWAY: ("Q3", "Q3X", "10", "12", "21"),
    Corridor.DURHAM_ROAD: ("21", "22", "X21", "6"),
    Corridor.WEST_ROAD: ("X82", "X84", "X85"),
    Corridor.TYNE_BRIDGE: ("Q3", "Q3X", "10", "21"),
    Corridor.REDHEUGH_BRIDGE: ("21", "27", "28"),
    Corridor.METRO_CENTRE: ("10", "10A", "10B", "27", "28"),
    Corridor.NEWCASTLE: ("Q1", "Q2", "Q3", "10", "11", "12"),
    Corridor.GATESHEAD: ("21", "25", "28", "29", "53", "54"),
    Corridor.SUNDERLAND: ("16", "18", "20", "61", "62", "63"),
    Corridor.DURHAM: ("21", "22", "X21", "6", "7", "13"),
    Corridor.CONSETT: ("X30", "X31", "X70", "X71", "74", "84", "85"),
    Corridor.STANLEY: ("X30", "X31", "8", "78"),
    Corridor.CHESTER_LE_STREET: ("21", "22", "X21", "25", "28"),
    Corridor.WASHINGTON: ("2A", "2B", "4", "85", "86", "X1"),
    Corridor.SOUTH_SHIELDS: ("1", "2", "11", "17"),
    Corridor.WHITLEY_BAY: ("308", "309", "311"),
    Corridor.CRAMLINGTON: ("43", "44", "45"),
}

# Keywords at least this long may also match fuzzily (typos, "Gateshed")
_FUZZY_MIN_KEYWORD_LENGTH = 6


class TextRouteMatcher:
    """Keyword/area matching of free text against the corridor table."""

    def __init__(self, fuzzy_threshold: int | None = None) -> None:
        self.fuzzy_threshold = (
            fuzzy_threshold if fuzzy_threshold is not None else settings.ROUTE_TEXT_FUZZY_THRESHOLD
        )
        self._patterns = {
            corridor: re.compile(rf"\b{re.escape(corridor.value)}\b") for corridor in Corridor
        }

    def match(self, text: str | None) -> tuple[list[str], list[Corridor]]:
        """Return (sorted routes, matched corridors) for ``text``."""
        normalized = normalize_text(text)
        if not normalized:
            return [], []
        matched: list[Corridor] = []
        for corridor, pattern in self._patterns.items():
            if pattern.search(normalized):
                matched.append(corridor)
            elif (
                len(corridor.value) >= _FUZZY_MIN_KEYWORD_LENGTH
                and fuzz.partial_ratio(corridor.value, normalized) >= self.fuzzy_threshold
            ):
                matched.append(corridor)
        routes = sorted({route for corridor in matched for route in corridor.routes})
        return routes, matched


# ---------------------------------------------------------------------------
# Route matcher
# ---------------------------------------------------------------------------

class RouteMatcher:
    def __init__(
        self,
        index: GTFSIndex | GTFSIndexHolder,
        shape_source: ShapePointSource,
        radii: list[float] | None = None,
        text_matcher: TextRouteMatcher | None = None,
    ) -> None:
        self._index = index
        self.shape_source = shape_source
        self.radii = sorted(radii if radii is not None else settings.ROUTE_SEARCH_RADII_METERS)
        self.text_matcher = text_matcher or TextRouteMatcher()

    def current_index(self) -> GTFSIndex:
        if isinstance(self._index, GTFSIndexHolder):
            return self._index.current
        return self._index

    def find_routes(
        self,
        lat: float | None,
        lon: float | None,
        fallback_text: str = "",
    ) -> RouteMatchResult:
        """Routes passing near (lat, lon), falling back to ``fallback_text``."""
        # One snapshot per call; a concurrent refresh does not affect this lookup
        index = self.current_index()
        coords = coerce_lat_lon(lat, lon)
        points_scanned = 0
        truncated = False
        error: str | None = None

        if coords is not None and index.is_ready:
            try:
                for tier, radius in enumerate(self.radii):
                    shapes, scanned, scan_truncated = self._scan_radius(coords[0], coords[1], radius)
                    points_scanned += scanned
                    truncated = truncated or scan_truncated
                    routes = sorted(
                        {name for shape_id in shapes for name in index.route_names_for_shape(shape_id)}
                    )
                    if routes:
                        return RouteMatchResult(
                            routes=routes,
                            radius_used=radius,
                            confidence=MatchConfidence.HIGH if tier == 0 else MatchConfidence.MEDIUM,
                            method=MatchMethod.GTFS_GEOMETRY,
                            matched_shapes=sorted(shapes),
                            points_scanned=points_scanned,
                            truncated=truncated,
                        )
            except _LOOKUP_ERRORS as exc:
                logger.warning("Route geometry lookup failed at %s: %s", coords, exc)
                error = str(exc)

        routes, corridors = self.text_matcher.match(fallback_text)
        if routes:
            return RouteMatchResult(
                routes=routes,
                confidence=MatchConfidence.LOW,
                method=MatchMethod.TEXT_PATTERN,
                matched_corridors=[c.value for c in corridors],
                points_scanned=points_scanned,
                truncated=truncated,
                error=error,
            )
        return RouteMatchResult(points_scanned=points_scanned, truncated=truncated, error=error)

    def _scan_radius(self, lat: float, lon: float, radius: float) -> tuple[set[str], int, bool]:
        """Shape ids with at least one point within ``radius`` metres.

        Returns (shape ids, points scanned, whether the scan was truncated).
        """
        # Cheap latitude pre-filter; never excludes a point inside the radius
        max_dlat = radius / METERS_PER_DEGREE_LAT_MIN
        shapes: set[str] = set()
        scanned = 0
        stats = StreamStats()
        for point in self.shape_source.points(stats):
            scanned += 1
            if abs(point.lat - lat) > max_dlat or point.shape_id in shapes:
                continue
            if haversine_meters(lat, lon, point.lat, point.lon) <= radius:
                shapes.add(point.shape_id)
        truncated = stats.truncated or bool(getattr(self.shape_source, "truncated", False))
        return shapes, scanned, truncated
