"""GTFS route lookup index: route_id → short name, shape_id → routes.

The index is an immutable value built once per data refresh and passed to the
route matcher. Rebuilds construct a complete new instance and only then swap
the shared reference held by ``GTFSIndexHolder``; readers never see a partially
populated index, and a reader that already fetched an instance keeps using it
until its call completes.

Build failures (missing file, unreadable bytes, bad header) never raise: they
yield an empty index with ``status == FAILED`` so the serving layer can carry
on with text-only route attribution.
"""
from __future__ import annotations

import csv
import enum
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Mapping

from incidentfusion.config import settings
from incidentfusion.modules.geo_stream_loader import GeoStreamLoader, MalformedHeaderError
from incidentfusion.schemas.gtfs import RouteRecord, TripLink

logger = logging.getLogger(__name__)

_EMPTY: Mapping[str, Any] = MappingProxyType({})


def _empty_mapping() -> Mapping[str, Any]:
    return _EMPTY


class IndexStatus(str, enum.Enum):
    READY = "ready"
    EMPTY = "empty"    # built fine, but the tables held no usable rows
    FAILED = "failed"


@dataclass(frozen=True)
class GTFSIndex:
    route_names: Mapping[str, str] = field(default_factory=_empty_mapping)
    shape_routes: Mapping[str, frozenset[str]] = field(default_factory=_empty_mapping)
    shape_route_names: Mapping[str, frozenset[str]] = field(default_factory=_empty_mapping)
    status: IndexStatus = IndexStatus.EMPTY
    error: str | None = None
    built_at: datetime | None = None
    rows_skipped: int = 0

    @classmethod
    def empty(cls) -> "GTFSIndex":
        return cls(built_at=datetime.now(timezone.utc))

    @classmethod
    def failed(cls, reason: str) -> "GTFSIndex":
        return cls(status=IndexStatus.FAILED, error=reason, built_at=datetime.now(timezone.utc))

    @classmethod
    def from_records(
        cls,
        routes: list[RouteRecord],
        trips: list[TripLink],
        rows_skipped: int = 0,
    ) -> "GTFSIndex":
        """Join route and trip rows into a frozen index."""
        route_names = {r.route_id: r.short_name for r in routes}
        shape_routes: dict[str, set[str]] = defaultdict(set)
        for trip in trips:
            shape_routes[trip.shape_id].add(trip.route_id)
        return cls._freeze(route_names, shape_routes, rows_skipped)

    @classmethod
    def _freeze(
        cls,
        route_names: dict[str, str],
        shape_routes: Mapping[str, set[str]],
        rows_skipped: int,
    ) -> "GTFSIndex":
        shape_route_names = {}
        for shape_id, route_ids in shape_routes.items():
            names = frozenset(route_names[r] for r in route_ids if r in route_names)
            if names:
                shape_route_names[shape_id] = names
        status = IndexStatus.READY if shape_route_names else IndexStatus.EMPTY
        return cls(
            route_names=MappingProxyType(dict(route_names)),
            shape_routes=MappingProxyType({k: frozenset(v) for k, v in shape_routes.items()}),
            shape_route_names=MappingProxyType(shape_route_names),
            status=status,
            built_at=datetime.now(timezone.utc),
            rows_skipped=rows_skipped,
        )

    @property
    def is_ready(self) -> bool:
        return self.status is IndexStatus.READY

    def route_names_for_shape(self, shape_id: str) -> frozenset[str]:
        return self.shape_route_names.get(shape_id, frozenset())

    def describe(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "error": self.error,
            "routes": len(self.route_names),
            "shapes": len(self.shape_routes),
            "attributable_shapes": len(self.shape_route_names),
            "rows_skipped": self.rows_skipped,
            "built_at": self.built_at.isoformat() if self.built_at else None,
        }


def build_gtfs_index(
    routes_path: str | Path,
    trips_path: str | Path,
    loader: GeoStreamLoader | None = None,
) -> GTFSIndex:
    """Stream routes.txt and trips.txt into a new GTFSIndex. Never raises."""
    loader = loader or GeoStreamLoader()
    route_names: dict[str, str] = {}
    shape_routes: dict[str, set[str]] = defaultdict(set)
    skipped = 0

    try:
        for row in loader.iter_records(routes_path, required_columns=("route_id", "route_short_name")):
            route_id, short_name = row["route_id"], row["route_short_name"]
            if not route_id or not short_name:
                skipped += 1
                continue
            route_names[route_id] = short_name

        for row in loader.iter_records(trips_path, required_columns=("route_id", "shape_id")):
            route_id, shape_id = row["route_id"], row["shape_id"]
            if not route_id or not shape_id:
                skipped += 1
                continue
            shape_routes[shape_id].add(route_id)
    except (OSError, UnicodeDecodeError, csv.Error, MalformedHeaderError) as exc:
        logger.error("GTFS index build failed: %s", exc)
        return GTFSIndex.failed(str(exc))

    index = GTFSIndex._freeze(route_names, shape_routes, skipped)
    logger.info(
        "GTFS index built: %d routes, %d shapes (%s)",
        len(index.route_names), len(index.shape_routes), index.status.value,
    )
    return index


def build_gtfs_index_from_dir(data_dir: str | Path | None = None) -> GTFSIndex:
    """Build from the configured GTFS directory (``settings.GTFS_DATA_DIR``)."""
    base = Path(data_dir or settings.GTFS_DATA_DIR)
    return build_gtfs_index(base / settings.GTFS_ROUTES_FILE, base / settings.GTFS_TRIPS_FILE)


class GTFSIndexHolder:
    """Shared reference to the current GTFSIndex with atomic replacement.

    Reads are lock-free attribute loads. ``refresh`` serializes writers only.
    """

    def __init__(self, initial: GTFSIndex | None = None) -> None:
        self._current = initial or GTFSIndex.empty()
        self._write_lock = threading.Lock()
        self.refresh_count = 0

    @property
    def current(self) -> GTFSIndex:
        return self._current

    def swap(self, index: GTFSIndex) -> GTFSIndex:
        """Install ``index``; returns the instance it replaced."""
        with self._write_lock:
            previous, self._current = self._current, index
            self.refresh_count += 1
        return previous

    def refresh(
        self,
        build_fn: Callable[[], GTFSIndex],
        replace_on_failure: bool = False,
    ) -> GTFSIndex:
        """Build a new index off to the side, then swap it in.

        A failed build leaves a previously ready index in place unless
        ``replace_on_failure`` is set. Returns the index now current.
        """
        new_index = build_fn()
        if new_index.status is IndexStatus.FAILED and self._current.is_ready and not replace_on_failure:
            logger.warning("GTFS index refresh failed (%s); keeping previous index", new_index.error)
            return self._current
        self.swap(new_index)
        return new_index

    def describe(self) -> dict[str, Any]:
        info = self._current.describe()
        info["refresh_count"] = self.refresh_count
        return info
