"""Pydantic schemas for incidents, merged incidents and deduplication results.

Incoming feed records are coerced leniently: unknown or garbled values fall
back to defaults instead of failing the batch, and coordinates are normalized
to (lat, lon) here, before any comparison happens.
"""
from __future__ import annotations

import enum
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from incidentfusion.utils.geo import coerce_lat_lon
from incidentfusion.utils.timestamps import parse_timestamp_flexible

logger = logging.getLogger(__name__)


class Severity(str, enum.Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def coerce(cls, value: Any) -> Optional["Severity"]:
        """Case-insensitive lookup; anything unrecognized becomes None."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        key = value.strip().lower()
        for member in cls:
            if member.value.lower() == key:
                return member
        return None


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class Source(str, enum.Enum):
    """Known incident feeds."""

    NATIONAL_HIGHWAYS = "national_highways"
    STREETMANAGER = "streetmanager"
    TOMTOM = "tomtom"
    HERE = "here"
    MANUAL_INCIDENTS = "manual_incidents"
    MAPQUEST = "mapquest"


# Static prior trust per feed, in [0, 1]
_SOURCE_RELIABILITY: dict[Source, float] = {
    Source.NATIONAL_HIGHWAYS: 1.0,   # government data
    Source.STREETMANAGER: 0.95,      # official UK roadworks
    Source.TOMTOM: 0.9,
    Source.HERE: 0.85,
    Source.MANUAL_INCIDENTS: 0.8,    # supervisor entry
    Source.MAPQUEST: 0.75,
}

DEFAULT_SOURCE_RELIABILITY: float = 0.5


def source_reliability(tag: str | None) -> float:
    """Reliability prior for a source tag; unknown tags get the 0.5 default."""
    try:
        source = Source((tag or "").strip().lower())
    except ValueError:
        return DEFAULT_SOURCE_RELIABILITY
    return _SOURCE_RELIABILITY[source]


def source_reliability_table() -> dict[str, float]:
    return {source.value: value for source, value in _SOURCE_RELIABILITY.items()}


def _extract_coordinates(data: Mapping[str, Any]) -> tuple[float, float] | None:
    """Find coordinates in any of the shapes upstream feeds use.

    Accepted: ``coordinates`` as [lat, lon] or a lat/lng mapping, a GeoJSON
    ``geometry`` Point ([lon, lat]), or top-level lat/lng or
    latitude/longitude fields.
    """
    coords = data.get("coordinates")
    if isinstance(coords, Mapping):
        lat = coords.get("lat", coords.get("latitude"))
        lon = coords.get("lng", coords.get("lon", coords.get("longitude")))
        return coerce_lat_lon(lat, lon)
    if isinstance(coords, Sequence) and not isinstance(coords, str) and len(coords) == 2:
        return coerce_lat_lon(coords[0], coords[1])

    geometry = data.get("geometry")
    if isinstance(geometry, Mapping):
        geo_coords = geometry.get("coordinates")
        if (
            isinstance(geo_coords, Sequence)
            and not isinstance(geo_coords, str)
            and len(geo_coords) == 2
        ):
            return coerce_lat_lon(geo_coords[1], geo_coords[0])

    for lat_key, lon_key in (("lat", "lng"), ("lat", "lon"), ("latitude", "longitude")):
        if data.get(lat_key) is not None and data.get(lon_key) is not None:
            return coerce_lat_lon(data[lat_key], data[lon_key])
    return None


class Incident(BaseModel):
    """One incident report from a single upstream feed."""

    model_config = ConfigDict(extra="allow", frozen=True, populate_by_name=True)

    id: str = ""
    source: str = "unknown"
    title: str = ""
    description: str = ""
    location: str = ""
    coordinates: Optional[tuple[float, float]] = None
    severity: Optional[Severity] = None
    timestamp: Optional[datetime] = None
    created_at: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("created_at", "createdAt", "created")
    )
    reported_at: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("reported_at", "reportedAt")
    )
    updated_at: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("updated_at", "updatedAt", "lastUpdated")
    )
    affects_routes: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("affects_routes", "affectsRoutes")
    )
    merged: bool = False
    processed: bool = False
    processing_timestamp: Optional[datetime] = None
    malformed: bool = False
    route_match_method: Optional[str] = None
    route_match_confidence: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_coordinates(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        out = dict(data)
        out["coordinates"] = _extract_coordinates(data)
        return out

    @field_validator("id", "title", "description", "location", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        if v is None:
            return ""
        return v if isinstance(v, str) else str(v)

    @field_validator("source", mode="before")
    @classmethod
    def _coerce_source(cls, v: Any) -> str:
        if isinstance(v, Source):
            return v.value
        if v is None or not str(v).strip():
            return "unknown"
        return str(v).strip()

    @field_validator("severity", mode="before")
    @classmethod
    def _coerce_severity(cls, v: Any) -> Severity | None:
        return Severity.coerce(v)

    @field_validator(
        "timestamp", "created_at", "reported_at", "updated_at", "processing_timestamp", mode="before"
    )
    @classmethod
    def _coerce_timestamp(cls, v: Any) -> datetime | None:
        return parse_timestamp_flexible(v)

    @field_validator("affects_routes", mode="before")
    @classmethod
    def _coerce_routes(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        if not isinstance(v, (list, tuple, set, frozenset)):
            return []
        routes = [str(r).strip() for r in v if r is not None]
        return [r for r in routes if r]

    # ------------------------------------------------------------------

    @classmethod
    def from_raw(cls, raw: Any) -> "Incident":
        """Coerce an upstream record into an Incident without ever raising.

        Fields that fail validation are dropped (so they take their defaults)
        and the result is flagged ``malformed``.
        """
        if isinstance(raw, Incident):
            return raw
        if not isinstance(raw, Mapping):
            logger.warning("Malformed incident record of type %s defaulted", type(raw).__name__)
            return cls(malformed=True)
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            bad_fields = {err["loc"][0] for err in exc.errors() if err.get("loc")}
            logger.warning(
                "Incident %r has invalid fields %s defaulted",
                raw.get("id"), sorted(str(f) for f in bad_fields),
            )
            cleaned = {k: v for k, v in raw.items() if k not in bad_fields}
            cleaned["malformed"] = True
            try:
                return cls.model_validate(cleaned)
            except ValidationError:
                return cls(id=raw.get("id"), source=raw.get("source"), malformed=True)

    def best_timestamp(self) -> datetime | None:
        """First available of timestamp, created_at, reported_at, updated_at."""
        for value in (self.timestamp, self.created_at, self.reported_at, self.updated_at):
            if value is not None:
                return value
        return None

    @property
    def reliability(self) -> float:
        return source_reliability(self.source)


class SourceSnapshot(BaseModel):
    source: str
    original_id: str
    title: str
    coordinates: Optional[tuple[float, float]] = None


class SourceReliability(BaseModel):
    source: str
    reliability: float = Field(..., ge=0.0, le=1.0)


class MergedIncident(Incident):
    """An Incident built from a group of duplicates, with provenance."""

    merged: bool = True
    sources: list[str] = Field(default_factory=list)
    source_data: list[SourceSnapshot] = Field(default_factory=list)
    source_reliabilities: list[SourceReliability] = Field(default_factory=list)
    merge_reason: str = ""
    merge_timestamp: Optional[datetime] = None
    merge_strategy: str = "reliability_based"


AnyIncident = Union[MergedIncident, Incident]


class MergeRecord(BaseModel):
    merged_incident: MergedIncident
    source_incidents: list[Incident]
    merge_reason: str


class DeduplicationStats(BaseModel):
    original: int
    final: int
    duplicates_removed: int
    merged_groups: int
    malformed: int = 0
    processing_time_ms: float = 0.0
    compression_ratio: float = 0.0  # percent of input removed
    enriched: int = 0


class DeduplicationResult(BaseModel):
    deduplicated: list[AnyIncident]
    duplicates_found: list[AnyIncident]
    merged_incidents: list[MergeRecord]
    stats: DeduplicationStats
