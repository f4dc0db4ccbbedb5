"""GTFS row types and route-attribution result schema."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field


@dataclass(frozen=True, slots=True)
class RouteRecord:
    route_id: str
    short_name: str


@dataclass(frozen=True, slots=True)
class TripLink:
    route_id: str
    shape_id: str


@dataclass(frozen=True, slots=True)
class ShapePoint:
    shape_id: str
    sequence: int
    lat: float
    lon: float


class MatchConfidence(str, enum.Enum):
    HIGH = "high"      # geometry hit at the smallest radius
    MEDIUM = "medium"  # geometry hit at a wider radius
    LOW = "low"        # text-pattern fallback
    NONE = "none"


class MatchMethod(str, enum.Enum):
    GTFS_GEOMETRY = "gtfs_geometry"
    TEXT_PATTERN = "text_pattern"
    NONE = "none"


class RouteMatchResult(BaseModel):
    routes: list[str] = Field(default_factory=list)
    radius_used: Optional[float] = None
    confidence: MatchConfidence = MatchConfidence.NONE
    method: MatchMethod = MatchMethod.NONE
    matched_shapes: list[str] = Field(default_factory=list)
    matched_corridors: list[str] = Field(default_factory=list)
    points_scanned: int = 0
    truncated: bool = False
    error: Optional[str] = None
