"""Re-export schema types for convenient imports."""
from incidentfusion.schemas.gtfs import (
    MatchConfidence,
    MatchMethod,
    RouteMatchResult,
    RouteRecord,
    ShapePoint,
    TripLink,
)
from incidentfusion.schemas.incident import (
    DeduplicationResult,
    DeduplicationStats,
    Incident,
    MergedIncident,
    MergeRecord,
    Severity,
    Source,
    source_reliability,
)
