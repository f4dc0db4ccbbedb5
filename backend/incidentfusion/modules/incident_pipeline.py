"""Batch pipeline: coerce -> deduplicate -> route enrichment."""
from __future__ import annotations

import logging
from typing import Any, Iterable

from incidentfusion.modules.duplicate_detector import DuplicateDetectionEngine
from incidentfusion.modules.route_enrichment import enrich_incident_routes
from incidentfusion.modules.route_matcher import RouteMatcher
from incidentfusion.schemas.incident import DeduplicationResult

logger = logging.getLogger(__name__)


def process_incident_batch(
    raw_incidents: Iterable[Any],
    engine: DuplicateDetectionEngine | None = None,
    matcher: RouteMatcher | None = None,
) -> DeduplicationResult:
    """Run one batch through deduplication and, when a matcher is given, route enrichment."""
    engine = engine or DuplicateDetectionEngine()
    result = engine.process_incidents(raw_incidents)
    if matcher is None:
        return result

    enriched_list, enriched = enrich_incident_routes(result.deduplicated, matcher)
    stats = result.stats.model_copy(update={"enriched": enriched})
    logger.info(
        "Batch processed: %d in, %d out, %d enriched",
        stats.original, stats.final, enriched,
    )
    return result.model_copy(update={"deduplicated": enriched_list, "stats": stats})
