"""Attach transit routes to incidents that arrive without any."""
from __future__ import annotations

import logging
from typing import Iterable

from incidentfusion.modules.route_matcher import RouteMatcher
from incidentfusion.schemas.gtfs import MatchMethod
from incidentfusion.schemas.incident import AnyIncident

logger = logging.getLogger(__name__)


def _fallback_text(incident: AnyIncident) -> str:
    parts = (incident.title, incident.location, incident.description)
    return " ".join(p for p in parts if p)


def enrich_incident_routes(
    incidents: Iterable[AnyIncident],
    matcher: RouteMatcher,
) -> tuple[list[AnyIncident], int]:
    """Return (incidents, enriched_count).

    Incidents that already list ``affects_routes`` are returned unchanged; the
    rest get a copy carrying the matcher's routes, method and confidence.
    """
    out: list[AnyIncident] = []
    enriched = 0
    for incident in incidents:
        if incident.affects_routes:
            out.append(incident)
            continue
        lat, lon = incident.coordinates if incident.coordinates else (None, None)
        result = matcher.find_routes(lat, lon, fallback_text=_fallback_text(incident))
        if result.method is MatchMethod.NONE:
            out.append(incident)
            continue
        out.append(
            incident.model_copy(
                update={
                    "affects_routes": list(result.routes),
                    "route_match_method": result.method.value,
                    "route_match_confidence": result.confidence.value,
                }
            )
        )
        enriched += 1
    logger.info("Route enrichment: %d incidents attributed to routes", enriched)
    return out, enriched
