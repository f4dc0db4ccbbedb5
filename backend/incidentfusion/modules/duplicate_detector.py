"""Duplicate detection: group incident reports of the same event and merge them.

Two incidents are potential duplicates when at least two of three signals
agree: geographic proximity (haversine), title similarity (token Jaccard) and
time proximity. Grouping is seed-based: each still-unassigned incident seeds a
group and absorbs every later unassigned incident that matches the seed. This
is O(n^2) comparisons and not a transitive closure (B~A and C~B does not pull
C into A's group unless C~A).

Groups of two or more are merged into one MergedIncident, choosing each field
from the most reliable source. Inputs are never mutated.
"""
from __future__ import annotations

import hashlib
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from incidentfusion.config import settings
from incidentfusion.schemas.incident import (
    AnyIncident,
    DeduplicationResult,
    DeduplicationStats,
    Incident,
    MergedIncident,
    MergeRecord,
    Severity,
    SourceReliability,
    SourceSnapshot,
    source_reliability_table,
)
from incidentfusion.utils.geo import haversine_meters
from incidentfusion.utils.text import jaccard_similarity, normalize_text, tokenize

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Traffic Incident"
DEFAULT_LOCATION = "Location not specified"
DEFAULT_SEVERITY = Severity.MEDIUM
MERGE_STRATEGY = "reliability_based"

_SIGNAL_LABELS = (
    ("geographic", "geographic proximity"),
    ("text", "text similarity"),
    ("time", "time proximity"),
)

_PREDICATE_ERRORS = (TypeError, ValueError, AttributeError, OverflowError)


def _comparison_text(incident: Incident) -> str:
    return incident.title if incident.title.strip() else incident.description


def _merged_id(group: list[Incident]) -> str:
    digest = hashlib.sha1("|".join(sorted(i.id for i in group)).encode("utf-8")).hexdigest()
    return f"merged-{digest[:16]}"


def _best_text(group: list[Incident], field_name: str, default: str) -> str:
    """Non-blank value from the most reliable member; longer wins a reliability tie."""
    candidates = [
        (i.reliability, getattr(i, field_name))
        for i in group
        if getattr(i, field_name).strip()
    ]
    if not candidates:
        return default
    return max(candidates, key=lambda c: (c[0], len(c[1])))[1]


class DuplicateDetectionEngine:
    def __init__(
        self,
        geo_threshold_m: float | None = None,
        text_similarity: float | None = None,
        time_window: timedelta | None = None,
        min_signals: int | None = None,
    ) -> None:
        self.geo_threshold_m = (
            geo_threshold_m if geo_threshold_m is not None else settings.DEDUP_GEO_THRESHOLD_METERS
        )
        self.text_similarity = (
            text_similarity if text_similarity is not None else settings.DEDUP_TEXT_SIMILARITY
        )
        self.time_window = (
            time_window
            if time_window is not None
            else timedelta(minutes=settings.DEDUP_TIME_WINDOW_MINUTES)
        )
        self.min_signals = (
            min_signals if min_signals is not None else settings.DEDUP_MIN_MATCHING_SIGNALS
        )

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def check_geographic_proximity(self, a: Incident, b: Incident) -> bool:
        if a.coordinates is None or b.coordinates is None:
            return False
        distance = haversine_meters(*a.coordinates, *b.coordinates)
        return distance <= self.geo_threshold_m

    def check_text_similarity(self, a: Incident, b: Incident) -> bool:
        text_a = normalize_text(_comparison_text(a))
        text_b = normalize_text(_comparison_text(b))
        if not text_a or not text_b:
            return False
        return jaccard_similarity(tokenize(text_a), tokenize(text_b)) >= self.text_similarity

    def check_time_proximity(self, a: Incident, b: Incident) -> bool:
        """True when within the window, or when either side has no timestamp."""
        ts_a, ts_b = a.best_timestamp(), b.best_timestamp()
        if ts_a is None or ts_b is None:
            return True
        return abs(ts_a - ts_b) <= self.time_window

    def matching_signals(self, a: Incident, b: Incident) -> dict[str, bool]:
        return {
            "geographic": self.check_geographic_proximity(a, b),
            "text": self.check_text_similarity(a, b),
            "time": self.check_time_proximity(a, b),
        }

    def are_potential_duplicates(self, a: Incident, b: Incident) -> bool:
        try:
            signals = self.matching_signals(a, b)
        except _PREDICATE_ERRORS as exc:
            logger.warning("Duplicate check failed for %r / %r: %s", a.id, b.id, exc)
            return False
        return sum(signals.values()) >= self.min_signals

    # ------------------------------------------------------------------
    # Grouping and merging
    # ------------------------------------------------------------------

    def group_potential_duplicates(self, incidents: list[Incident]) -> list[list[Incident]]:
        """Seed-based grouping; every incident lands in exactly one group."""
        assigned = [False] * len(incidents)
        groups: list[list[Incident]] = []
        for i, seed in enumerate(incidents):
            if assigned[i]:
                continue
            assigned[i] = True
            group = [seed]
            for j in range(i + 1, len(incidents)):
                if not assigned[j] and self.are_potential_duplicates(seed, incidents[j]):
                    assigned[j] = True
                    group.append(incidents[j])
            groups.append(group)
        return groups

    def get_merge_reason(self, a: Incident, b: Incident) -> str:
        try:
            signals = self.matching_signals(a, b)
        except _PREDICATE_ERRORS:
            return "multiple criteria"
        fired = [label for key, label in _SIGNAL_LABELS if signals[key]]
        return ", ".join(fired) if fired else "multiple criteria"

    def merge_incident_group(self, group: list[Incident]) -> MergedIncident:
        """Merge a group of duplicates, preferring the most reliable source per field."""
        # sorted() is stable: equal reliability keeps input order
        ranked = sorted(group, key=lambda i: i.reliability, reverse=True)
        primary = ranked[0]

        coordinates = next((i.coordinates for i in ranked if i.coordinates is not None), None)

        with_severity = [i for i in ranked if i.severity is not None]
        if with_severity:
            severity = max(with_severity, key=lambda i: (i.severity.rank, i.reliability)).severity
        else:
            severity = DEFAULT_SEVERITY

        routes = sorted({route for i in ranked for route in i.affects_routes})
        merge_reason = self.get_merge_reason(ranked[0], ranked[1]) if len(ranked) > 1 else ""
        now = datetime.now(timezone.utc)

        data: dict[str, Any] = primary.model_dump()
        data.update(
            id=_merged_id(group),
            title=_best_text(ranked, "title", DEFAULT_TITLE),
            location=_best_text(ranked, "location", DEFAULT_LOCATION),
            description=_best_text(ranked, "description", ""),
            coordinates=coordinates,
            severity=severity,
            affects_routes=routes,
            merged=True,
            processed=True,
            processing_timestamp=now,
            malformed=any(i.malformed for i in ranked),
            sources=[i.source for i in ranked],
            source_data=[
                SourceSnapshot(
                    source=i.source, original_id=i.id, title=i.title, coordinates=i.coordinates
                )
                for i in ranked
            ],
            source_reliabilities=[
                SourceReliability(source=i.source, reliability=i.reliability) for i in ranked
            ],
            merge_reason=merge_reason,
            merge_timestamp=now,
            merge_strategy=MERGE_STRATEGY,
        )
        return MergedIncident.model_validate(data)

    def enhance_incident(self, incident: Incident) -> Incident:
        """Singleton pass-through: mark processed, not merged."""
        return incident.model_copy(
            update={
                "processed": True,
                "merged": False,
                "processing_timestamp": datetime.now(timezone.utc),
            }
        )

    # ------------------------------------------------------------------

    def process_incidents(self, incidents: Iterable[Any]) -> DeduplicationResult:
        """Group and merge a batch. Never raises for an individual bad record."""
        started = time.perf_counter()
        coerced = [Incident.from_raw(raw) for raw in incidents]
        malformed = sum(1 for i in coerced if i.malformed)

        deduplicated: list[AnyIncident] = []
        duplicates_found: list[AnyIncident] = []
        merged_records: list[MergeRecord] = []

        for group in self.group_potential_duplicates(coerced):
            if len(group) == 1:
                deduplicated.append(self.enhance_incident(group[0]))
                continue
            merged = self.merge_incident_group(group)
            deduplicated.append(merged)
            primary_id = merged.source_data[0].original_id
            ranked = sorted(group, key=lambda i: i.reliability, reverse=True)
            duplicates_found.extend(ranked[1:])
            merged_records.append(
                MergeRecord(
                    merged_incident=merged,
                    source_incidents=list(group),
                    merge_reason=merged.merge_reason,
                )
            )
            logger.debug(
                "Merged %d incidents into %s (primary %r: %s)",
                len(group), merged.id, primary_id, merged.merge_reason,
            )

        original = len(coerced)
        final = len(deduplicated)
        removed = original - final
        stats = DeduplicationStats(
            original=original,
            final=final,
            duplicates_removed=removed,
            merged_groups=len(merged_records),
            malformed=malformed,
            processing_time_ms=round((time.perf_counter() - started) * 1000, 3),
            compression_ratio=round(removed / original * 100, 2) if original else 0.0,
        )
        logger.info("Duplicate detection complete: %d -> %d incidents", original, final)
        if malformed:
            logger.warning("%d malformed incident records were defaulted", malformed)
        return DeduplicationResult(
            deduplicated=deduplicated,
            duplicates_found=duplicates_found,
            merged_incidents=merged_records,
            stats=stats,
        )

    def get_statistics(self) -> dict[str, Any]:
        """Active thresholds and the source reliability table."""
        return {
            "geo_threshold_meters": self.geo_threshold_m,
            "text_similarity_threshold": self.text_similarity,
            "time_window_minutes": self.time_window.total_seconds() / 60,
            "min_matching_signals": self.min_signals,
            "merge_strategy": MERGE_STRATEGY,
            "source_reliability": source_reliability_table(),
        }
