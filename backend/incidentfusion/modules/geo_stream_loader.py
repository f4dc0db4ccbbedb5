"""Memory-bounded streaming CSV loader for large GTFS geometry tables.

shapes.txt for a regional feed runs to tens of megabytes, so it is never read
whole. The loader reads fixed-size byte chunks, carries the line fragment split
across a chunk boundary over to the next chunk, parses the header once and
yields one record per data line. The next chunk is only read after every
record of the current one has been consumed.

Memory is bounded three ways:
  1. rows outside the service-region bounding box are dropped before dispatch;
  2. every ``memory_check_interval`` records the process RSS is probed and, above
     ``max_memory_mb``, registered caches are trimmed (oldest first) and a GC
     is requested;
  3. ``max_records`` caps the rows inspected per call. Hitting the cap stops the
     scan early and marks the stats ``truncated``; this is a recall limit
     traded for predictable latency, not a correctness bug.

Quoted fields are supported; quoted fields containing newlines are not. A line
longer than ``max_line_length`` characters is skipped as malformed without ever
being held whole.
"""
from __future__ import annotations

import codecs
import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Mapping

from incidentfusion.config import settings
from incidentfusion.utils.bounded_cache import BoundedCache
from incidentfusion.utils.geo import BoundingBox, coerce_lat_lon, service_region
from incidentfusion.utils.memory import current_rss_mb, request_gc

logger = logging.getLogger(__name__)


class MalformedHeaderError(ValueError):
    """CSV header is missing or lacks required columns."""


@dataclass
class StreamStats:
    path: str = ""
    lines_read: int = 0
    records_inspected: int = 0
    records_dispatched: int = 0
    skipped_malformed: int = 0
    skipped_out_of_region: int = 0
    bytes_read: int = 0
    pressure_events: int = 0
    peak_memory_mb: float = 0.0
    truncated: bool = False


class GeoStreamLoader:
    def __init__(
        self,
        *,
        chunk_size: int | None = None,
        memory_check_interval: int | None = None,
        max_memory_mb: float | None = None,
        region: BoundingBox | None = None,
        max_records: int | None = None,
        max_line_length: int | None = None,
        memory_probe: Callable[[], float] = current_rss_mb,
        gc_hint: Callable[[], Any] = request_gc,
    ) -> None:
        self.chunk_size = chunk_size if chunk_size is not None else settings.STREAM_CHUNK_SIZE
        self.memory_check_interval = (
            memory_check_interval if memory_check_interval is not None else settings.MEMORY_CHECK_INTERVAL
        )
        self.max_line_length = (
            max_line_length if max_line_length is not None else settings.STREAM_MAX_LINE_LENGTH
        )
        for name in ("chunk_size", "memory_check_interval", "max_line_length"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        self.max_memory_mb = max_memory_mb if max_memory_mb is not None else settings.MAX_MEMORY_MB
        self.region = region
        self.max_records = max_records
        self._memory_probe = memory_probe
        self._gc_hint = gc_hint
        self._caches: list[BoundedCache] = []

    @classmethod
    def for_shape_scans(cls, **overrides: Any) -> "GeoStreamLoader":
        """Loader configured for per-lookup shape scans: region filter and record cap."""
        overrides.setdefault("region", service_region())
        overrides.setdefault("max_records", settings.MAX_SHAPE_POINTS_PER_LOOKUP)
        return cls(**overrides)

    def register_cache(self, cache: BoundedCache) -> None:
        """Trim ``cache`` to its pressure size whenever the memory ceiling is hit."""
        if cache not in self._caches:
            self._caches.append(cache)

    # ------------------------------------------------------------------

    def stream(
        self,
        path: str | Path,
        on_record: Callable[[dict[str, Any]], None],
        **kwargs: Any,
    ) -> StreamStats:
        """Invoke ``on_record`` for every accepted record; return the scan stats."""
        stats = StreamStats()
        for record in self.iter_records(path, stats=stats, **kwargs):
            on_record(record)
        return stats

    def iter_records(
        self,
        path: str | Path,
        *,
        required_columns: Iterable[str] = (),
        coordinate_columns: tuple[str, str] | None = None,
        column_aliases: Mapping[str, str] | None = None,
        stats: StreamStats | None = None,
    ) -> Iterator[dict[str, Any]]:
        """Yield one ``{column: value}`` dict per accepted data line.

        Values are stripped strings, except the ``coordinate_columns`` (lat, lon)
        which are yielded as floats once validated.

        Raises:
            OSError: the file cannot be opened or read.
            MalformedHeaderError: the header is missing or lacks a required column.
        """
        stats = stats if stats is not None else StreamStats()
        stats.path = str(path)
        required = tuple(required_columns)
        if coordinate_columns:
            required += tuple(c for c in coordinate_columns if c not in required)
        aliases = dict(column_aliases or {})

        headers: list[str] | None = None
        decoder = codecs.getincrementaldecoder("utf-8-sig")(errors="replace")
        carry = ""
        # Inside an over-long line: drop text up to the next newline
        discarding = False

        with open(path, "rb") as fh:
            while True:
                chunk = fh.read(self.chunk_size)
                final = not chunk
                stats.bytes_read += len(chunk)
                text = decoder.decode(chunk, final=final)
                if discarding:
                    newline = text.find("\n")
                    if newline < 0:
                        text = ""
                    else:
                        text = text[newline + 1:]
                        discarding = False
                carry += text
                lines = carry.split("\n")
                # Keep the trailing fragment until the next chunk completes it
                carry = "" if final else lines.pop()
                if len(carry) > self.max_line_length:
                    self._skip_long_line(stats, path)
                    carry = ""
                    discarding = True

                for line in lines:
                    line = line.rstrip("\r")
                    if not line.strip():
                        continue
                    if len(line) > self.max_line_length:
                        self._skip_long_line(stats, path)
                        continue
                    stats.lines_read += 1

                    if headers is None:
                        headers = self._parse_header(line, aliases, required, path)
                        continue

                    if self.max_records is not None and stats.records_inspected >= self.max_records:
                        stats.truncated = True
                        logger.info(
                            "Record cap %d reached for %s; scan truncated",
                            self.max_records, path,
                        )
                        return

                    stats.records_inspected += 1
                    if stats.records_inspected % self.memory_check_interval == 0:
                        self.check_memory(stats)

                    record = self._parse_record(line, headers)
                    if record is None:
                        stats.skipped_malformed += 1
                        continue

                    if coordinate_columns:
                        lat_col, lon_col = coordinate_columns
                        coords = coerce_lat_lon(record.get(lat_col), record.get(lon_col))
                        if coords is None:
                            stats.skipped_malformed += 1
                            continue
                        if self.region is not None and not self.region.contains(*coords):
                            stats.skipped_out_of_region += 1
                            continue
                        record[lat_col], record[lon_col] = coords

                    stats.records_dispatched += 1
                    yield record

                if final:
                    break

        if headers is None and required:
            raise MalformedHeaderError(f"{path}: empty file, expected columns {sorted(required)}")

        logger.debug(
            "Streamed %s: %d records dispatched, %d malformed, %d out of region",
            path, stats.records_dispatched, stats.skipped_malformed, stats.skipped_out_of_region,
        )

    def check_memory(self, stats: StreamStats | None = None) -> bool:
        """Probe RSS; over the ceiling, trim registered caches and hint GC.

        Returns True when a cleanup was performed.
        """
        used = self._memory_probe()
        if stats is not None:
            stats.peak_memory_mb = max(stats.peak_memory_mb, used)
        if used <= self.max_memory_mb:
            return False

        evicted = sum(cache.trim() for cache in self._caches)
        self._gc_hint()
        if stats is not None:
            stats.pressure_events += 1
        logger.warning(
            "Memory ceiling exceeded (%.0f MB > %.0f MB): evicted %d cached entries",
            used, self.max_memory_mb, evicted,
        )
        return True

    # ------------------------------------------------------------------

    def _skip_long_line(self, stats: StreamStats, path: str | Path) -> None:
        stats.skipped_malformed += 1
        logger.warning(
            "Line longer than %d characters in %s skipped", self.max_line_length, path,
        )

    @staticmethod
    def _parse_header(
        line: str,
        aliases: Mapping[str, str],
        required: tuple[str, ...],
        path: str | Path,
    ) -> list[str]:
        try:
            raw = next(csv.reader([line]))
        except csv.Error as exc:
            raise MalformedHeaderError(f"{path}: unparseable header: {exc}") from exc
        headers = [h.strip().strip('"') for h in raw]
        headers = [aliases.get(h, h) for h in headers]
        missing = set(required) - set(headers)
        if missing:
            raise MalformedHeaderError(f"{path}: missing required columns: {sorted(missing)}")
        return headers

    @staticmethod
    def _parse_record(line: str, headers: list[str]) -> dict[str, Any] | None:
        try:
            values = next(csv.reader([line]))
        except csv.Error:
            return None
        record = {h: "" for h in headers}
        for header, value in zip(headers, values):
            record[header] = value.strip()
        return record
