"""Flexible timestamp parsing for incident feeds."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

_COMMON_TIMESTAMP_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%Y/%m/%d %H:%M:%S",
]


def parse_timestamp_flexible(ts: Any) -> datetime | None:
    """Parse a timestamp from various formats into an aware UTC datetime.

    Returns None if parsing fails.
    Supports: datetime objects, ISO 8601 (with trailing Z), Unix epoch seconds
    or milliseconds, and common strftime formats. Naive values are taken as UTC.
    """
    if isinstance(ts, bool):
        return None

    if isinstance(ts, datetime):
        return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)

    # Unix epoch (int or float); feeds emitting milliseconds are scaled down
    if isinstance(ts, (int, float)):
        seconds = ts / 1000 if ts > 100_000_000_000 else ts
        if seconds <= 0:
            return None
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OSError, ValueError, OverflowError):
            return None

    if isinstance(ts, str):
        ts_str = ts.strip()
        if not ts_str:
            return None

        if ts_str.isdigit():
            return parse_timestamp_flexible(int(ts_str))

        # Try ISO format first
        try:
            parsed = datetime.fromisoformat(ts_str.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

        for fmt in _COMMON_TIMESTAMP_FORMATS:
            try:
                return datetime.strptime(ts_str, fmt).replace(tzinfo=timezone.utc)
            except ValueError:
                continue

    return None
