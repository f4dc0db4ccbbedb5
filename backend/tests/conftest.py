"""Shared fixtures: small GTFS feeds written to tmp_path."""
import csv
from pathlib import Path

import pytest

# Newcastle city centre; the demo shapes below are laid out around it
ANCHOR = (54.9754, -1.6141)


def write_csv(path: Path, header: list[str], rows: list[list]) -> Path:
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        writer.writerows(rows)
    return path


def write_shapes(path: Path, points: list[tuple[str, int, float, float]]) -> Path:
    return write_csv(
        path,
        ["shape_id", "shape_pt_sequence", "shape_pt_lat", "shape_pt_lon"],
        [list(p) for p in points],
    )


@pytest.fixture
def gtfs_dir(tmp_path):
    """Three routes near ANCHOR plus one far away.

    S_A (routes 21, 22) passes ~30 m from ANCHOR, S_B (Q3) ~60 m east,
    S_FAR (X82) is several kilometres west.
    """
    lat, lon = ANCHOR
    write_csv(
        tmp_path / "routes.txt",
        ["route_id", "route_short_name", "route_type"],
        [["R21", "21", "3"], ["R22", "22", "3"], ["RQ3", "Q3", "3"], ["RX82", "X82", "3"]],
    )
    write_csv(
        tmp_path / "trips.txt",
        ["route_id", "service_id", "trip_id", "shape_id"],
        [
            ["R21", "WK", "T1", "S_A"],
            ["R22", "WK", "T2", "S_A"],
            ["RQ3", "WK", "T3", "S_B"],
            ["RX82", "WK", "T4", "S_FAR"],
        ],
    )
    write_shapes(
        tmp_path / "shapes.txt",
        [
            ("S_A", 1, lat - 0.0010, lon),
            ("S_A", 2, lat + 0.00027, lon),
            ("S_A", 3, lat + 0.0010, lon),
            ("S_B", 1, lat, lon + 0.0009),
            ("S_B", 2, lat + 0.0005, lon + 0.0009),
            ("S_FAR", 1, 54.9850, -1.7200),
            ("S_FAR", 2, 54.9860, -1.7150),
        ],
    )
    return tmp_path
