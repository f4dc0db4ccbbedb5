"""Generate a synthetic GTFS feed and incident batch for end-to-end demo.

Routes and scenarios:
  21, 22  : Durham Road corridor through central Gateshead / Newcastle
  Q3      : Quaylink loop crossing the Tyne Bridge
  X82     : West Road express, well away from the other shapes
  A1 pair : two feeds reporting the same A1 closure 3 minutes apart → merged
  Tyne    : three feeds reporting one Tyne Bridge collision → merged
  Coast   : no coordinates, routes come from the "Coast Road" text fallback

Usage:
    python backend/scripts/generate_sample_data.py
    # Outputs: backend/scripts/sample_gtfs/{routes,trips,shapes}.txt
    #          backend/scripts/sample_incidents.json
"""
from __future__ import annotations

import csv
import json
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path

random.seed(42)

OUTPUT_DIR = Path(__file__).parent
GTFS_DIR = OUTPUT_DIR / "sample_gtfs"
INCIDENTS_PATH = OUTPUT_DIR / "sample_incidents.json"

# Demo anchor point: Newcastle city centre
ANCHOR_LAT, ANCHOR_LON = 54.9754, -1.6141

BASE_TIME = datetime.now(timezone.utc).replace(second=0, microsecond=0) - timedelta(hours=1)


def ts(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def line_shape(shape_id: str, start: tuple[float, float], end: tuple[float, float], n: int = 40):
    """Straight polyline with small jitter, one point per step."""
    points = []
    for seq in range(n):
        f = seq / (n - 1)
        lat = start[0] + (end[0] - start[0]) * f + random.uniform(-0.00005, 0.00005)
        lon = start[1] + (end[1] - start[1]) * f + random.uniform(-0.00005, 0.00005)
        points.append({
            "shape_id": shape_id,
            "shape_pt_lat": round(lat, 6),
            "shape_pt_lon": round(lon, 6),
            "shape_pt_sequence": seq + 1,
        })
    return points


# ─── GTFS tables ─────────────────────────────────────────────────────────────

ROUTES = [
    {"route_id": "R21", "route_short_name": "21"},
    {"route_id": "R22", "route_short_name": "22"},
    {"route_id": "RQ3", "route_short_name": "Q3"},
    {"route_id": "RX82", "route_short_name": "X82"},
]

TRIPS = [
    {"route_id": "R21", "trip_id": "T21-1", "shape_id": "S_DURHAM_RD"},
    {"route_id": "R22", "trip_id": "T22-1", "shape_id": "S_DURHAM_RD"},
    {"route_id": "RQ3", "trip_id": "TQ3-1", "shape_id": "S_QUAYLINK"},
    {"route_id": "RX82", "trip_id": "TX82-1", "shape_id": "S_WEST_RD"},
]

SHAPES = (
    # passes within a few metres of the anchor
    line_shape("S_DURHAM_RD", (54.9500, -1.6030), (54.9900, -1.6200))
    # crosses about 120 m east of the anchor
    + line_shape("S_QUAYLINK", (54.9650, -1.6125), (54.9850, -1.6125))
    # several kilometres west
    + line_shape("S_WEST_RD", (54.9800, -1.7200), (54.9900, -1.6800))
)


# ─── Incidents ───────────────────────────────────────────────────────────────

INCIDENTS = [
    {
        "id": "feedX-1001", "source": "feedX", "title": "A1 closure",
        "location": "A1 northbound J65-J66",
        "coordinates": [54.9400, -1.6700], "timestamp": ts(BASE_TIME),
        "severity": "High",
    },
    {
        "id": "feedY-77", "source": "feedY", "title": "A1 Road Closed",
        "coordinates": {"lat": 54.9401, "lng": -1.6701},
        "timestamp": ts(BASE_TIME + timedelta(minutes=3)),
    },
    {
        "id": "nh-5501", "source": "national_highways",
        "title": "Collision on Tyne Bridge southbound lane blocked",
        "location": "Tyne Bridge, Newcastle", "description": "Two vehicles, lane 1 closed",
        "coordinates": [ANCHOR_LAT, ANCHOR_LON], "created_at": ts(BASE_TIME + timedelta(minutes=20)),
        "severity": "Medium",
    },
    {
        "id": "tt-88213", "source": "tomtom",
        "title": "Collision on Tyne Bridge southbound, lane blocked",
        "location": "Tyne Bridge",
        "geometry": {"type": "Point", "coordinates": [ANCHOR_LON + 0.0003, ANCHOR_LAT + 0.0002]},
        "reportedAt": ts(BASE_TIME + timedelta(minutes=24)), "severity": "High",
    },
    {
        "id": "mq-4410", "source": "mapquest",
        "title": "Collision Tyne Bridge southbound lane blocked",
        "lat": ANCHOR_LAT - 0.0002, "lng": ANCHOR_LON,
        "updatedAt": ts(BASE_TIME + timedelta(minutes=26)),
    },
    {
        "id": "man-12", "source": "manual_incidents",
        "title": "Broken down bus on the Coast Road near Wallsend",
        "timestamp": ts(BASE_TIME + timedelta(minutes=40)), "severity": "Low",
    },
    {
        "id": "sm-9", "source": "streetmanager",
        "title": "Gas main works", "location": "West Road, Benwell",
        "coordinates": [54.9850, -1.7000], "affectsRoutes": "X82",
        "timestamp": ts(BASE_TIME + timedelta(minutes=5)),
    },
]


def write_csv(path: Path, rows: list[dict]) -> None:
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        writer.writerows(rows)


def main() -> None:
    GTFS_DIR.mkdir(parents=True, exist_ok=True)
    write_csv(GTFS_DIR / "routes.txt", ROUTES)
    write_csv(GTFS_DIR / "trips.txt", TRIPS)
    write_csv(GTFS_DIR / "shapes.txt", SHAPES)
    with open(INCIDENTS_PATH, "w", encoding="utf-8") as f:
        json.dump(INCIDENTS, f, indent=2)

    print(f"Wrote {len(ROUTES)} routes, {len(TRIPS)} trips, {len(SHAPES)} shape points to {GTFS_DIR}")
    print(f"Wrote {len(INCIDENTS)} incidents to {INCIDENTS_PATH}")
    print("Try:")
    print(f"  incidentfusion process {INCIDENTS_PATH} --data-dir {GTFS_DIR}")
    print(f"  incidentfusion match-routes --lat {ANCHOR_LAT} --lon {ANCHOR_LON} --data-dir {GTFS_DIR}")


if __name__ == "__main__":
    main()
