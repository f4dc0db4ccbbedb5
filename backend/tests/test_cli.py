"""Tests for the incidentfusion CLI commands."""
from __future__ import annotations

import json

from typer.testing import CliRunner

from incidentfusion.cli import app

from conftest import ANCHOR

runner = CliRunner()

_INCIDENTS = [
    {"id": "x1", "source": "feedX", "coordinates": [54.9750, -1.6140],
     "title": "A1 closure", "timestamp": "2025-06-01T12:00:00Z"},
    {"id": "y1", "source": "feedY", "coordinates": [54.9751, -1.6141],
     "title": "A1 Road Closed", "timestamp": "2025-06-01T12:03:00Z"},
]


def _write_incidents(tmp_path, payload=None):
    path = tmp_path / "incidents.json"
    path.write_text(json.dumps(_INCIDENTS if payload is None else payload), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# dedup / process
# ---------------------------------------------------------------------------


def test_dedup_writes_output(tmp_path):
    """dedup merges the two A1 reports and writes JSON."""
    out = tmp_path / "out.json"
    result = runner.invoke(app, ["dedup", str(_write_incidents(tmp_path)), "--output", str(out)])
    assert result.exit_code == 0, result.output
    assert "Duplicate Detection" in result.output
    data = json.loads(out.read_text(encoding="utf-8"))
    assert data["stats"]["final"] == 1
    assert data["deduplicated"][0]["sources"] == ["feedX", "feedY"]


def test_dedup_accepts_wrapped_object(tmp_path):
    path = _write_incidents(tmp_path, {"incidents": _INCIDENTS})
    result = runner.invoke(app, ["dedup", str(path)])
    assert result.exit_code == 0, result.output


def test_dedup_missing_file(tmp_path):
    """Unreadable input exits 1 with a friendly error."""
    result = runner.invoke(app, ["dedup", str(tmp_path / "nope.json")])
    assert result.exit_code == 1
    assert "Cannot read incidents" in result.output


def test_dedup_invalid_json(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{not json", encoding="utf-8")
    result = runner.invoke(app, ["dedup", str(path)])
    assert result.exit_code == 1


def test_dedup_rejects_non_array(tmp_path):
    path = _write_incidents(tmp_path, "just a string")
    result = runner.invoke(app, ["dedup", str(path)])
    assert result.exit_code == 1
    assert "JSON array" in result.output


def test_process_enriches(tmp_path, gtfs_dir):
    incidents = [{"id": "c1", "title": "Crash", "coordinates": list(ANCHOR)}]
    out = tmp_path / "out.json"
    result = runner.invoke(app, [
        "process", str(_write_incidents(tmp_path, incidents)),
        "--data-dir", str(gtfs_dir), "--output", str(out),
    ])
    assert result.exit_code == 0, result.output
    data = json.loads(out.read_text(encoding="utf-8"))
    assert data["stats"]["enriched"] == 1
    assert data["deduplicated"][0]["affects_routes"] == ["21", "22", "Q3"]


# ---------------------------------------------------------------------------
# match-routes / index-status
# ---------------------------------------------------------------------------


def test_match_routes_cached(gtfs_dir):
    result = runner.invoke(app, [
        "match-routes", f"--lat={ANCHOR[0]}", f"--lon={ANCHOR[1]}", "--data-dir", str(gtfs_dir),
    ])
    assert result.exit_code == 0, result.output
    assert "21, 22, Q3" in result.output
    assert "gtfs_geometry" in result.output


def test_match_routes_streaming(gtfs_dir):
    result = runner.invoke(app, [
        "match-routes", f"--lat={ANCHOR[0]}", f"--lon={ANCHOR[1]}",
        "--data-dir", str(gtfs_dir), "--streaming",
    ])
    assert result.exit_code == 0, result.output
    assert "21, 22, Q3" in result.output


def test_match_routes_text_only_when_index_missing(tmp_path):
    result = runner.invoke(app, [
        "match-routes", "--text", "Queue on the Tyne Bridge", "--data-dir", str(tmp_path),
    ])
    assert result.exit_code == 0, result.output
    assert "text_pattern" in result.output
    assert "failed" in result.output


def test_index_status(gtfs_dir):
    result = runner.invoke(app, ["index-status", "--data-dir", str(gtfs_dir)])
    assert result.exit_code == 0, result.output
    assert "ready" in result.output
    assert "attributable_shapes" in result.output


def test_index_status_missing_dir(tmp_path):
    result = runner.invoke(app, ["index-status", "--data-dir", str(tmp_path / "nothing")])
    assert result.exit_code == 0
    assert "failed" in result.output
    assert "text fallback" in result.output
