"""incidentfusion CLI: incident deduplication and transit route attribution.

Commands:
  dedup           merge duplicate incident reports from a JSON file
  match-routes    routes passing near a coordinate (text fallback optional)
  index-status    build the GTFS route index and report its health
  process         full batch: dedup, then route enrichment
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from incidentfusion.config import settings

app = typer.Typer(
    name="incidentfusion",
    help="Incident deduplication and transit route attribution.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
):
    """Incident deduplication and transit route attribution."""
    logging.basicConfig(
        level=(log_level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("dedup")
def dedup(
    input_path: Path = typer.Argument(..., help="JSON array of incident records"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the result as JSON"),
):
    """Group and merge duplicate incident reports."""
    from incidentfusion.modules.duplicate_detector import DuplicateDetectionEngine

    records = _load_incidents(input_path)
    result = DuplicateDetectionEngine().process_incidents(records)
    _print_stats(result)
    if output:
        _write_json(output, result.model_dump(mode="json"))


@app.command("match-routes")
def match_routes(
    lat: Optional[float] = typer.Option(None, "--lat"),
    lon: Optional[float] = typer.Option(None, "--lon"),
    text: str = typer.Option("", "--text", help="Fallback text (title, location)"),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", help="GTFS directory"),
    cached: bool = typer.Option(
        True, "--cached/--streaming", help="Preload in-region shapes, or stream shapes.txt per scan"
    ),
):
    """Find transit routes near a coordinate."""
    matcher = _build_matcher(data_dir, cached)
    result = matcher.find_routes(lat, lon, fallback_text=text)

    if result.routes:
        console.print(f"[bold green]Routes:[/bold green] {', '.join(result.routes)}")
    else:
        console.print("[yellow]No routes found[/yellow]")
    console.print(
        f"  Method: {result.method.value}  Confidence: {result.confidence.value}"
        f"  Radius: {result.radius_used if result.radius_used is not None else '-'}"
    )
    console.print(f"  Points scanned: {result.points_scanned}  Truncated: {result.truncated}")
    if result.matched_corridors:
        console.print(f"  Corridors: {', '.join(result.matched_corridors)}")
    if result.error:
        console.print(f"  [red]Lookup error:[/red] {result.error}")


@app.command("index-status")
def index_status(
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", help="GTFS directory"),
):
    """Build the GTFS route index and print its status."""
    from incidentfusion.modules.gtfs_index import build_gtfs_index_from_dir

    index = build_gtfs_index_from_dir(data_dir)
    info = index.describe()

    table = Table(title="GTFS Route Index")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in info.items():
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)

    if not index.is_ready:
        console.print("[yellow]Index not ready; route attribution will use text fallback only[/yellow]")


@app.command("process")
def process(
    input_path: Path = typer.Argument(..., help="JSON array of incident records"),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", help="GTFS directory"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the result as JSON"),
):
    """Deduplicate a batch, then attribute transit routes."""
    from incidentfusion.modules.incident_pipeline import process_incident_batch

    records = _load_incidents(input_path)
    result = process_incident_batch(records, matcher=_build_matcher(data_dir, cached=True))
    _print_stats(result)
    if output:
        _write_json(output, result.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_incidents(path: Path) -> list[Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        console.print(f"[red]Cannot read incidents from {path}: {exc}[/red]")
        raise typer.Exit(1)
    if isinstance(data, dict):
        data = data.get("incidents", [])
    if not isinstance(data, list):
        console.print(f"[red]Expected a JSON array of incidents in {path}[/red]")
        raise typer.Exit(1)
    return data


def _write_json(path: Path, payload: Any) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    console.print(f"Wrote {path}")


def _build_matcher(data_dir: Optional[Path], cached: bool):
    from incidentfusion.modules.gtfs_index import build_gtfs_index_from_dir
    from incidentfusion.modules.route_matcher import (
        RegionalShapeCache,
        RouteMatcher,
        StreamingShapeSource,
    )

    base = Path(data_dir or settings.GTFS_DATA_DIR)
    index = build_gtfs_index_from_dir(base)
    shapes_path = base / settings.GTFS_SHAPES_FILE

    if not index.is_ready:
        console.print(f"[yellow]GTFS index {index.status.value}: {index.error or 'no routes'}[/yellow]")
        shape_source = StreamingShapeSource(shapes_path)
    elif cached:
        shape_source = RegionalShapeCache()
        try:
            shape_source.load(shapes_path)
        except (OSError, ValueError) as exc:
            console.print(f"[yellow]Could not preload shapes ({exc}); streaming instead[/yellow]")
            shape_source = StreamingShapeSource(shapes_path)
    else:
        shape_source = StreamingShapeSource(shapes_path)
    return RouteMatcher(index, shape_source)


def _print_stats(result) -> None:
    stats = result.stats
    table = Table(title="Duplicate Detection")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Incidents in", str(stats.original))
    table.add_row("Incidents out", str(stats.final))
    table.add_row("Duplicates removed", str(stats.duplicates_removed))
    table.add_row("Merged groups", str(stats.merged_groups))
    table.add_row("Malformed", str(stats.malformed))
    table.add_row("Compression", f"{stats.compression_ratio:.1f}%")
    table.add_row("Routes enriched", str(stats.enriched))
    table.add_row("Time (ms)", f"{stats.processing_time_ms:.1f}")
    console.print(table)

    for record in result.merged_incidents:
        merged = record.merged_incident
        console.print(
            f"  [bold]{merged.title}[/bold] <- {', '.join(merged.sources)} "
            f"([dim]{record.merge_reason}[/dim])"
        )
