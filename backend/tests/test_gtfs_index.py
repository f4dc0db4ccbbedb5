"""Tests for the immutable GTFS route index and its atomic holder."""
import threading
from types import MappingProxyType

import pytest

from incidentfusion.modules.gtfs_index import (
    GTFSIndex,
    GTFSIndexHolder,
    IndexStatus,
    build_gtfs_index,
    build_gtfs_index_from_dir,
)
from incidentfusion.schemas.gtfs import RouteRecord, TripLink

from conftest import write_csv


class TestBuild:
    def test_builds_from_directory(self, gtfs_dir):
        index = build_gtfs_index_from_dir(gtfs_dir)
        assert index.status is IndexStatus.READY
        assert index.route_names["RQ3"] == "Q3"
        assert index.shape_routes["S_A"] == frozenset({"R21", "R22"})
        assert index.route_names_for_shape("S_A") == frozenset({"21", "22"})
        assert index.route_names_for_shape("unknown") == frozenset()

    def test_blank_ids_counted_as_skipped(self, tmp_path):
        routes = write_csv(tmp_path / "routes.txt", ["route_id", "route_short_name"],
                           [["R1", "1"], ["", "2"], ["R3", ""]])
        trips = write_csv(tmp_path / "trips.txt", ["route_id", "shape_id"],
                          [["R1", "S1"], ["R1", ""]])
        index = build_gtfs_index(routes, trips)
        assert index.rows_skipped == 3
        assert dict(index.route_names) == {"R1": "1"}

    def test_trip_for_unknown_route_is_not_attributable(self, tmp_path):
        routes = write_csv(tmp_path / "routes.txt", ["route_id", "route_short_name"], [["R1", "1"]])
        trips = write_csv(tmp_path / "trips.txt", ["route_id", "shape_id"], [["R9", "S9"]])
        index = build_gtfs_index(routes, trips)
        assert index.status is IndexStatus.EMPTY
        assert "S9" in index.shape_routes
        assert index.route_names_for_shape("S9") == frozenset()

    def test_missing_file_yields_failed_index(self, tmp_path):
        index = build_gtfs_index(tmp_path / "routes.txt", tmp_path / "trips.txt")
        assert index.status is IndexStatus.FAILED
        assert index.error
        assert not index.is_ready
        assert len(index.route_names) == 0

    def test_bad_header_yields_failed_index(self, tmp_path):
        routes = write_csv(tmp_path / "routes.txt", ["id", "name"], [["R1", "1"]])
        trips = write_csv(tmp_path / "trips.txt", ["route_id", "shape_id"], [["R1", "S1"]])
        index = build_gtfs_index(routes, trips)
        assert index.status is IndexStatus.FAILED
        assert "route_id" in index.error

    def test_from_records(self):
        index = GTFSIndex.from_records(
            [RouteRecord("R1", "21"), RouteRecord("R2", "22")],
            [TripLink("R1", "S1"), TripLink("R2", "S1"), TripLink("R2", "S2")],
        )
        assert index.route_names_for_shape("S1") == frozenset({"21", "22"})
        assert index.is_ready


class TestImmutability:
    def test_mappings_are_read_only(self, gtfs_dir):
        index = build_gtfs_index_from_dir(gtfs_dir)
        assert isinstance(index.route_names, MappingProxyType)
        with pytest.raises(TypeError):
            index.route_names["R1"] = "x"

    def test_dataclass_is_frozen(self):
        index = GTFSIndex.empty()
        with pytest.raises(AttributeError):
            index.status = IndexStatus.READY

    def test_default_construction_uses_empty_read_only_mappings(self):
        index = GTFSIndex()
        assert index.status is IndexStatus.EMPTY
        assert not index.is_ready
        for mapping in (index.route_names, index.shape_routes, index.shape_route_names):
            assert isinstance(mapping, MappingProxyType)
            assert len(mapping) == 0
        with pytest.raises(TypeError):
            index.shape_routes["S1"] = frozenset()
        assert GTFSIndex.empty().route_names_for_shape("S1") == frozenset()

    def test_describe(self, gtfs_dir):
        info = build_gtfs_index_from_dir(gtfs_dir).describe()
        assert info["status"] == "ready"
        assert info["routes"] == 4
        assert info["shapes"] == 3
        assert info["attributable_shapes"] == 3


class TestHolder:
    def test_swap_replaces_and_returns_previous(self, gtfs_dir):
        holder = GTFSIndexHolder()
        first = holder.current
        new = build_gtfs_index_from_dir(gtfs_dir)
        assert holder.swap(new) is first
        assert holder.current is new
        assert holder.refresh_count == 1

    def test_reader_snapshot_unaffected_by_swap(self, gtfs_dir):
        holder = GTFSIndexHolder(build_gtfs_index_from_dir(gtfs_dir))
        snapshot = holder.current
        holder.swap(GTFSIndex.empty())
        assert snapshot.is_ready
        assert snapshot.route_names_for_shape("S_B") == frozenset({"Q3"})
        assert not holder.current.is_ready

    def test_failed_refresh_keeps_ready_index(self, gtfs_dir):
        ready = build_gtfs_index_from_dir(gtfs_dir)
        holder = GTFSIndexHolder(ready)
        result = holder.refresh(lambda: GTFSIndex.failed("disk gone"))
        assert result is ready
        assert holder.current is ready
        assert holder.refresh_count == 0

    def test_failed_refresh_can_replace(self, gtfs_dir):
        holder = GTFSIndexHolder(build_gtfs_index_from_dir(gtfs_dir))
        holder.refresh(lambda: GTFSIndex.failed("disk gone"), replace_on_failure=True)
        assert holder.current.status is IndexStatus.FAILED

    def test_concurrent_refreshes_always_leave_a_complete_index(self, gtfs_dir):
        holder = GTFSIndexHolder()
        errors = []

        def refresher():
            for _ in range(5):
                holder.refresh(lambda: build_gtfs_index_from_dir(gtfs_dir))

        def reader():
            for _ in range(200):
                index = holder.current
                # Either the initial empty index or a fully built one
                if index.is_ready and index.route_names_for_shape("S_A") != frozenset({"21", "22"}):
                    errors.append(index)

        threads = [threading.Thread(target=refresher) for _ in range(2)]
        threads += [threading.Thread(target=reader) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert holder.refresh_count == 10
        assert holder.describe()["refresh_count"] == 10
