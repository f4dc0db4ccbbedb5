"""Tests for geodesic helpers (utils/geo.py)."""
import math

import pytest

from incidentfusion.utils.geo import BoundingBox, coerce_lat_lon, haversine_meters, service_region


class TestHaversine:
    def test_identity_is_zero(self):
        """Distance from a point to itself is 0."""
        assert haversine_meters(54.9754, -1.6141, 54.9754, -1.6141) == 0.0

    def test_symmetric(self):
        a = (54.9754, -1.6141)
        b = (54.9062, -1.3838)
        assert haversine_meters(*a, *b) == pytest.approx(haversine_meters(*b, *a))

    def test_one_degree_latitude(self):
        """One degree of latitude is ~111.2 km on the mean-radius sphere."""
        assert haversine_meters(54.0, -1.6, 55.0, -1.6) == pytest.approx(111_195, rel=1e-3)

    def test_short_distance(self):
        """0.00045 deg of latitude is ~50 m."""
        d = haversine_meters(54.9754, -1.6141, 54.97585, -1.6141)
        assert 45 < d < 55


class TestCoerceLatLon:
    def test_valid_strings(self):
        assert coerce_lat_lon("54.97", "-1.61") == (54.97, -1.61)

    @pytest.mark.parametrize("lat,lon", [
        (None, 1.0),
        ("abc", 1.0),
        (91.0, 0.0),
        (0.0, -181.0),
        (math.nan, 0.0),
    ])
    def test_invalid_returns_none(self, lat, lon):
        assert coerce_lat_lon(lat, lon) is None


class TestBoundingBox:
    def test_edges_inclusive(self):
        box = BoundingBox(north=56.0, south=54.0, east=0.0, west=-2.5)
        assert box.contains(56.0, -2.5)
        assert box.contains(54.0, 0.0)
        assert not box.contains(53.99, -1.0)
        assert not box.contains(55.0, 0.01)

    def test_service_region_covers_newcastle(self):
        assert service_region().contains(54.9754, -1.6141)
        assert not service_region().contains(51.5074, -0.1278)  # London
