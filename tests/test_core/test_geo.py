"""Tests for great-circle distance and region checks."""

from __future__ import annotations

import pytest

from ridealert.core.config import RegionConfig
from ridealert.core.geo import distance_km, haversine_km, in_region, radius_to_radians
from ridealert.core.types import GeoPoint


def _pt(lon: float, lat: float) -> GeoPoint:
    return GeoPoint(longitude=lon, latitude=lat)


class TestHaversine:
    def test_one_degree_of_latitude(self) -> None:
        assert haversine_km(_pt(0, 0), _pt(0, 1)) == pytest.approx(111.19, abs=0.1)

    def test_same_point_is_zero(self) -> None:
        assert haversine_km(_pt(-4.0, 5.3), _pt(-4.0, 5.3)) == 0.0

    def test_symmetric(self) -> None:
        a, b = _pt(-4.0, 5.3), _pt(-5.3, 6.8)
        assert haversine_km(a, b) == pytest.approx(haversine_km(b, a))

    def test_antipodes_do_not_raise(self) -> None:
        d = haversine_km(_pt(0, 0), _pt(180, 0))
        assert d == pytest.approx(20015.09, abs=0.1)

    def test_distance_is_rounded(self) -> None:
        d = distance_km(_pt(0, 0), _pt(0, 1))
        assert d == round(d, 2)
        assert d == pytest.approx(111.19, abs=0.01)

    def test_radius_to_radians(self) -> None:
        assert radius_to_radians(6371.0) == pytest.approx(1.0)


class TestRegion:
    def test_abidjan_inside(self) -> None:
        assert in_region(_pt(-4.0, 5.3), RegionConfig())

    def test_paris_outside(self) -> None:
        assert not in_region(_pt(2.35, 48.85), RegionConfig())

    def test_bounds_inclusive(self) -> None:
        assert in_region(_pt(-8.6, 4.3), RegionConfig())
        assert in_region(_pt(-2.5, 10.7), RegionConfig())
