from __future__ import annotations

import math
import random

import pytest

from pytrip import geo
from pytrip.exceptions import InvalidCoordinate
from pytrip.models import LocationCoords

_BASE_LAT = 14.5995
_BASE_LON = 120.9842
_M_PER_DEG = 6_371_000.0 * math.pi / 180.0


def _at(north_m: float = 0.0, east_m: float = 0.0) -> LocationCoords:
    return LocationCoords(
        latitude=_BASE_LAT + north_m / _M_PER_DEG,
        longitude=_BASE_LON + east_m / (_M_PER_DEG * math.cos(math.radians(_BASE_LAT))),
    )


def test_distance_zero_for_same_point() -> None:
    assert geo.distance(_at(), _at()) == 0.0


def test_distance_one_degree_of_latitude() -> None:
    a = LocationCoords(latitude=0.0, longitude=0.0)
    b = LocationCoords(latitude=1.0, longitude=0.0)
    assert geo.distance(a, b) == pytest.approx(_M_PER_DEG, rel=1e-9)


def test_distance_north_offset_matches_meters() -> None:
    assert geo.distance(_at(), _at(north_m=600)) == pytest.approx(600.0, abs=0.01)


@pytest.mark.parametrize(
    ("lat", "lon"),
    [(float("nan"), 0.0), (0.0, float("inf")), (90.5, 0.0), (0.0, -180.1)],
)
def test_invalid_coordinates_are_rejected(lat: float, lon: float) -> None:
    bad = LocationCoords.model_construct(latitude=lat, longitude=lon)
    with pytest.raises(InvalidCoordinate):
        geo.distance(bad, _at())
    with pytest.raises(ValueError):
        geo.validate_coordinates(lat, lon)


def test_distance_to_polyline_empty_is_infinite() -> None:
    assert geo.distance_to_polyline(_at(), []) == math.inf


def test_distance_to_polyline_single_vertex_is_point_distance() -> None:
    assert geo.distance_to_polyline(_at(), [_at(north_m=250)]) == pytest.approx(250.0, abs=0.01)


def test_distance_to_polyline_uses_cross_track_inside_segment() -> None:
    route = [_at(), _at(north_m=1000)]
    assert geo.distance_to_polyline(_at(north_m=500, east_m=40), route) == pytest.approx(40.0, abs=0.1)


def test_distance_to_polyline_before_start_and_after_end_use_endpoints() -> None:
    route = [_at(), _at(north_m=1000)]
    assert geo.distance_to_polyline(_at(north_m=-300), route) == pytest.approx(300.0, abs=0.01)
    assert geo.distance_to_polyline(_at(north_m=1200), route) == pytest.approx(200.0, abs=0.01)


def test_distance_to_polyline_takes_minimum_over_segments() -> None:
    route = [_at(), _at(north_m=1000), _at(north_m=1000, east_m=1000)]
    assert geo.distance_to_polyline(_at(north_m=1030, east_m=500), route) == pytest.approx(30.0, abs=0.1)


def test_distance_to_polyline_never_exceeds_nearest_endpoint() -> None:
    route = [_at(), _at(north_m=800, east_m=300), _at(north_m=1500, east_m=-200)]
    for north in range(-500, 2001, 250):
        for east in range(-600, 601, 200):
            point = _at(north_m=north, east_m=east)
            nearest_endpoint = min(geo.distance(point, route[0]), geo.distance(point, route[-1]))
            assert geo.distance_to_polyline(point, route) <= nearest_endpoint + 1e-3


def test_path_length_sums_segments() -> None:
    points = [_at(), _at(north_m=300), _at(north_m=300, east_m=400)]
    assert geo.path_length(points) == pytest.approx(700.0, abs=0.05)
    assert geo.path_length(points[:1]) == 0.0


@pytest.mark.parametrize("span_deg", [0.05, 1.0, 20.0, 180.0])
def test_distance_to_long_segment_never_exceeds_nearest_endpoint(span_deg: float) -> None:
    rng = random.Random(7)

    def _random_point(lat: float, lon: float, span: float) -> LocationCoords:
        return LocationCoords(
            latitude=max(-90.0, min(90.0, lat + rng.uniform(-span, span))),
            longitude=max(-180.0, min(180.0, lon + rng.uniform(-span, span))),
        )

    for _ in range(300):
        start = _random_point(0.0, 0.0, 60.0)
        end = _random_point(start.latitude, start.longitude, span_deg)
        point = _random_point(start.latitude, start.longitude, 2 * span_deg)
        nearest_endpoint = min(geo.distance(point, start), geo.distance(point, end))
        assert geo.distance_to_polyline(point, [start, end]) <= nearest_endpoint + 1e-6


def test_cross_track_on_highway_length_segment() -> None:
    start = LocationCoords(latitude=0.0, longitude=0.0)
    end = LocationCoords(latitude=0.0, longitude=2.0)
    point = LocationCoords(latitude=0.5, longitude=1.0)
    assert geo.distance_to_polyline(point, [start, end]) == pytest.approx(0.5 * _M_PER_DEG, rel=1e-6)
