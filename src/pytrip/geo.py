"""Great-circle geometry on WGS84 degrees.

Every function accepts any object exposing ``latitude`` and ``longitude``
attributes (``LocationCoords``, ``LocationSample`` or a test double).
Distances are in metres.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Protocol

from pytrip._constants import EARTH_RADIUS_M
from pytrip.exceptions import InvalidCoordinate


class HasCoordinates(Protocol):
    @property
    def latitude(self) -> float: ...

    @property
    def longitude(self) -> float: ...


def validate_coordinates(latitude: float, longitude: float) -> None:
    """Raise :class:`InvalidCoordinate` unless both values are finite and in range."""
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        raise InvalidCoordinate(
            f"Non-finite coordinate ({latitude}, {longitude})",
            latitude=latitude,
            longitude=longitude,
        )
    if not -90.0 <= latitude <= 90.0:
        raise InvalidCoordinate(f"Latitude {latitude} outside [-90, 90]", latitude=latitude, longitude=longitude)
    if not -180.0 <= longitude <= 180.0:
        raise InvalidCoordinate(f"Longitude {longitude} outside [-180, 180]", latitude=latitude, longitude=longitude)


def _radians(point: HasCoordinates) -> tuple[float, float]:
    validate_coordinates(point.latitude, point.longitude)
    return math.radians(point.latitude), math.radians(point.longitude)


def distance(a: HasCoordinates, b: HasCoordinates) -> float:
    """Haversine distance between two positions."""
    lat1, lon1 = _radians(a)
    lat2, lon2 = _radians(b)
    d_lat = lat2 - lat1
    d_lon = lon2 - lon1
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    # Rounding can push h a hair above 1 for antipodal points.
    h = min(1.0, h)
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def initial_bearing(a: HasCoordinates, b: HasCoordinates) -> float:
    """Initial great-circle bearing from *a* to *b*, radians."""
    lat1, lon1 = _radians(a)
    lat2, lon2 = _radians(b)
    d_lon = lon2 - lon1
    y = math.sin(d_lon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(d_lon)
    return math.atan2(y, x)


def _distance_to_segment(point: HasCoordinates, start: HasCoordinates, end: HasCoordinates) -> float:
    to_point = distance(start, point)
    segment_length = distance(start, end)
    if segment_length == 0.0 or to_point == 0.0:
        return to_point

    # On long arcs the great-circle foot can lie farther than either endpoint.
    nearest_endpoint = min(to_point, distance(end, point))
    angle = initial_bearing(start, point) - initial_bearing(start, end)
    if math.cos(angle) < 0:
        return nearest_endpoint
    angular = to_point / EARTH_RADIUS_M
    cross_track = math.asin(_clamp_unit(math.sin(angular) * math.sin(angle)))
    along_track = EARTH_RADIUS_M * math.acos(_clamp_unit(math.cos(angular) / math.cos(cross_track)))
    if along_track > segment_length:
        return nearest_endpoint
    return min(abs(cross_track) * EARTH_RADIUS_M, nearest_endpoint)


def _clamp_unit(value: float) -> float:
    return max(-1.0, min(1.0, value))


def distance_to_polyline(point: HasCoordinates, polyline: Sequence[HasCoordinates]) -> float:
    """Shortest distance from *point* to *polyline*.

    Each segment is handled with a spherical along-track projection: inside
    the segment the cross-track distance is used, outside it the distance
    to the nearer endpoint. The result never exceeds the distance to either
    endpoint of any segment. An empty polyline yields ``math.inf``; a single
    vertex degenerates to point-to-point distance.
    """
    if not polyline:
        validate_coordinates(point.latitude, point.longitude)
        return math.inf
    if len(polyline) == 1:
        return distance(point, polyline[0])

    best = math.inf
    for start, end in zip(polyline, polyline[1:]):
        best = min(best, _distance_to_segment(point, start, end))
    return best


def path_length(points: Sequence[HasCoordinates]) -> float:
    """Sum of consecutive segment lengths."""
    return sum(distance(a, b) for a, b in zip(points, points[1:]))
