"""Data models for trips, positions, motors and service payloads."""

from pytrip.models._base import MutableTripModel, TripBaseModel
from pytrip.models.location import LocationCoords, LocationSample, RoutePolyline
from pytrip.models.motor import Motor
from pytrip.models.sync import DistanceUpdateRequest, DistanceUpdateResponse, FuelCalculationResponse
from pytrip.models.trip import (
    DeviationState,
    ProximityLatches,
    RerouteRecord,
    Trip,
    TripOutcome,
    TripStatus,
    TripSummary,
)

__all__ = [
    "DeviationState",
    "DistanceUpdateRequest",
    "DistanceUpdateResponse",
    "FuelCalculationResponse",
    "LocationCoords",
    "LocationSample",
    "Motor",
    "MutableTripModel",
    "ProximityLatches",
    "RerouteRecord",
    "RoutePolyline",
    "Trip",
    "TripBaseModel",
    "TripOutcome",
    "TripStatus",
    "TripSummary",
]
