"""pytrip - Async trip-tracking decision engine."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pytrip")
except PackageNotFoundError:
    __version__ = "0+local"
from pytrip._api.fuel import HttpFuelAccountingClient, LocalFuelAccounting
from pytrip.config import TripConfig
from pytrip.detection import ArrivalDetector, DeviationDetector, ReroutePolicy
from pytrip.exceptions import (
    InvalidCoordinate,
    LocationFailureReason,
    LocationUnavailable,
    RouteUnavailable,
    StateTransitionInvalid,
    SyncError,
    SyncPermanent,
    SyncTransient,
    TripConfigError,
    TripError,
)
from pytrip.lifecycle import TripLifecycle
from pytrip.models import (
    DeviationState,
    DistanceUpdateRequest,
    DistanceUpdateResponse,
    LocationCoords,
    LocationSample,
    Motor,
    ProximityLatches,
    RerouteRecord,
    Trip,
    TripOutcome,
    TripStatus,
    TripSummary,
)
from pytrip.state.events import EventBus, TripEvent, TripEventType
from pytrip.state.store import JsonFileTripStore, MemoryTripStore, TripStore
from pytrip.sync import DistanceSyncScheduler

__all__ = [
    "__version__",
    "ArrivalDetector",
    "DeviationDetector",
    "DeviationState",
    "DistanceSyncScheduler",
    "DistanceUpdateRequest",
    "DistanceUpdateResponse",
    "EventBus",
    "HttpFuelAccountingClient",
    "InvalidCoordinate",
    "JsonFileTripStore",
    "LocalFuelAccounting",
    "LocationCoords",
    "LocationFailureReason",
    "LocationSample",
    "LocationUnavailable",
    "MemoryTripStore",
    "Motor",
    "ProximityLatches",
    "RerouteRecord",
    "ReroutePolicy",
    "RouteUnavailable",
    "StateTransitionInvalid",
    "SyncError",
    "SyncPermanent",
    "SyncTransient",
    "Trip",
    "TripConfig",
    "TripConfigError",
    "TripError",
    "TripEvent",
    "TripEventType",
    "TripLifecycle",
    "TripOutcome",
    "TripStatus",
    "TripStore",
    "TripSummary",
]
