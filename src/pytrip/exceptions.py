"""Custom exception hierarchy for pytrip."""

from __future__ import annotations

from enum import StrEnum


class TripError(Exception):
    """Base exception for all pytrip errors."""


class TripConfigError(TripError):
    """Invalid or missing configuration."""


class InvalidCoordinate(TripError, ValueError):
    """Latitude/longitude is NaN, infinite or outside its valid range."""

    def __init__(self, message: str, *, latitude: float | None = None, longitude: float | None = None) -> None:
        self.latitude = latitude
        self.longitude = longitude
        super().__init__(message)


class LocationFailureReason(StrEnum):
    PERMISSION_DENIED = "permission_denied"
    GPS_DISABLED = "gps_disabled"
    TIMEOUT = "timeout"
    WEAK_SIGNAL = "weak_signal"
    INVALID_COORDINATES = "invalid_coordinates"


_LOCATION_GUIDANCE: dict[LocationFailureReason, str] = {
    LocationFailureReason.PERMISSION_DENIED: "Allow location access for this app in the system settings.",
    LocationFailureReason.GPS_DISABLED: "Turn on location services (GPS) and try again.",
    LocationFailureReason.TIMEOUT: "Could not get a position fix in time. Move to an open area and retry.",
    LocationFailureReason.WEAK_SIGNAL: "GPS signal is weak. Wait a moment for a better fix.",
    LocationFailureReason.INVALID_COORDINATES: "The device reported an invalid position. Please retry.",
}


class LocationUnavailable(TripError):
    """No usable current position.

    The ``reason`` tells the presentation layer which guidance to show;
    :attr:`guidance` carries a default human-readable hint.
    """

    def __init__(self, message: str, *, reason: LocationFailureReason) -> None:
        self.reason = reason
        super().__init__(message)

    @property
    def guidance(self) -> str:
        return _LOCATION_GUIDANCE[self.reason]


class RouteUnavailable(TripError):
    """The routing service could not supply a route."""


class SyncError(TripError):
    """Failure talking to the fuel/distance-accounting service."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class SyncTransient(SyncError):
    """Retryable failure (network error, timeout, HTTP 5xx)."""


class SyncPermanent(SyncError):
    """Non-retryable failure (HTTP 4xx such as 400/404, malformed payload)."""


class StateTransitionInvalid(TripError):
    """A lifecycle action was attempted from the wrong state.

    This is a programming error on the caller's side; it is raised loudly
    and never triggers the emergency cleanup path.
    """

    def __init__(self, message: str, *, current: str = "", action: str = "") -> None:
        self.current = current
        self.action = action
        super().__init__(message)
