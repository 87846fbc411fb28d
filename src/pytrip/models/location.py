"""Position models."""

from __future__ import annotations

from typing import TypeAlias

from pydantic import AliasChoices, Field, field_validator

from pytrip.models._base import TripBaseModel


class LocationCoords(TripBaseModel):
    """A WGS84 position in degrees.

    Values are not range-checked on parse; :mod:`pytrip.geo` rejects
    invalid ones with :class:`~pytrip.exceptions.InvalidCoordinate`.
    """

    latitude: float = Field(validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(validation_alias=AliasChoices("longitude", "lng", "lon"))

    @property
    def is_valid(self) -> bool:
        return -90.0 <= self.latitude <= 90.0 and -180.0 <= self.longitude <= 180.0


class LocationSample(LocationCoords):
    """A timestamped position from the location stream.

    Parameters
    ----------
    timestamp_ms : int
        Epoch milliseconds at which the fix was taken.
    speed_kmh : float or None
        Device-reported speed. ``None`` when the device did not report one;
        the lifecycle then derives speed from consecutive samples.
    """

    timestamp_ms: int = Field(validation_alias=AliasChoices("timestampMs", "timestamp_ms", "timestamp"))
    speed_kmh: float | None = Field(default=None, validation_alias=AliasChoices("speedKmh", "speed_kmh"))

    @field_validator("speed_kmh")
    @classmethod
    def _non_negative_speed(cls, value: float | None) -> float | None:
        if value is None:
            return None
        return max(0.0, value)

    @property
    def coords(self) -> LocationCoords:
        return LocationCoords(latitude=self.latitude, longitude=self.longitude)


RoutePolyline: TypeAlias = tuple[LocationCoords, ...]
"""Ordered route geometry. Replaced wholesale on reroute, never edited."""
