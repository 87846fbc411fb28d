"""Wire models for the fuel/distance-accounting service."""

from __future__ import annotations

from pydantic import AliasChoices, Field, field_validator

from pytrip._constants import SKIPPED_STATUS
from pytrip.models._base import TripBaseModel


class DistanceUpdateRequest(TripBaseModel):
    """Body of ``POST /api/trip/update-distance``."""

    vehicle_id: str
    cumulative_distance_km: float
    last_synced_distance_km: float

    @field_validator("cumulative_distance_km", "last_synced_distance_km")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("distances must be non-negative")
        return value


class DistanceUpdateResponse(TripBaseModel):
    """Authoritative result of a distance update.

    A response carrying ``status == "skipped"`` means the service judged
    the delta too small and changed nothing; see :attr:`is_skipped`.
    """

    actual_distance_traveled: float = Field(
        default=0.0,
        validation_alias=AliasChoices("actualDistanceTraveled", "actual_distance_traveled"),
    )
    fuel_used_percent: float = Field(
        default=0.0,
        validation_alias=AliasChoices("fuelUsedPercent", "fuel_used_percent"),
    )
    fuel_used_liters: float | None = Field(
        default=None,
        validation_alias=AliasChoices("fuelUsedLiters", "fuel_used_liters"),
    )
    new_fuel_level_percent: float | None = Field(
        default=None,
        validation_alias=AliasChoices("newFuelLevelPercent", "new_fuel_level_percent", "newFuelLevel"),
    )
    low_fuel_warning: bool = Field(
        default=False,
        validation_alias=AliasChoices("lowFuelWarning", "low_fuel_warning"),
    )
    drivable_distance_km: float | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "drivableDistanceKm",
            "drivable_distance_km",
            "totalDrivableDistanceWithCurrentGas",
        ),
    )
    status: str | None = None
    reason: str | None = None

    @field_validator("new_fuel_level_percent")
    @classmethod
    def _clamp_level(cls, value: float | None) -> float | None:
        if value is None:
            return None
        return max(0.0, min(100.0, value))

    @property
    def is_skipped(self) -> bool:
        return self.status == SKIPPED_STATUS


class FuelCalculationResponse(TripBaseModel):
    """Result of ``/api/fuel/calculate`` and ``/api/fuel/calculate-after-refuel``."""

    new_fuel_level: float = Field(
        validation_alias=AliasChoices("newFuelLevel", "new_fuel_level", "newFuelLevelPercent"),
    )
    recommendations: list[str] = Field(default_factory=list)
