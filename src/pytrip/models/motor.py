"""Motor (vehicle fuel profile) model."""

from __future__ import annotations

from pydantic import AliasChoices, Field, field_validator

from pytrip.models._base import TripBaseModel


class Motor(TripBaseModel):
    """Read snapshot of a vehicle's fuel profile.

    The vehicle-profile subsystem owns this record. The engine only ever
    proposes a new ``current_fuel_level_percent`` through
    :meth:`with_fuel_level`.
    """

    vehicle_id: str = Field(validation_alias=AliasChoices("vehicleId", "vehicle_id", "_id", "userMotorId"))
    nickname: str | None = None
    fuel_tank_capacity_liters: float = Field(
        default=0.0,
        validation_alias=AliasChoices("fuelTankCapacityLiters", "fuel_tank_capacity_liters", "fuelTank"),
    )
    fuel_efficiency_km_per_liter: float = Field(
        default=0.0,
        validation_alias=AliasChoices(
            "fuelEfficiencyKmPerLiter",
            "fuel_efficiency_km_per_liter",
            "fuelEfficiency",
            "fuelConsumption",
        ),
    )
    current_fuel_level_percent: float = Field(
        default=0.0,
        validation_alias=AliasChoices("currentFuelLevelPercent", "current_fuel_level_percent", "currentFuelLevel"),
    )

    @field_validator("vehicle_id")
    @classmethod
    def _normalize_vehicle_id(cls, value: str) -> str:
        vehicle_id = value.strip()
        if not vehicle_id:
            raise ValueError("vehicle_id must be non-empty")
        return vehicle_id

    @field_validator("fuel_tank_capacity_liters", "fuel_efficiency_km_per_liter")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        return max(0.0, value)

    @field_validator("current_fuel_level_percent")
    @classmethod
    def _clamp_level(cls, value: float) -> float:
        return max(0.0, min(100.0, value))

    def with_fuel_level(self, level_percent: float) -> Motor:
        """Return a copy carrying a proposed fuel level (clamped to [0, 100])."""
        return self.model_copy(update={"current_fuel_level_percent": max(0.0, min(100.0, level_percent))})
