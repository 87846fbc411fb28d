"""Trip record, detector state and trip summary models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import Field, field_validator

from pytrip.models._base import MutableTripModel, TripBaseModel
from pytrip.models.location import LocationCoords, LocationSample
from pytrip.models.motor import Motor


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_trip_id() -> str:
    return f"trip_{uuid.uuid4().hex}"


class TripStatus(StrEnum):
    PLANNING = "planning"
    TRACKING = "tracking"
    SUMMARY = "summary"


class TripOutcome(StrEnum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class RerouteRecord(TripBaseModel):
    timestamp_ms: int
    reason: str


class DeviationState(MutableTripModel):
    """Off-route debounce counter and reroute gating state.

    Owned by the lifecycle and handed to the detector/policy explicitly.
    """

    consecutive_off_route_count: int = 0
    last_reroute_timestamp_ms: int | None = None
    is_reroute_in_flight: bool = False

    def reset(self) -> None:
        self.consecutive_off_route_count = 0
        self.last_reroute_timestamp_ms = None
        self.is_reroute_in_flight = False


class ProximityLatches(MutableTripModel):
    """One-shot flags for the approach notification tiers."""

    crossed_tiers_m: list[float] = Field(default_factory=list)

    def has_crossed(self, tier_m: float) -> bool:
        return tier_m in self.crossed_tiers_m

    def latch(self, tier_m: float) -> None:
        if tier_m not in self.crossed_tiers_m:
            self.crossed_tiers_m.append(tier_m)

    def reset(self) -> None:
        self.crossed_tiers_m.clear()


class Trip(MutableTripModel):
    """The single active trip record.

    Only :class:`~pytrip.lifecycle.TripLifecycle` mutates it. The record
    carries everything needed to resume tracking after a process restart.
    """

    id: str = Field(default_factory=_new_trip_id)
    vehicle_id: str
    status: TripStatus = TripStatus.PLANNING
    start_time: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    origin: LocationCoords
    destination: LocationCoords | None = None
    route: list[LocationCoords] = Field(default_factory=list)
    cumulative_distance_km: float = 0.0
    last_synced_distance_km: float = 0.0
    fuel_processed_distance_km: float = 0.0
    reroute_count: int = 0
    reroute_history: list[RerouteRecord] = Field(default_factory=list)
    has_arrived: bool = False
    start_fuel_level_percent: float = 0.0
    motor: Motor
    last_sample: LocationSample | None = None
    path: list[LocationCoords] = Field(default_factory=list)
    deviation: DeviationState = Field(default_factory=DeviationState)
    proximity: ProximityLatches = Field(default_factory=ProximityLatches)
    start_address: str | None = None

    @field_validator("start_time", "updated_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def is_free_roam(self) -> bool:
        return self.destination is None

    @property
    def unsynced_distance_km(self) -> float:
        return max(0.0, self.cumulative_distance_km - self.last_synced_distance_km)


class TripSummary(TripBaseModel):
    """Figures shown on the post-trip summary and stored in history."""

    trip_id: str
    vehicle_id: str
    start_time: datetime
    end_time: datetime
    duration_seconds: float
    distance_km: float
    average_speed_kmh: float
    start_fuel_level_percent: float
    end_fuel_level_percent: float
    fuel_used_percent: float
    fuel_used_liters: float
    destination: LocationCoords | None = None
    has_arrived: bool = False
    time_arrived: datetime | None = None
    is_successful: bool
    status: TripOutcome
    reroute_count: int = 0
    was_rerouted: bool = False
    start_address: str | None = None
    end_address: str | None = None
    path: tuple[LocationCoords, ...] = ()
    partial: bool = False
