"""Fuel/distance-accounting endpoints.

Endpoints:
  - /api/trip/update-distance (authoritative distance sync)
  - /api/fuel/calculate (fuel level after a distance)
  - /api/fuel/calculate-after-refuel (fuel level after refuelling)

:class:`LocalFuelAccounting` answers the same three questions in-process
with the linear model from :mod:`pytrip.fuel`; it backs offline use and
tests.
"""

from __future__ import annotations

import logging
from typing import Any

import aiohttp
from pydantic import ValidationError

from pytrip import fuel
from pytrip._constants import (
    FUEL_CALCULATE_ENDPOINT,
    FUEL_REFUEL_ENDPOINT,
    SKIPPED_STATUS,
    UPDATE_DISTANCE_ENDPOINT,
)
from pytrip._transport import JsonTransport, Transport
from pytrip.config import TripConfig
from pytrip.exceptions import SyncPermanent
from pytrip.models.motor import Motor
from pytrip.models.sync import DistanceUpdateRequest, DistanceUpdateResponse, FuelCalculationResponse

_logger = logging.getLogger(__name__)

#: Deltas below this are reported back as skipped, like the service does.
_MIN_SYNC_DELTA_KM = 0.001


def _motor_data(motor: Motor) -> dict[str, float]:
    return {
        "fuelEfficiency": motor.fuel_efficiency_km_per_liter,
        "fuelTank": motor.fuel_tank_capacity_liters,
        "currentLevel": motor.current_fuel_level_percent,
    }


def build_update_distance_body(request: DistanceUpdateRequest) -> dict[str, Any]:
    """Map the request model onto the service's field names."""
    return {
        "userMotorId": request.vehicle_id,
        "totalDistanceTraveled": request.cumulative_distance_km,
        "lastPostedDistance": request.last_synced_distance_km,
    }


def parse_update_distance_response(endpoint: str, body: dict[str, Any]) -> DistanceUpdateResponse | None:
    """Validate an update-distance reply; ``None`` for a skipped update."""
    if body.get("status") == SKIPPED_STATUS:
        _logger.debug("Distance update skipped: %s", body.get("reason") or "distance too small")
        return None
    if not body.get("success"):
        raise SyncPermanent(
            str(body.get("reason") or body.get("message") or "Service returned an unsuccessful response"),
            endpoint=endpoint,
        )
    try:
        return DistanceUpdateResponse.model_validate(body)
    except ValidationError as exc:
        raise SyncPermanent(f"Malformed response from {endpoint}: {exc}", endpoint=endpoint) from exc


def _parse_fuel_calculation(endpoint: str, body: dict[str, Any]) -> float:
    try:
        return FuelCalculationResponse.model_validate(body).new_fuel_level
    except ValidationError as exc:
        raise SyncPermanent(f"Malformed response from {endpoint}: {exc}", endpoint=endpoint) from exc


class HttpFuelAccountingClient:
    """Async client for the accounting service.

    Usage::

        async with HttpFuelAccountingClient(config) as client:
            response = await client.update_distance(request)
    """

    def __init__(
        self,
        config: TripConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._transport: Transport | None = transport

    async def __aenter__(self) -> HttpFuelAccountingClient:
        if self._transport is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = JsonTransport(self._config, self._http_session)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
            self._transport = None

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise RuntimeError("HttpFuelAccountingClient must be used as an async context manager")
        return self._transport

    async def update_distance(self, request: DistanceUpdateRequest) -> DistanceUpdateResponse | None:
        body = await self._require_transport().post_json(UPDATE_DISTANCE_ENDPOINT, build_update_distance_body(request))
        return parse_update_distance_response(UPDATE_DISTANCE_ENDPOINT, body)

    async def calculate_after_distance(self, motor: Motor, distance_km: float) -> float:
        payload = {"motorData": _motor_data(motor), "distanceTraveled": distance_km}
        body = await self._require_transport().post_json(FUEL_CALCULATE_ENDPOINT, payload)
        return _parse_fuel_calculation(FUEL_CALCULATE_ENDPOINT, body)

    async def calculate_after_refuel(self, motor: Motor, liters: float, cost: float = 0.0) -> float:
        payload = {"motorData": _motor_data(motor), "refuelAmount": liters, "refuelCost": cost}
        body = await self._require_transport().post_json(FUEL_REFUEL_ENDPOINT, payload)
        return _parse_fuel_calculation(FUEL_REFUEL_ENDPOINT, body)


class LocalFuelAccounting:
    """In-process accounting with the same semantics as the service.

    Motors must be registered before their distance can be synced; the
    registry level is updated on every accepted sync.
    """

    def __init__(self, motors: list[Motor] | None = None, *, low_fuel_percent: float = fuel.LOW_FUEL_PERCENT) -> None:
        self._motors: dict[str, Motor] = {m.vehicle_id: m for m in motors or []}
        self._low_fuel_percent = low_fuel_percent

    def register(self, motor: Motor) -> None:
        self._motors[motor.vehicle_id] = motor

    def motor(self, vehicle_id: str) -> Motor | None:
        return self._motors.get(vehicle_id)

    async def update_distance(self, request: DistanceUpdateRequest) -> DistanceUpdateResponse | None:
        motor = self._motors.get(request.vehicle_id)
        if motor is None:
            raise SyncPermanent(f"Unknown motor {request.vehicle_id}", status_code=404, endpoint=UPDATE_DISTANCE_ENDPOINT)
        if request.cumulative_distance_km < request.last_synced_distance_km:
            raise SyncPermanent(
                "cumulative distance must be >= last synced distance",
                status_code=400,
                endpoint=UPDATE_DISTANCE_ENDPOINT,
            )

        delta_km = request.cumulative_distance_km - request.last_synced_distance_km
        if delta_km < _MIN_SYNC_DELTA_KM:
            return None

        used_percent = fuel.fuel_used_percent(motor, delta_km)
        new_level = fuel.local_fuel_after_distance(motor, delta_km)
        updated = motor.with_fuel_level(new_level)
        self._motors[motor.vehicle_id] = updated
        return DistanceUpdateResponse(
            actual_distance_traveled=delta_km,
            fuel_used_percent=used_percent,
            fuel_used_liters=fuel.fuel_used_liters(motor, used_percent),
            new_fuel_level_percent=new_level,
            low_fuel_warning=fuel.is_low_fuel(new_level, self._low_fuel_percent),
            drivable_distance_km=fuel.drivable_distance_km(updated),
        )

    async def calculate_after_distance(self, motor: Motor, distance_km: float) -> float:
        return fuel.local_fuel_after_distance(motor, distance_km)

    async def calculate_after_refuel(self, motor: Motor, liters: float) -> float:
        return fuel.local_fuel_after_refuel(motor, liters)
