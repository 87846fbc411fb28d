"""Fuel arithmetic.

The linear model here is the reference the accounting service also
implements. The async helpers prefer the service and fall back to the
local computation on any failure, so a dead network never stalls the
tracking loop for longer than one request timeout.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Protocol

from pytrip.models.motor import Motor

_logger = logging.getLogger(__name__)

LOW_FUEL_PERCENT = 20.0
CRITICAL_FUEL_PERCENT = 10.0


class FuelCalculator(Protocol):
    """Remote fuel computation (see :class:`pytrip._api.fuel.HttpFuelAccountingClient`)."""

    async def calculate_after_distance(self, motor: Motor, distance_km: float) -> float: ...

    async def calculate_after_refuel(self, motor: Motor, liters: float) -> float: ...


def _clamp_percent(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(100.0, value))


def _has_profile(motor: Motor) -> bool:
    return motor.fuel_tank_capacity_liters > 0 and motor.fuel_efficiency_km_per_liter > 0


def is_valid_fuel_level(level_percent: float) -> bool:
    return math.isfinite(level_percent) and 0.0 <= level_percent <= 100.0


def drivable_distance_km(motor: Motor) -> float:
    """Distance coverable on the current fuel level; 0 without a usable profile."""
    if not _has_profile(motor):
        return 0.0
    return motor.current_fuel_level_percent / 100.0 * motor.fuel_tank_capacity_liters * motor.fuel_efficiency_km_per_liter


def can_reach(motor: Motor, distance_km: float) -> bool:
    return drivable_distance_km(motor) >= max(0.0, distance_km)


def fuel_used_percent(motor: Motor, distance_km: float) -> float:
    if not _has_profile(motor) or distance_km <= 0:
        return 0.0
    return distance_km / motor.fuel_efficiency_km_per_liter / motor.fuel_tank_capacity_liters * 100.0


def fuel_used_liters(motor: Motor, used_percent: float) -> float:
    return max(0.0, used_percent) / 100.0 * motor.fuel_tank_capacity_liters


def local_fuel_after_distance(motor: Motor, distance_km: float) -> float:
    """New level after driving *distance_km*, clamped to [0, 100]."""
    if not _has_profile(motor):
        return _clamp_percent(motor.current_fuel_level_percent)
    return _clamp_percent(motor.current_fuel_level_percent - fuel_used_percent(motor, distance_km))


def local_fuel_after_refuel(motor: Motor, liters: float) -> float:
    """New level after adding *liters*, clamped to [0, 100]."""
    if motor.fuel_tank_capacity_liters <= 0 or liters <= 0:
        return _clamp_percent(motor.current_fuel_level_percent)
    return _clamp_percent(motor.current_fuel_level_percent + liters / motor.fuel_tank_capacity_liters * 100.0)


def is_low_fuel(level_percent: float, threshold: float = LOW_FUEL_PERCENT) -> bool:
    return level_percent <= threshold


def is_critical_fuel(level_percent: float, threshold: float = CRITICAL_FUEL_PERCENT) -> bool:
    return level_percent <= threshold


async def fuel_after_distance(
    motor: Motor,
    distance_km: float,
    calculator: FuelCalculator | None = None,
    *,
    timeout_s: float = 10.0,
) -> float:
    """Fuel level after *distance_km*, remote-authoritative with local fallback."""
    if distance_km <= 0:
        return _clamp_percent(motor.current_fuel_level_percent)
    if calculator is not None:
        try:
            level = await asyncio.wait_for(calculator.calculate_after_distance(motor, distance_km), timeout=timeout_s)
        except Exception:
            _logger.warning(
                "Remote fuel calculation failed for %s; using local model",
                motor.vehicle_id,
                exc_info=True,
            )
        else:
            if math.isfinite(level):
                return _clamp_percent(level)
            _logger.warning("Remote fuel service returned %r for %s; using local model", level, motor.vehicle_id)
    return local_fuel_after_distance(motor, distance_km)


async def fuel_after_refuel(
    motor: Motor,
    liters: float,
    calculator: FuelCalculator | None = None,
    *,
    timeout_s: float = 10.0,
) -> float:
    """Fuel level after refuelling *liters*, remote-authoritative with local fallback."""
    if calculator is not None:
        try:
            level = await asyncio.wait_for(calculator.calculate_after_refuel(motor, liters), timeout=timeout_s)
        except Exception:
            _logger.warning(
                "Remote refuel calculation failed for %s; using local model",
                motor.vehicle_id,
                exc_info=True,
            )
        else:
            if math.isfinite(level):
                return _clamp_percent(level)
            _logger.warning("Remote fuel service returned %r for %s; using local model", level, motor.vehicle_id)
    return local_fuel_after_refuel(motor, liters)
