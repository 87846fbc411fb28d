"""Engine configuration for pytrip."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pytrip.exceptions import TripConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_optional_int(value: str) -> int | None:
    normalized = value.strip().lower()
    if normalized in {"", "none", "unbounded", "0"}:
        return None
    return int(normalized)


@dataclasses.dataclass(frozen=True)
class TripConfig:
    """Engine configuration.

    Parameters
    ----------
    base_url : str
        Base URL of the fuel/distance-accounting service.
    auth_token : str or None
        Bearer token sent with every request to that service.
    remote_fuel_enabled : bool
        Use the remote service for fuel computations. When disabled the
        local linear model is used directly.
    request_timeout_s : float
        Upper bound for every awaited network call (sync, fuel, reroute,
        geocoding).
    location_timeout_s : float
        Upper bound for obtaining the starting position from a position
        provider.
    sample_noise_floor_m : float
        Samples closer than this to the last accepted sample are ignored.
    deviation_base_threshold_m : float
        Off-route tolerance at standstill.
    deviation_speed_reference_kmh : float
        Speed at which the tolerance reaches its maximum scale.
    deviation_max_scale : float
        Cap on the speed scaling of the tolerance.
    deviation_required_detections : int
        Consecutive off-route samples needed before reporting a deviation.
    reroute_cooldown_s : float
        Minimum time between two reroute requests.
    max_reroutes_per_trip : int or None
        Optional cap on reroute requests per trip. ``None`` is unbounded.
    proximity_tiers_m : tuple of float
        One-shot approach notification distances.
    arrival_threshold_m : float
        Distance at which the trip completes automatically.
    fuel_update_min_distance_km : float
        Incremental distance that must be exceeded before fuel is updated.
    low_fuel_percent : float
        Low-fuel threshold.
    critical_fuel_percent : float
        Critical-fuel threshold.
    sync_interval_s : float
        Distance sync tick interval.
    sync_max_attempts : int
        Total attempts per sync for retryable errors.
    sync_retry_base_delay_s : float
        First backoff delay; doubled on each further attempt.
    max_recovery_age_s : float
        Persisted trips older than this are not offered for recovery.
    history_limit : int
        Number of finished trips kept in the local history.
    path_limit : int
        Number of accepted positions kept on the active trip.
    store_path : str or None
        Directory for :class:`~pytrip.state.store.JsonFileTripStore`.
    """

    base_url: str = "http://localhost:3000"
    auth_token: str | None = None
    remote_fuel_enabled: bool = True
    request_timeout_s: float = 10.0
    location_timeout_s: float = 15.0
    sample_noise_floor_m: float = 5.0
    deviation_base_threshold_m: float = 30.0
    deviation_speed_reference_kmh: float = 60.0
    deviation_max_scale: float = 2.0
    deviation_required_detections: int = 2
    reroute_cooldown_s: float = 5.0
    max_reroutes_per_trip: int | None = None
    proximity_tiers_m: tuple[float, ...] = (500.0, 200.0, 50.0)
    arrival_threshold_m: float = 30.0
    fuel_update_min_distance_km: float = 0.01
    low_fuel_percent: float = 20.0
    critical_fuel_percent: float = 10.0
    sync_interval_s: float = 5.0
    sync_max_attempts: int = 3
    sync_retry_base_delay_s: float = 1.0
    max_recovery_age_s: float = 24 * 3600
    history_limit: int = 10
    path_limit: int = 1000
    store_path: str | None = None

    def validate(self) -> TripConfig:
        """Raise :class:`TripConfigError` if values are inconsistent."""
        if self.deviation_required_detections < 1:
            raise TripConfigError("deviation_required_detections must be >= 1")
        if self.deviation_max_scale < 1:
            raise TripConfigError("deviation_max_scale must be >= 1")
        if self.sync_max_attempts < 1:
            raise TripConfigError("sync_max_attempts must be >= 1")
        if self.sync_interval_s <= 0:
            raise TripConfigError("sync_interval_s must be positive")
        if self.request_timeout_s <= 0:
            raise TripConfigError("request_timeout_s must be positive")
        if any(tier <= self.arrival_threshold_m for tier in self.proximity_tiers_m):
            raise TripConfigError("proximity tiers must all be larger than arrival_threshold_m")
        if not 0 <= self.critical_fuel_percent <= self.low_fuel_percent <= 100:
            raise TripConfigError("expected 0 <= critical_fuel_percent <= low_fuel_percent <= 100")
        if self.max_reroutes_per_trip is not None and self.max_reroutes_per_trip < 0:
            raise TripConfigError("max_reroutes_per_trip must be None or >= 0")
        return self

    @classmethod
    def from_env(cls, **overrides: Any) -> TripConfig:
        """Create configuration from ``PYTRIP_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "PYTRIP_BASE_URL": "base_url",
            "PYTRIP_AUTH_TOKEN": "auth_token",
            "PYTRIP_STORE_PATH": "store_path",
        }
        _ENV_FLOAT_MAP = {
            "PYTRIP_REQUEST_TIMEOUT": "request_timeout_s",
            "PYTRIP_LOCATION_TIMEOUT": "location_timeout_s",
            "PYTRIP_NOISE_FLOOR_M": "sample_noise_floor_m",
            "PYTRIP_REROUTE_COOLDOWN": "reroute_cooldown_s",
            "PYTRIP_SYNC_INTERVAL": "sync_interval_s",
            "PYTRIP_SYNC_RETRY_DELAY": "sync_retry_base_delay_s",
            "PYTRIP_MAX_RECOVERY_AGE": "max_recovery_age_s",
        }
        _ENV_INT_MAP = {
            "PYTRIP_SYNC_MAX_ATTEMPTS": "sync_max_attempts",
            "PYTRIP_HISTORY_LIMIT": "history_limit",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = val
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = float(val)
        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = int(val)

        max_reroutes_env = env.get("PYTRIP_MAX_REROUTES")
        if max_reroutes_env is not None and "max_reroutes_per_trip" not in overrides:
            config_kwargs["max_reroutes_per_trip"] = _env_optional_int(max_reroutes_env)

        if "remote_fuel_enabled" not in overrides:
            config_kwargs["remote_fuel_enabled"] = _env_bool(env.get("PYTRIP_REMOTE_FUEL_ENABLED"), True)

        config_kwargs.update(overrides)

        try:
            return cls(**config_kwargs).validate()
        except TypeError as exc:
            raise TripConfigError(str(exc)) from exc
