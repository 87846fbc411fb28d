"""Gate reroute requests behind an in-flight guard, a cooldown and an optional cap."""

from __future__ import annotations

import dataclasses
import logging
from enum import StrEnum

from pytrip.config import TripConfig
from pytrip.models.trip import DeviationState

_logger = logging.getLogger(__name__)


class RerouteRefusal(StrEnum):
    IN_FLIGHT = "in_flight"
    COOLDOWN = "cooldown"
    CAP_REACHED = "cap_reached"


@dataclasses.dataclass(frozen=True)
class RerouteDecision:
    permitted: bool
    refusal: RerouteRefusal | None = None


def describe_deviation(distance_m: float) -> str:
    """Reason string recorded in the reroute history."""
    return f"Deviation detected: {round(distance_m)}m off route"


class ReroutePolicy:
    """Turn deviation signals into at most one reroute request at a time."""

    def __init__(self, *, cooldown_s: float = 5.0, max_reroutes: int | None = None) -> None:
        self._cooldown_ms = int(cooldown_s * 1000)
        self._max_reroutes = max_reroutes

    @classmethod
    def from_config(cls, config: TripConfig) -> ReroutePolicy:
        return cls(cooldown_s=config.reroute_cooldown_s, max_reroutes=config.max_reroutes_per_trip)

    def evaluate(self, state: DeviationState, now_ms: int, reroute_count: int = 0) -> RerouteDecision:
        if state.is_reroute_in_flight:
            return RerouteDecision(False, RerouteRefusal.IN_FLIGHT)
        last = state.last_reroute_timestamp_ms
        if last is not None and now_ms - last < self._cooldown_ms:
            return RerouteDecision(False, RerouteRefusal.COOLDOWN)
        if self._max_reroutes is not None and reroute_count >= self._max_reroutes:
            return RerouteDecision(False, RerouteRefusal.CAP_REACHED)
        return RerouteDecision(True)

    def request(self, state: DeviationState, now_ms: int, reroute_count: int = 0) -> RerouteDecision:
        """Evaluate and, when permitted, mark a reroute as in flight on *state*."""
        decision = self.evaluate(state, now_ms, reroute_count)
        if decision.permitted:
            state.is_reroute_in_flight = True
            state.last_reroute_timestamp_ms = now_ms
        else:
            _logger.debug("Reroute suppressed: %s", decision.refusal)
        return decision

    def complete(self, state: DeviationState) -> None:
        """Close the in-flight reroute, successful or not. No automatic retry."""
        state.is_reroute_in_flight = False
        state.consecutive_off_route_count = 0
