"""Approach notifications and arrival detection."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable

from pytrip import geo
from pytrip.config import TripConfig
from pytrip.geo import HasCoordinates
from pytrip.models.trip import ProximityLatches


@dataclasses.dataclass(frozen=True)
class ArrivalResult:
    distance_m: float
    crossed_tiers_m: tuple[float, ...]
    arrived: bool


class ArrivalDetector:
    """Report tiers newly crossed on approach and the terminal arrival.

    Tiers are reported largest first, so a sample that jumps from far away
    to right at the destination still yields every tier before arrival.
    Latching is left to the caller.
    """

    def __init__(self, *, tiers_m: Iterable[float] = (500.0, 200.0, 50.0), arrival_threshold_m: float = 30.0) -> None:
        self._tiers_m = tuple(sorted(tiers_m, reverse=True))
        self._arrival_threshold_m = arrival_threshold_m

    @classmethod
    def from_config(cls, config: TripConfig) -> ArrivalDetector:
        return cls(tiers_m=config.proximity_tiers_m, arrival_threshold_m=config.arrival_threshold_m)

    @property
    def tiers_m(self) -> tuple[float, ...]:
        return self._tiers_m

    def evaluate(self, position: HasCoordinates, destination: HasCoordinates, latches: ProximityLatches) -> ArrivalResult:
        distance_m = geo.distance(position, destination)
        crossed = tuple(tier for tier in self._tiers_m if distance_m <= tier and not latches.has_crossed(tier))
        return ArrivalResult(
            distance_m=distance_m,
            crossed_tiers_m=crossed,
            arrived=distance_m <= self._arrival_threshold_m,
        )
