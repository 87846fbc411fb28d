"""Off-route detection with a speed-scaled tolerance and debounce."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence

from pytrip import geo
from pytrip.config import TripConfig
from pytrip.geo import HasCoordinates
from pytrip.models.trip import DeviationState

_logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class DeviationResult:
    """Outcome of evaluating one sample against the route.

    ``consecutive`` is the counter value the caller should commit to its
    :class:`DeviationState`. ``newly_deviated`` is true only on the sample
    that first reaches the required number of detections.
    """

    distance_m: float
    threshold_m: float
    off_route: bool
    consecutive: int
    deviated: bool
    newly_deviated: bool


class DeviationDetector:
    """Decide whether the vehicle has left the planned route.

    A single GPS outlier is not enough: the vehicle must be beyond the
    tolerance on ``required_detections`` consecutive samples. The tolerance
    widens with speed because fixes lag further behind at speed.
    """

    def __init__(
        self,
        *,
        base_threshold_m: float = 30.0,
        speed_reference_kmh: float = 60.0,
        max_scale: float = 2.0,
        required_detections: int = 2,
    ) -> None:
        self._base_threshold_m = base_threshold_m
        self._speed_reference_kmh = speed_reference_kmh
        self._max_scale = max_scale
        self._required_detections = required_detections

    @classmethod
    def from_config(cls, config: TripConfig) -> DeviationDetector:
        return cls(
            base_threshold_m=config.deviation_base_threshold_m,
            speed_reference_kmh=config.deviation_speed_reference_kmh,
            max_scale=config.deviation_max_scale,
            required_detections=config.deviation_required_detections,
        )

    @property
    def required_detections(self) -> int:
        return self._required_detections

    def threshold_m(self, speed_kmh: float | None) -> float:
        """Tolerance for the given speed; missing or negative speed counts as standstill."""
        speed = max(0.0, speed_kmh or 0.0)
        scale = min(1.0 + speed / self._speed_reference_kmh, self._max_scale)
        return self._base_threshold_m * scale

    def evaluate(
        self,
        position: HasCoordinates,
        route: Sequence[HasCoordinates],
        state: DeviationState,
        speed_kmh: float | None = None,
    ) -> DeviationResult | None:
        """Evaluate *position* against *route*; ``None`` when there is no route."""
        if not route:
            return None

        distance_m = geo.distance_to_polyline(position, route)
        threshold_m = self.threshold_m(speed_kmh)
        off_route = distance_m > threshold_m
        consecutive = state.consecutive_off_route_count + 1 if off_route else 0
        deviated = consecutive >= self._required_detections

        _logger.debug(
            "Deviation check distance=%.1fm threshold=%.1fm consecutive=%d",
            distance_m,
            threshold_m,
            consecutive,
        )
        return DeviationResult(
            distance_m=distance_m,
            threshold_m=threshold_m,
            off_route=off_route,
            consecutive=consecutive,
            deviated=deviated,
            newly_deviated=consecutive == self._required_detections,
        )
