"""Per-sample decision components.

Each detector is a pure evaluation over explicit state owned by the
trip lifecycle; none of them mutate the trip or emit events themselves.
"""

from pytrip.detection.arrival import ArrivalDetector, ArrivalResult
from pytrip.detection.deviation import DeviationDetector, DeviationResult
from pytrip.detection.reroute import RerouteDecision, ReroutePolicy

__all__ = [
    "ArrivalDetector",
    "ArrivalResult",
    "DeviationDetector",
    "DeviationResult",
    "RerouteDecision",
    "ReroutePolicy",
]
