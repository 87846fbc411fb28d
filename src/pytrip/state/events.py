"""Structured events emitted by the trip lifecycle.

The engine never renders anything itself; the surrounding application
subscribes to the :class:`EventBus` and decides how to present or
persist each event.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_logger = logging.getLogger(__name__)


class TripEventType(StrEnum):
    DEVIATION_DETECTED = "deviation-detected"
    REROUTE_REQUESTED = "reroute-requested"
    REROUTE_FAILED = "reroute-failed"
    REROUTE_COMPLETED = "reroute-completed"
    PROXIMITY_TIER_CROSSED = "proximity-tier-crossed"
    ARRIVED = "arrived"
    LOW_FUEL = "low-fuel"
    CRITICAL_FUEL = "critical-fuel"
    FUEL_LEVEL_CHANGED = "fuel-level-changed"
    FUEL_INSUFFICIENT = "fuel-insufficient"
    TRIP_STATE_CHANGED = "trip-state-changed"
    TRIP_RECOVERED = "trip-recovered"
    SYNC_FAILED = "sync-failed"
    RECOVERABLE_ERROR = "recoverable-error"


class TripEvent(BaseModel):
    """A single engine event."""

    model_config = ConfigDict(frozen=True)

    type: TripEventType
    trip_id: str | None = Field(default=None, description="Active trip, if any")
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = Field(default_factory=dict, description="Event-specific payload")

    @field_validator("observed_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


EventListener = Callable[[TripEvent], None]


class EventBus:
    """Synchronous fan-out of :class:`TripEvent` to listeners.

    A failing listener is logged and skipped; it never interrupts the
    engine or the other listeners.
    """

    def __init__(self) -> None:
        self._listeners: list[tuple[EventListener, frozenset[TripEventType] | None]] = []

    def subscribe(self, listener: EventListener, *types: TripEventType) -> Callable[[], None]:
        """Register *listener*, optionally for a subset of event types.

        Returns a callable that removes the subscription.
        """
        entry = (listener, frozenset(types) if types else None)
        self._listeners.append(entry)

        def _unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return _unsubscribe

    def emit(self, event: TripEvent) -> None:
        _logger.debug("Event %s trip=%s data=%s", event.type, event.trip_id, event.data)
        for listener, types in list(self._listeners):
            if types is not None and event.type not in types:
                continue
            try:
                listener(event)
            except Exception:
                _logger.warning("Event listener failed for %s", event.type, exc_info=True)
