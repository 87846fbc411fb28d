"""The trip state machine.

:class:`TripLifecycle` is the only component that mutates a :class:`Trip`.
It feeds each accepted location sample to the detectors, applies their
decisions, runs the distance sync scheduler, persists the trip after every
change and reports everything through the :class:`EventBus`.

States move ``planning -> tracking -> summary -> planning``. A persisted
``tracking`` trip can be recovered after a restart.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, Awaitable, Callable, Coroutine, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any, TypeAlias

from pytrip import fuel, geo
from pytrip.config import TripConfig
from pytrip.detection.arrival import ArrivalDetector
from pytrip.detection.deviation import DeviationDetector
from pytrip.detection.reroute import ReroutePolicy, describe_deviation
from pytrip.exceptions import (
    InvalidCoordinate,
    LocationFailureReason,
    LocationUnavailable,
    RouteUnavailable,
    StateTransitionInvalid,
    SyncError,
    SyncTransient,
)
from pytrip.fuel import FuelCalculator
from pytrip.geo import HasCoordinates
from pytrip.models.location import LocationCoords, LocationSample
from pytrip.models.motor import Motor
from pytrip.models.sync import DistanceUpdateRequest, DistanceUpdateResponse
from pytrip.models.trip import (
    DeviationState,
    RerouteRecord,
    Trip,
    TripOutcome,
    TripStatus,
    TripSummary,
)
from pytrip.state.events import EventBus, TripEvent, TripEventType
from pytrip.state.store import JsonFileTripStore, MemoryTripStore, TripStore
from pytrip.sync import DistanceAccounting, DistanceSyncScheduler, SyncSnapshot

_logger = logging.getLogger(__name__)

PositionProvider: TypeAlias = Callable[[], Awaitable[HasCoordinates | None]]
RouteProvider: TypeAlias = Callable[[LocationCoords, LocationCoords], Awaitable[Sequence[HasCoordinates]]]
ReverseGeocoder: TypeAlias = Callable[[LocationCoords], Awaitable[str | None]]

# Raised to the caller as-is; everything else unexpected triggers emergency cleanup.
_CALLER_ERRORS = (StateTransitionInvalid, LocationUnavailable)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _to_coords(point: HasCoordinates) -> LocationCoords:
    geo.validate_coordinates(point.latitude, point.longitude)
    return LocationCoords(latitude=point.latitude, longitude=point.longitude)


def _default_store(config: TripConfig) -> TripStore:
    max_age = timedelta(seconds=config.max_recovery_age_s)
    if config.store_path:
        return JsonFileTripStore(config.store_path, history_limit=config.history_limit, max_age=max_age)
    return MemoryTripStore(history_limit=config.history_limit, max_age=max_age)


class TripLifecycle:
    """Single-trip tracking engine.

    Usage::

        lifecycle = TripLifecycle(config, accounting=client, fuel_calculator=client)
        lifecycle.events.subscribe(print)
        await lifecycle.start(motor, origin=here, destination=there, route=route)
        await lifecycle.consume(location_stream)
        summary = lifecycle.summary
        await lifecycle.save()

    Parameters
    ----------
    config : TripConfig or None
        Engine configuration; defaults to ``TripConfig()``. Validated on
        construction, so inconsistent values raise ``TripConfigError``.
    store : TripStore or None
        Persistence. Defaults to a JSON store when ``config.store_path`` is
        set, otherwise to an in-memory store.
    accounting : DistanceAccounting or None
        Distance sync target. Without one, no distance sync runs and fuel is
        tracked purely from the per-sample model.
    fuel_calculator : FuelCalculator or None
        Remote fuel computation used per sample when
        ``config.remote_fuel_enabled`` is set.
    position_provider, route_provider, geocoder : callables or None
        Optional collaborators for the start position, reroute geometry and
        start/end addresses.
    events : EventBus or None
        Event channel; a fresh bus is created when omitted.
    clock : callable
        Returns the current aware ``datetime``.
    sleep : callable
        Awaitable sleep used by the sync scheduler.
    """

    def __init__(
        self,
        config: TripConfig | None = None,
        *,
        store: TripStore | None = None,
        accounting: DistanceAccounting | None = None,
        fuel_calculator: FuelCalculator | None = None,
        position_provider: PositionProvider | None = None,
        route_provider: RouteProvider | None = None,
        geocoder: ReverseGeocoder | None = None,
        events: EventBus | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = (config or TripConfig()).validate()
        self._store = store if store is not None else _default_store(self._config)
        self._accounting = accounting
        self._fuel_calculator = fuel_calculator if self._config.remote_fuel_enabled else None
        self._position_provider = position_provider
        self._route_provider = route_provider
        self._geocoder = geocoder
        self._events = events or EventBus()
        self._clock = clock

        self._deviation = DeviationDetector.from_config(self._config)
        self._reroute = ReroutePolicy.from_config(self._config)
        self._arrival = ArrivalDetector.from_config(self._config)
        self._scheduler = (
            DistanceSyncScheduler.from_config(self._config, accounting, self, sleep=sleep)
            if accounting is not None
            else None
        )

        self._lock = asyncio.Lock()
        self._status = TripStatus.PLANNING
        self._trip: Trip | None = None
        self._summary: TripSummary | None = None
        self._motor: Motor | None = None
        self._background: set[asyncio.Task[None]] = set()
        self._fuel_task: asyncio.Task[None] | None = None
        self._fuel_epoch = 0
        self._low_fuel_armed = True
        self._critical_fuel_armed = True
        self._collected: list[TripEvent] | None = None

    # ------------------------------------------------------------------
    # Query surface
    # ------------------------------------------------------------------

    @property
    def config(self) -> TripConfig:
        return self._config

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def status(self) -> TripStatus:
        return self._status

    @property
    def trip(self) -> Trip | None:
        return self._trip.model_copy(deep=True) if self._trip is not None else None

    @property
    def deviation_state(self) -> DeviationState | None:
        return self._trip.deviation.model_copy() if self._trip is not None else None

    @property
    def summary(self) -> TripSummary | None:
        return self._summary

    @property
    def motor(self) -> Motor | None:
        if self._trip is not None:
            return self._trip.motor
        return self._motor

    def drivable_distance_km(self) -> float:
        motor = self.motor
        return fuel.drivable_distance_km(motor) if motor is not None else 0.0

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start(
        self,
        motor: Motor,
        origin: HasCoordinates | None = None,
        destination: HasCoordinates | None = None,
        route: Sequence[HasCoordinates] | None = None,
    ) -> Trip:
        """Begin tracking a new trip.

        Raises
        ------
        StateTransitionInvalid
            When not in ``planning``.
        LocationUnavailable
            When no valid starting position can be obtained.
        InvalidCoordinate
            When *destination* or a *route* point is invalid.
        Exception
            Any unexpected error raised before tracking began is reported as
            a ``recoverable_error`` event and re-raised; the lifecycle stays
            in ``planning`` with no trip.
        """
        async with self._lock:
            self._require(TripStatus.PLANNING, "start")
            dest = _to_coords(destination) if destination is not None else None
            polyline = [_to_coords(p) for p in route or ()]
            start_position = await self._resolve_origin(origin)
            previous_motor = self._motor

            try:
                now = self._clock()
                trip = Trip(
                    vehicle_id=motor.vehicle_id,
                    status=TripStatus.TRACKING,
                    start_time=now,
                    updated_at=now,
                    origin=start_position,
                    destination=dest,
                    route=polyline,
                    start_fuel_level_percent=motor.current_fuel_level_percent,
                    motor=motor,
                    path=[start_position],
                )
                trip.start_address = await self._reverse_geocode(start_position)

                self._summary = None
                self._trip = trip
                self._motor = motor
                self._fuel_epoch = 0
                self._low_fuel_armed = True
                self._critical_fuel_armed = True
                await self._persist_locked()
                self._set_status_locked(TripStatus.TRACKING)
                _logger.info(
                    "Trip %s started for %s (destination=%s, route points=%d)",
                    trip.id,
                    trip.vehicle_id,
                    "yes" if dest is not None else "free roam",
                    len(polyline),
                )

                self._check_fuel_thresholds_locked(motor.current_fuel_level_percent)
                if dest is not None:
                    self._check_reachability_locked(trip)
                if self._scheduler is not None:
                    self._scheduler.start()
            except _CALLER_ERRORS:
                raise
            except Exception as exc:
                await self._emergency_cleanup_locked(exc, "start")
                if self._status is not TripStatus.PLANNING:
                    return self.trip or trip
                # Tracking never began; drop the half-built trip.
                self._trip = None
                self._summary = None
                self._motor = previous_motor
                raise
            return self.trip or trip

    async def on_location_sample(self, sample: LocationSample) -> list[TripEvent]:
        """Process one location sample and return the events it produced.

        Samples outside ``tracking``, invalid positions, stale timestamps and
        jitter below the noise floor are ignored.

        Distance accrues between consecutive samples only. The first sample
        after ``start`` is the baseline; the gap from ``trip.origin`` to it is
        not counted because the origin may come from a provider or the caller
        and carries no timestamp to order it against the stream.
        """
        async with self._lock:
            if self._status is not TripStatus.TRACKING or self._trip is None:
                _logger.debug("Ignoring sample while %s", self._status)
                return []
            self._collected = []
            try:
                await self._process_sample_locked(self._trip, sample)
            except _CALLER_ERRORS:
                raise
            except Exception as exc:
                await self._emergency_cleanup_locked(exc, "location sample")
            finally:
                collected, self._collected = self._collected, None
            return collected or []

    async def stop(self, has_arrived: bool = False) -> TripSummary | None:
        """Stop tracking and produce the trip summary."""
        async with self._lock:
            self._require(TripStatus.TRACKING, "stop")
            try:
                await self._stop_locked(has_arrived)
            except _CALLER_ERRORS:
                raise
            except Exception as exc:
                await self._emergency_cleanup_locked(exc, "stop")
            return self._summary

    async def save(self) -> TripSummary | None:
        """Keep the summary in history and return to ``planning``."""
        async with self._lock:
            self._require(TripStatus.SUMMARY, "save")
            summary = self._summary
            try:
                if summary is not None:
                    await self._store.append_history(summary)
                if self._trip is not None:
                    await self._store.save_motor(self._trip.motor)
                    self._motor = self._trip.motor
                await self._store.clear_active()
                self._reset_to_planning_locked()
            except _CALLER_ERRORS:
                raise
            except Exception as exc:
                await self._emergency_cleanup_locked(exc, "save")
            return summary

    async def discard(self) -> None:
        """Drop the summary without recording it and return to ``planning``."""
        async with self._lock:
            self._require(TripStatus.SUMMARY, "discard")
            try:
                await self._store.clear_active()
                if self._trip is not None:
                    self._motor = self._trip.motor
                self._reset_to_planning_locked()
            except _CALLER_ERRORS:
                raise
            except Exception as exc:
                await self._emergency_cleanup_locked(exc, "discard")

    async def complete_reroute(self, success: bool, route: Sequence[HasCoordinates] | None = None) -> bool:
        """Close the reroute in flight.

        Returns ``False`` when no reroute was in flight. On success with a
        route, the route is replaced wholesale.
        """
        async with self._lock:
            self._require(TripStatus.TRACKING, "complete reroute")
            trip = self._trip
            assert trip is not None
            if not trip.deviation.is_reroute_in_flight:
                _logger.debug("complete_reroute called with no reroute in flight")
                return False
            polyline = [_to_coords(p) for p in route] if route else None
            try:
                error = None if success else RouteUnavailable("Reroute reported as failed")
                self._complete_reroute_locked(trip, polyline, error)
                await self._persist_locked()
            except _CALLER_ERRORS:
                raise
            except Exception as exc:
                await self._emergency_cleanup_locked(exc, "complete reroute")
            return True

    async def consume(self, stream: AsyncIterable[LocationSample]) -> None:
        """Feed samples from *stream* until the trip leaves ``tracking``."""
        if self._status is not TripStatus.TRACKING:
            return
        async for sample in stream:
            await self.on_location_sample(sample)
            if self._status is not TripStatus.TRACKING:
                break

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def check_recoverable(self) -> Trip | None:
        """Return the persisted trip if it can be resumed.

        Finished or non-tracking records are cleared; expired ones are
        dropped by the store.
        """
        async with self._lock:
            trip = await self._store.load_active()
            if trip is None:
                return None
            if trip.status is not TripStatus.TRACKING:
                _logger.info("Clearing persisted %s trip %s", trip.status, trip.id)
                await self._store.clear_active()
                return None
            return trip

    async def recover(self) -> Trip:
        """Resume the persisted tracking trip."""
        async with self._lock:
            self._require(TripStatus.PLANNING, "recover")
            trip = await self._store.load_active()
            if trip is None or trip.status is not TripStatus.TRACKING:
                raise StateTransitionInvalid("No recoverable trip", current=str(self._status), action="recover")

            try:
                trip.deviation.is_reroute_in_flight = False
                self._summary = None
                self._trip = trip
                self._motor = trip.motor
                self._fuel_epoch = 0
                level = trip.motor.current_fuel_level_percent
                self._low_fuel_armed = not fuel.is_low_fuel(level, self._config.low_fuel_percent)
                self._critical_fuel_armed = not fuel.is_critical_fuel(level, self._config.critical_fuel_percent)
                await self._persist_locked()
                self._status = TripStatus.TRACKING
                _logger.info("Recovered trip %s at %.3f km", trip.id, trip.cumulative_distance_km)
                self._emit(
                    TripEventType.TRIP_RECOVERED,
                    cumulative_distance_km=trip.cumulative_distance_km,
                    reroute_count=trip.reroute_count,
                    has_destination=trip.destination is not None,
                )
                self._emit(TripEventType.TRIP_STATE_CHANGED, status=str(TripStatus.TRACKING), previous=str(TripStatus.PLANNING))
                if self._scheduler is not None:
                    self._scheduler.start()
            except _CALLER_ERRORS:
                raise
            except Exception as exc:
                await self._emergency_cleanup_locked(exc, "recover")
            return self.trip or trip

    async def decline_recovery(self) -> None:
        async with self._lock:
            await self._store.clear_active()
            _logger.info("Persisted trip discarded by user")

    # ------------------------------------------------------------------
    # SyncTarget
    # ------------------------------------------------------------------

    def sync_snapshot(self) -> SyncSnapshot | None:
        trip = self._trip
        if self._status is not TripStatus.TRACKING or trip is None:
            return None
        return SyncSnapshot(
            trip_id=trip.id,
            request=DistanceUpdateRequest(
                vehicle_id=trip.vehicle_id,
                cumulative_distance_km=trip.cumulative_distance_km,
                last_synced_distance_km=trip.last_synced_distance_km,
            ),
        )

    async def apply_sync_result(self, snapshot: SyncSnapshot, response: DistanceUpdateResponse | None) -> None:
        async with self._lock:
            trip = self._trip
            if self._status is not TripStatus.TRACKING or trip is None or trip.id != snapshot.trip_id:
                _logger.debug("Discarding sync result for inactive trip %s", snapshot.trip_id)
                return
            try:
                if self._apply_sync_locked(trip, snapshot, response):
                    await self._persist_locked()
            except Exception as exc:
                await self._emergency_cleanup_locked(exc, "distance sync")

    def sync_failed(self, snapshot: SyncSnapshot, error: SyncError) -> None:
        trip = self._trip
        if trip is None or trip.id != snapshot.trip_id:
            return
        self._emit(
            TripEventType.SYNC_FAILED,
            error=str(error),
            status_code=error.status_code,
            endpoint=error.endpoint,
            transient=isinstance(error, SyncTransient),
            cumulative_distance_km=snapshot.request.cumulative_distance_km,
        )

    # ------------------------------------------------------------------
    # Internals (all *_locked helpers expect self._lock to be held)
    # ------------------------------------------------------------------

    def _require(self, status: TripStatus, action: str) -> None:
        if self._status is not status:
            raise StateTransitionInvalid(
                f"Cannot {action} while {self._status}",
                current=str(self._status),
                action=action,
            )

    def _emit(self, event_type: TripEventType, **data: Any) -> TripEvent:
        event = TripEvent(
            type=event_type,
            trip_id=self._trip.id if self._trip is not None else None,
            observed_at=self._clock(),
            data=data,
        )
        if self._collected is not None:
            self._collected.append(event)
        self._events.emit(event)
        return event

    def _set_status_locked(self, status: TripStatus) -> None:
        previous = self._status
        self._status = status
        _logger.info("Trip state %s -> %s", previous, status)
        self._emit(TripEventType.TRIP_STATE_CHANGED, status=str(status), previous=str(previous))

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _cancel_background(self) -> None:
        current = asyncio.current_task()
        for task in list(self._background):
            if task is not current:
                task.cancel()
        self._fuel_task = None
        self._fuel_epoch += 1

    async def _persist_locked(self) -> None:
        if self._trip is None:
            return
        self._trip.updated_at = self._clock()
        await self._store.save_active(self._trip)

    async def _resolve_origin(self, origin: HasCoordinates | None) -> LocationCoords:
        if origin is None and self._position_provider is not None:
            try:
                origin = await asyncio.wait_for(self._position_provider(), timeout=self._config.location_timeout_s)
            except LocationUnavailable:
                raise
            except asyncio.TimeoutError as exc:
                raise LocationUnavailable("Timed out waiting for a position fix", reason=LocationFailureReason.TIMEOUT) from exc
            except PermissionError as exc:
                raise LocationUnavailable(str(exc), reason=LocationFailureReason.PERMISSION_DENIED) from exc
            except Exception as exc:
                raise LocationUnavailable(
                    f"Position provider failed: {exc}",
                    reason=LocationFailureReason.WEAK_SIGNAL,
                ) from exc
        if origin is None:
            raise LocationUnavailable("No current position available", reason=LocationFailureReason.GPS_DISABLED)
        try:
            return _to_coords(origin)
        except InvalidCoordinate as exc:
            raise LocationUnavailable(str(exc), reason=LocationFailureReason.INVALID_COORDINATES) from exc

    async def _reverse_geocode(self, position: LocationCoords) -> str | None:
        if self._geocoder is None:
            return None
        try:
            return await asyncio.wait_for(self._geocoder(position), timeout=self._config.request_timeout_s)
        except Exception:
            _logger.warning("Reverse geocoding failed", exc_info=True)
            return None

    def _check_reachability_locked(self, trip: Trip) -> None:
        assert trip.destination is not None
        if trip.route:
            required_km = geo.path_length(trip.route) / 1000.0
        else:
            required_km = geo.distance(trip.origin, trip.destination) / 1000.0
        if not fuel.can_reach(trip.motor, required_km):
            drivable_km = fuel.drivable_distance_km(trip.motor)
            _logger.warning("Fuel may be insufficient: need %.1f km, drivable %.1f km", required_km, drivable_km)
            self._emit(TripEventType.FUEL_INSUFFICIENT, required_km=required_km, drivable_km=drivable_km)

    async def _process_sample_locked(self, trip: Trip, sample: LocationSample) -> None:
        try:
            geo.validate_coordinates(sample.latitude, sample.longitude)
        except InvalidCoordinate:
            _logger.warning("Ignoring invalid sample (%s, %s)", sample.latitude, sample.longitude)
            return

        last = trip.last_sample
        segment_m = 0.0
        if last is not None:
            if sample.timestamp_ms < last.timestamp_ms:
                _logger.debug("Ignoring stale sample ts=%d < %d", sample.timestamp_ms, last.timestamp_ms)
                return
            segment_m = geo.distance(last, sample)
            if segment_m < self._config.sample_noise_floor_m:
                _logger.debug("Ignoring sample within noise floor (%.1fm)", segment_m)
                return

        speed_kmh = self._derive_speed(last, sample, segment_m)
        position = sample.coords
        trip.cumulative_distance_km += segment_m / 1000.0
        trip.last_sample = sample
        trip.path.append(position)
        del trip.path[: -self._config.path_limit]

        if trip.route:
            self._evaluate_deviation_locked(trip, sample, speed_kmh)

        arrived = False
        if trip.destination is not None:
            arrived = self._evaluate_arrival_locked(trip, position)

        self._update_fuel_locked(trip)
        await self._persist_locked()

        if arrived:
            await self._stop_locked(has_arrived=True)

    @staticmethod
    def _derive_speed(last: LocationSample | None, sample: LocationSample, segment_m: float) -> float:
        if sample.speed_kmh is not None:
            return sample.speed_kmh
        if last is None:
            return 0.0
        elapsed_s = (sample.timestamp_ms - last.timestamp_ms) / 1000.0
        if elapsed_s <= 0:
            return 0.0
        return segment_m / elapsed_s * 3.6

    def _evaluate_deviation_locked(self, trip: Trip, sample: LocationSample, speed_kmh: float) -> None:
        result = self._deviation.evaluate(sample, trip.route, trip.deviation, speed_kmh)
        if result is None:
            return
        trip.deviation.consecutive_off_route_count = result.consecutive
        if result.newly_deviated:
            self._emit(
                TripEventType.DEVIATION_DETECTED,
                distance_m=result.distance_m,
                threshold_m=result.threshold_m,
                consecutive=result.consecutive,
            )
        if not result.deviated:
            return

        decision = self._reroute.request(trip.deviation, sample.timestamp_ms, trip.reroute_count)
        if not decision.permitted:
            return
        reason = describe_deviation(result.distance_m)
        trip.reroute_history.append(RerouteRecord(timestamp_ms=sample.timestamp_ms, reason=reason))
        trip.reroute_count += 1
        _logger.info("Reroute #%d requested for trip %s: %s", trip.reroute_count, trip.id, reason)
        self._emit(
            TripEventType.REROUTE_REQUESTED,
            reason=reason,
            distance_m=result.distance_m,
            reroute_count=trip.reroute_count,
            latitude=sample.latitude,
            longitude=sample.longitude,
        )
        if self._route_provider is not None:
            destination = trip.destination or trip.route[-1]
            self._spawn(self._run_reroute(trip.id, sample.coords, destination), "pytrip-reroute")

    def _evaluate_arrival_locked(self, trip: Trip, position: LocationCoords) -> bool:
        assert trip.destination is not None
        result = self._arrival.evaluate(position, trip.destination, trip.proximity)
        for tier_m in result.crossed_tiers_m:
            trip.proximity.latch(tier_m)
            self._emit(TripEventType.PROXIMITY_TIER_CROSSED, tier_m=tier_m, distance_m=result.distance_m)
        if result.arrived:
            trip.has_arrived = True
            _logger.info("Trip %s arrived (%.1fm from destination)", trip.id, result.distance_m)
            self._emit(TripEventType.ARRIVED, distance_m=result.distance_m)
        return result.arrived

    def _complete_reroute_locked(self, trip: Trip, route: list[LocationCoords] | None, error: Exception | None) -> None:
        self._reroute.complete(trip.deviation)
        if error is not None:
            _logger.warning("Reroute failed for trip %s: %s", trip.id, error)
            self._emit(TripEventType.REROUTE_FAILED, reason=str(error))
            return
        if route:
            trip.route = route
        self._emit(TripEventType.REROUTE_COMPLETED, route_points=len(trip.route), route_replaced=bool(route))

    async def _fetch_route(self, origin: LocationCoords, destination: LocationCoords) -> list[LocationCoords]:
        assert self._route_provider is not None
        try:
            raw = await asyncio.wait_for(self._route_provider(origin, destination), timeout=self._config.request_timeout_s)
            route = [_to_coords(p) for p in raw]
        except RouteUnavailable:
            raise
        except Exception as exc:
            raise RouteUnavailable(f"Route provider failed: {exc}") from exc
        if not route:
            raise RouteUnavailable("Route provider returned an empty route")
        return route

    async def _run_reroute(self, trip_id: str, origin: LocationCoords, destination: LocationCoords) -> None:
        route: list[LocationCoords] | None = None
        error: RouteUnavailable | None = None
        try:
            route = await self._fetch_route(origin, destination)
        except RouteUnavailable as exc:
            error = exc

        async with self._lock:
            trip = self._trip
            if self._status is not TripStatus.TRACKING or trip is None or trip.id != trip_id:
                _logger.debug("Discarding reroute result for inactive trip %s", trip_id)
                return
            if not trip.deviation.is_reroute_in_flight:
                return
            try:
                self._complete_reroute_locked(trip, route, error)
                await self._persist_locked()
            except Exception as exc:
                await self._emergency_cleanup_locked(exc, "reroute")

    def _update_fuel_locked(self, trip: Trip) -> None:
        delta_km = trip.cumulative_distance_km - trip.fuel_processed_distance_km
        if delta_km <= self._config.fuel_update_min_distance_km:
            return
        if self._fuel_calculator is None:
            level = fuel.local_fuel_after_distance(trip.motor, delta_km)
            trip.fuel_processed_distance_km = trip.cumulative_distance_km
            self._adopt_fuel_level_locked(trip, level, source="local")
            return
        if self._fuel_task is not None and not self._fuel_task.done():
            return
        self._fuel_task = self._spawn(
            self._run_fuel_update(trip.id, self._fuel_epoch, trip.motor, delta_km, trip.cumulative_distance_km),
            "pytrip-fuel-update",
        )

    async def _run_fuel_update(
        self,
        trip_id: str,
        epoch: int,
        motor: Motor,
        delta_km: float,
        processed_to_km: float,
    ) -> None:
        level = await fuel.fuel_after_distance(
            motor,
            delta_km,
            self._fuel_calculator,
            timeout_s=self._config.request_timeout_s,
        )
        async with self._lock:
            trip = self._trip
            if (
                self._status is not TripStatus.TRACKING
                or trip is None
                or trip.id != trip_id
                or epoch != self._fuel_epoch
            ):
                _logger.debug("Discarding stale fuel update for trip %s", trip_id)
                return
            try:
                trip.fuel_processed_distance_km = max(trip.fuel_processed_distance_km, processed_to_km)
                self._adopt_fuel_level_locked(trip, level, source="remote")
                await self._persist_locked()
            except Exception as exc:
                await self._emergency_cleanup_locked(exc, "fuel update")

    def _apply_sync_locked(self, trip: Trip, snapshot: SyncSnapshot, response: DistanceUpdateResponse | None) -> bool:
        if response is None:
            _logger.debug("Distance sync skipped by service for trip %s", trip.id)
            return False
        submitted_km = snapshot.request.cumulative_distance_km
        trip.last_synced_distance_km = max(trip.last_synced_distance_km, submitted_km)
        if response.new_fuel_level_percent is not None:
            # The authoritative level covers distance up to submitted_km only.
            trip.fuel_processed_distance_km = submitted_km
            self._fuel_epoch += 1
            self._adopt_fuel_level_locked(trip, response.new_fuel_level_percent, source="sync")
        _logger.debug(
            "Distance synced for trip %s: %.3f km (level=%s)",
            trip.id,
            submitted_km,
            response.new_fuel_level_percent,
        )
        return True

    def _adopt_fuel_level_locked(self, trip: Trip, level: float, *, source: str) -> None:
        previous = trip.motor.current_fuel_level_percent
        trip.motor = trip.motor.with_fuel_level(level)
        level = trip.motor.current_fuel_level_percent
        if abs(level - previous) > 1e-9:
            self._emit(
                TripEventType.FUEL_LEVEL_CHANGED,
                level_percent=level,
                previous_percent=previous,
                drivable_km=fuel.drivable_distance_km(trip.motor),
                source=source,
            )
        self._check_fuel_thresholds_locked(level)

    def _check_fuel_thresholds_locked(self, level: float) -> None:
        if fuel.is_low_fuel(level, self._config.low_fuel_percent):
            if self._low_fuel_armed:
                self._low_fuel_armed = False
                _logger.warning("Low fuel: %.1f%%", level)
                self._emit(TripEventType.LOW_FUEL, level_percent=level)
        else:
            self._low_fuel_armed = True

        if fuel.is_critical_fuel(level, self._config.critical_fuel_percent):
            if self._critical_fuel_armed:
                self._critical_fuel_armed = False
                _logger.warning("Critical fuel: %.1f%%", level)
                self._emit(TripEventType.CRITICAL_FUEL, level_percent=level)
        else:
            self._critical_fuel_armed = True

    async def _stop_locked(self, has_arrived: bool) -> None:
        trip = self._trip
        assert trip is not None
        self._cancel_background()
        trip.deviation.is_reroute_in_flight = False

        if self._scheduler is not None:
            outcome = await self._scheduler.stop()
            if outcome is not None and outcome.snapshot.trip_id == trip.id:
                self._apply_sync_locked(trip, outcome.snapshot, outcome.response)
            await self._final_flush_locked(trip)

        remaining_km = trip.cumulative_distance_km - trip.fuel_processed_distance_km
        if remaining_km > 0:
            level = await fuel.fuel_after_distance(
                trip.motor,
                remaining_km,
                self._fuel_calculator,
                timeout_s=self._config.request_timeout_s,
            )
            trip.fuel_processed_distance_km = trip.cumulative_distance_km
            self._adopt_fuel_level_locked(trip, level, source="final")

        end_address = None
        if trip.last_sample is not None:
            end_address = await self._reverse_geocode(trip.last_sample.coords)

        trip.has_arrived = has_arrived
        self._summary = self._build_summary(trip, self._clock(), end_address=end_address)
        trip.deviation.reset()
        trip.proximity.reset()
        trip.status = TripStatus.SUMMARY
        self._motor = trip.motor
        await self._persist_locked()
        self._set_status_locked(TripStatus.SUMMARY)
        _logger.info(
            "Trip %s stopped: %.3f km, %s",
            trip.id,
            trip.cumulative_distance_km,
            self._summary.status,
        )

    async def _final_flush_locked(self, trip: Trip) -> None:
        assert self._scheduler is not None
        snapshot = self.sync_snapshot()
        if snapshot is None or not snapshot.has_unsynced_distance:
            return
        try:
            response = await self._scheduler.submit(snapshot.request)
        except SyncError as exc:
            _logger.warning("Final distance sync for trip %s failed: %s", trip.id, exc)
            self.sync_failed(snapshot, exc)
            return
        self._apply_sync_locked(trip, snapshot, response)

    def _build_summary(
        self,
        trip: Trip,
        end_time: datetime,
        *,
        end_address: str | None = None,
        partial: bool = False,
    ) -> TripSummary:
        duration_s = max(0.0, (end_time - trip.start_time).total_seconds())
        distance_km = trip.cumulative_distance_km
        average_speed = distance_km / (duration_s / 3600.0) if duration_s > 0 else 0.0
        end_level = trip.motor.current_fuel_level_percent
        used_percent = max(0.0, trip.start_fuel_level_percent - end_level)
        is_successful = trip.destination is None or trip.has_arrived
        if is_successful:
            outcome = TripOutcome.COMPLETED
        elif partial:
            outcome = TripOutcome.FAILED
        else:
            outcome = TripOutcome.CANCELLED
        return TripSummary(
            trip_id=trip.id,
            vehicle_id=trip.vehicle_id,
            start_time=trip.start_time,
            end_time=end_time,
            duration_seconds=duration_s,
            distance_km=distance_km,
            average_speed_kmh=average_speed,
            start_fuel_level_percent=trip.start_fuel_level_percent,
            end_fuel_level_percent=end_level,
            fuel_used_percent=used_percent,
            fuel_used_liters=fuel.fuel_used_liters(trip.motor, used_percent),
            destination=trip.destination,
            has_arrived=trip.has_arrived,
            time_arrived=end_time if trip.destination is not None and trip.has_arrived else None,
            is_successful=is_successful,
            status=outcome,
            reroute_count=trip.reroute_count,
            was_rerouted=trip.reroute_count > 0,
            start_address=trip.start_address,
            end_address=end_address,
            path=tuple(trip.path),
            partial=partial,
        )

    def _reset_to_planning_locked(self) -> None:
        self._trip = None
        self._summary = None
        self._set_status_locked(TripStatus.PLANNING)

    async def _emergency_cleanup_locked(self, exc: Exception, action: str) -> None:
        """Force ``summary`` with whatever data is available and report the error."""
        _logger.error("Unexpected error during %s; running emergency cleanup", action, exc_info=exc)
        self._cancel_background()
        if self._scheduler is not None:
            try:
                await self._scheduler.stop()
            except Exception:
                _logger.warning("Stopping distance sync during cleanup failed", exc_info=True)

        trip = self._trip
        if trip is not None and self._status is TripStatus.TRACKING:
            try:
                self._summary = self._build_summary(trip, self._clock(), partial=True)
            except Exception:
                _logger.warning("Could not build partial summary", exc_info=True)
            trip.deviation.reset()
            trip.proximity.reset()
            trip.status = TripStatus.SUMMARY
            self._motor = trip.motor
            self._set_status_locked(TripStatus.SUMMARY)
            try:
                await self._persist_locked()
            except Exception:
                _logger.warning("Could not persist trip during cleanup", exc_info=True)

        self._emit(
            TripEventType.RECOVERABLE_ERROR,
            action=action,
            error=str(exc),
            error_type=type(exc).__name__,
            status=str(self._status),
        )
