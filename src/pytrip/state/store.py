"""Trip persistence.

A store keeps the active trip (so tracking survives a crash or a
background kill), a bounded history of finished trip summaries, and the
last fuel level the engine proposed for each motor.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

from pytrip.models.motor import Motor
from pytrip.models.trip import Trip, TripSummary

_logger = logging.getLogger(__name__)

_ACTIVE_FILE = "active_trip.json"
_BACKUP_FILE = "active_trip.backup.json"
_HISTORY_FILE = "trip_history.json"
_MOTORS_FILE = "motors.json"

_HISTORY_ADAPTER = TypeAdapter(list[TripSummary])
_MOTORS_ADAPTER = TypeAdapter(dict[str, Motor])


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TripStore(Protocol):
    """Persistence interface used by the lifecycle."""

    async def load_active(self) -> Trip | None: ...

    async def save_active(self, trip: Trip) -> None: ...

    async def clear_active(self) -> None: ...

    async def append_history(self, summary: TripSummary) -> None: ...

    async def history(self) -> list[TripSummary]: ...

    async def save_motor(self, motor: Motor) -> None: ...


def is_expired(trip: Trip, now: datetime, max_age: timedelta) -> bool:
    return now - trip.updated_at > max_age


class MemoryTripStore:
    """In-process store. Holds deep copies so callers cannot alias stored state."""

    def __init__(
        self,
        *,
        history_limit: int = 10,
        max_age: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._history_limit = history_limit
        self._max_age = max_age
        self._clock = clock
        self._active: Trip | None = None
        self._history: list[TripSummary] = []
        self.motors: dict[str, Motor] = {}

    async def load_active(self) -> Trip | None:
        if self._active is None:
            return None
        if is_expired(self._active, self._clock(), self._max_age):
            _logger.info("Discarding expired trip %s", self._active.id)
            self._active = None
            return None
        return self._active.model_copy(deep=True)

    async def save_active(self, trip: Trip) -> None:
        self._active = trip.model_copy(deep=True)

    async def clear_active(self) -> None:
        self._active = None

    async def append_history(self, summary: TripSummary) -> None:
        self._history.append(summary)
        del self._history[: -self._history_limit]

    async def history(self) -> list[TripSummary]:
        return list(self._history)

    async def save_motor(self, motor: Motor) -> None:
        self.motors[motor.vehicle_id] = motor


class JsonFileTripStore:
    """JSON files in a directory, written atomically off the event loop.

    Every save of the active trip also refreshes a backup copy; when the
    primary file is unreadable the backup is used instead.
    """

    def __init__(
        self,
        directory: str | Path,
        *,
        history_limit: int = 10,
        max_age: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._dir = Path(directory)
        self._history_limit = history_limit
        self._max_age = max_age
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, name: str) -> Path:
        return self._dir / name

    def _write(self, name: str, data: bytes) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        target = self._path(name)
        tmp = target.with_suffix(target.suffix + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(target)

    def _read(self, name: str) -> bytes | None:
        try:
            return self._path(name).read_bytes()
        except FileNotFoundError:
            return None

    def _unlink(self, name: str) -> None:
        self._path(name).unlink(missing_ok=True)

    def _read_trip(self, name: str) -> Trip | None:
        raw = self._read(name)
        if raw is None:
            return None
        try:
            return Trip.model_validate_json(raw)
        except ValidationError:
            _logger.warning("Unreadable trip record in %s", self._path(name), exc_info=True)
            return None

    def _load_active_sync(self) -> Trip | None:
        trip = self._read_trip(_ACTIVE_FILE)
        if trip is None:
            trip = self._read_trip(_BACKUP_FILE)
            if trip is not None:
                _logger.info("Recovered trip %s from backup copy", trip.id)
        if trip is None:
            return None
        if is_expired(trip, self._clock(), self._max_age):
            _logger.info("Discarding expired trip %s (last update %s)", trip.id, trip.updated_at.isoformat())
            self._unlink(_ACTIVE_FILE)
            self._unlink(_BACKUP_FILE)
            return None
        return trip

    def _save_active_sync(self, trip: Trip) -> None:
        data = trip.model_dump_json(by_alias=True).encode("utf-8")
        self._write(_ACTIVE_FILE, data)
        self._write(_BACKUP_FILE, data)

    def _clear_active_sync(self) -> None:
        self._unlink(_ACTIVE_FILE)
        self._unlink(_BACKUP_FILE)

    def _history_sync(self) -> list[TripSummary]:
        raw = self._read(_HISTORY_FILE)
        if raw is None:
            return []
        try:
            return _HISTORY_ADAPTER.validate_json(raw)
        except ValidationError:
            _logger.warning("Unreadable trip history in %s; starting fresh", self._path(_HISTORY_FILE), exc_info=True)
            return []

    def _append_history_sync(self, summary: TripSummary) -> None:
        history = self._history_sync()
        history.append(summary)
        history = history[-self._history_limit :]
        self._write(_HISTORY_FILE, _HISTORY_ADAPTER.dump_json(history, by_alias=True))

    def _save_motor_sync(self, motor: Motor) -> None:
        motors: dict[str, Motor] = {}
        raw = self._read(_MOTORS_FILE)
        if raw is not None:
            try:
                motors = _MOTORS_ADAPTER.validate_json(raw)
            except ValidationError:
                _logger.warning("Unreadable motor file %s; rewriting", self._path(_MOTORS_FILE), exc_info=True)
        motors[motor.vehicle_id] = motor
        self._write(_MOTORS_FILE, _MOTORS_ADAPTER.dump_json(motors, by_alias=True))

    async def load_active(self) -> Trip | None:
        async with self._lock:
            return await asyncio.to_thread(self._load_active_sync)

    async def save_active(self, trip: Trip) -> None:
        snapshot = trip.model_copy(deep=True)
        async with self._lock:
            await asyncio.to_thread(self._save_active_sync, snapshot)

    async def clear_active(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._clear_active_sync)

    async def append_history(self, summary: TripSummary) -> None:
        async with self._lock:
            await asyncio.to_thread(self._append_history_sync, summary)

    async def history(self) -> list[TripSummary]:
        async with self._lock:
            return await asyncio.to_thread(self._history_sync)

    async def save_motor(self, motor: Motor) -> None:
        async with self._lock:
            await asyncio.to_thread(self._save_motor_sync, motor)
