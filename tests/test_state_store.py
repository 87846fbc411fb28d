from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from pytrip.models import LocationCoords, LocationSample, Motor, Trip, TripOutcome, TripStatus, TripSummary
from pytrip.state.store import JsonFileTripStore, MemoryTripStore, is_expired


def _dt() -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC)


def _motor(level: float = 50.0) -> Motor:
    return Motor(
        vehicle_id="motor-1",
        fuel_tank_capacity_liters=15.0,
        fuel_efficiency_km_per_liter=40.0,
        current_fuel_level_percent=level,
    )


def _trip(updated_at: datetime | None = None) -> Trip:
    origin = LocationCoords(latitude=14.5995, longitude=120.9842)
    trip = Trip(
        vehicle_id="motor-1",
        status=TripStatus.TRACKING,
        start_time=_dt(),
        updated_at=updated_at or _dt(),
        origin=origin,
        destination=LocationCoords(latitude=14.61, longitude=120.99),
        route=[origin, LocationCoords(latitude=14.61, longitude=120.99)],
        cumulative_distance_km=1.25,
        last_synced_distance_km=1.0,
        motor=_motor(),
        last_sample=LocationSample(latitude=14.6, longitude=120.985, timestamp_ms=1_000, speed_kmh=None),
        path=[origin],
    )
    trip.deviation.consecutive_off_route_count = 1
    trip.proximity.latch(500.0)
    return trip


def _summary(trip_id: str) -> TripSummary:
    return TripSummary(
        trip_id=trip_id,
        vehicle_id="motor-1",
        start_time=_dt(),
        end_time=_dt() + timedelta(minutes=10),
        duration_seconds=600.0,
        distance_km=5.0,
        average_speed_kmh=30.0,
        start_fuel_level_percent=50.0,
        end_fuel_level_percent=49.0,
        fuel_used_percent=1.0,
        fuel_used_liters=0.15,
        is_successful=True,
        status=TripOutcome.COMPLETED,
    )


def _clock(now: datetime) -> Callable[[], datetime]:
    return lambda: now


def test_is_expired_uses_last_update() -> None:
    trip = _trip(updated_at=_dt())
    assert not is_expired(trip, _dt() + timedelta(hours=23), timedelta(hours=24))
    assert is_expired(trip, _dt() + timedelta(hours=25), timedelta(hours=24))


# ------------------------------------------------------------------
# MemoryTripStore
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_memory_store_returns_copies() -> None:
    store = MemoryTripStore(clock=_clock(_dt()))
    trip = _trip()
    await store.save_active(trip)

    trip.cumulative_distance_km = 99.0
    loaded = await store.load_active()

    assert loaded is not None
    assert loaded.cumulative_distance_km == 1.25
    loaded.cumulative_distance_km = 42.0
    again = await store.load_active()
    assert again is not None
    assert again.cumulative_distance_km == 1.25


@pytest.mark.asyncio
async def test_memory_store_drops_expired_trip() -> None:
    store = MemoryTripStore(clock=_clock(_dt() + timedelta(days=2)))
    await store.save_active(_trip())

    assert await store.load_active() is None


@pytest.mark.asyncio
async def test_memory_store_history_is_bounded() -> None:
    store = MemoryTripStore(history_limit=2)
    for i in range(3):
        await store.append_history(_summary(f"trip_{i}"))

    assert [s.trip_id for s in await store.history()] == ["trip_1", "trip_2"]


# ------------------------------------------------------------------
# JsonFileTripStore
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_json_store_round_trip(tmp_path: Path) -> None:
    store = JsonFileTripStore(tmp_path, clock=_clock(_dt()))
    trip = _trip()

    await store.save_active(trip)
    loaded = await store.load_active()

    assert loaded is not None
    assert loaded.model_dump() == trip.model_dump()
    assert (tmp_path / "active_trip.json").exists()
    assert (tmp_path / "active_trip.backup.json").exists()
    assert not list(tmp_path.glob("*.tmp"))


@pytest.mark.asyncio
async def test_json_store_missing_file_means_no_trip(tmp_path: Path) -> None:
    store = JsonFileTripStore(tmp_path / "missing")
    assert await store.load_active() is None
    assert await store.history() == []


@pytest.mark.asyncio
async def test_json_store_falls_back_to_backup(tmp_path: Path) -> None:
    store = JsonFileTripStore(tmp_path, clock=_clock(_dt()))
    trip = _trip()
    await store.save_active(trip)

    (tmp_path / "active_trip.json").write_text("{not json", encoding="utf-8")
    loaded = await store.load_active()

    assert loaded is not None
    assert loaded.id == trip.id


@pytest.mark.asyncio
async def test_json_store_unreadable_records_yield_none(tmp_path: Path) -> None:
    store = JsonFileTripStore(tmp_path)
    (tmp_path / "active_trip.json").write_text("[]", encoding="utf-8")

    assert await store.load_active() is None


@pytest.mark.asyncio
async def test_json_store_expired_trip_is_deleted(tmp_path: Path) -> None:
    await JsonFileTripStore(tmp_path).save_active(_trip(updated_at=_dt()))
    store = JsonFileTripStore(tmp_path, clock=_clock(_dt() + timedelta(hours=30)))

    assert await store.load_active() is None
    assert not (tmp_path / "active_trip.json").exists()
    assert not (tmp_path / "active_trip.backup.json").exists()


@pytest.mark.asyncio
async def test_json_store_clear_active(tmp_path: Path) -> None:
    store = JsonFileTripStore(tmp_path, clock=_clock(_dt()))
    await store.save_active(_trip())

    await store.clear_active()

    assert await store.load_active() is None


@pytest.mark.asyncio
async def test_json_store_history_is_bounded(tmp_path: Path) -> None:
    store = JsonFileTripStore(tmp_path, history_limit=2)
    for i in range(3):
        await store.append_history(_summary(f"trip_{i}"))

    history = await JsonFileTripStore(tmp_path).history()

    assert [s.trip_id for s in history] == ["trip_1", "trip_2"]
    assert history[0].status is TripOutcome.COMPLETED


@pytest.mark.asyncio
async def test_json_store_corrupt_history_starts_fresh(tmp_path: Path) -> None:
    (tmp_path / "trip_history.json").write_text("garbage", encoding="utf-8")
    store = JsonFileTripStore(tmp_path)

    await store.append_history(_summary("trip_new"))

    assert [s.trip_id for s in await store.history()] == ["trip_new"]


@pytest.mark.asyncio
async def test_json_store_saves_motor_levels(tmp_path: Path) -> None:
    store = JsonFileTripStore(tmp_path)
    await store.save_motor(_motor(50.0))
    await store.save_motor(_motor(31.5))

    raw = (tmp_path / "motors.json").read_text(encoding="utf-8")

    assert '"motor-1"' in raw
    assert "31.5" in raw
