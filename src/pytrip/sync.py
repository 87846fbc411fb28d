"""Periodic distance sync with the accounting service.

The scheduler owns a timer task that, every ``interval_s`` while a trip
is tracking, submits the cumulative distance to the service and hands
the authoritative result back to its :class:`SyncTarget` (the trip
lifecycle). It never touches trip state directly.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from pytrip._constants import UPDATE_DISTANCE_ENDPOINT
from pytrip.config import TripConfig
from pytrip.exceptions import SyncError, SyncPermanent, SyncTransient
from pytrip.models.sync import DistanceUpdateRequest, DistanceUpdateResponse

_logger = logging.getLogger(__name__)


class DistanceAccounting(Protocol):
    """Anything that accepts distance updates (HTTP client or local model)."""

    async def update_distance(self, request: DistanceUpdateRequest) -> DistanceUpdateResponse | None: ...


@dataclasses.dataclass(frozen=True)
class SyncSnapshot:
    """What to sync, tagged with the trip it belongs to."""

    trip_id: str
    request: DistanceUpdateRequest

    @property
    def has_unsynced_distance(self) -> bool:
        return self.request.cumulative_distance_km > self.request.last_synced_distance_km


@dataclasses.dataclass(frozen=True)
class SyncOutcome:
    snapshot: SyncSnapshot
    response: DistanceUpdateResponse | None


class SyncTarget(Protocol):
    """Narrow callback surface the scheduler uses to talk to the lifecycle."""

    def sync_snapshot(self) -> SyncSnapshot | None: ...

    async def apply_sync_result(self, snapshot: SyncSnapshot, response: DistanceUpdateResponse | None) -> None: ...

    def sync_failed(self, snapshot: SyncSnapshot, error: SyncError) -> None: ...


class DistanceSyncScheduler:
    """Fixed-interval distance sync with exponential backoff.

    * A tick with nothing new to report is skipped.
    * At most one sync is in flight; a tick that finds one running is
      skipped.
    * Transient failures retry after ``base``, ``2*base``, ... until
      ``max_attempts`` attempts were made. Permanent failures are not
      retried. Either way the target is told via ``sync_failed``.
    * An attempt already on the wire is shielded from :meth:`stop`; its
      result is returned from :meth:`stop` so the caller can decide
      whether to keep it.
    """

    def __init__(
        self,
        accounting: DistanceAccounting,
        target: SyncTarget,
        *,
        interval_s: float = 5.0,
        max_attempts: int = 3,
        retry_base_delay_s: float = 1.0,
        request_timeout_s: float = 10.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._accounting = accounting
        self._target = target
        self._interval_s = interval_s
        self._max_attempts = max_attempts
        self._retry_base_delay_s = retry_base_delay_s
        self._request_timeout_s = request_timeout_s
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self._in_flight = False
        self._closing = False
        self._pending: tuple[SyncSnapshot, asyncio.Future[DistanceUpdateResponse | None]] | None = None

    @classmethod
    def from_config(
        cls,
        config: TripConfig,
        accounting: DistanceAccounting,
        target: SyncTarget,
        **kwargs: Any,
    ) -> DistanceSyncScheduler:
        return cls(
            accounting,
            target,
            interval_s=config.sync_interval_s,
            max_attempts=config.sync_max_attempts,
            retry_base_delay_s=config.sync_retry_base_delay_s,
            request_timeout_s=config.request_timeout_s,
            **kwargs,
        )

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_in_flight(self) -> bool:
        return self._in_flight

    def start(self) -> None:
        if self.is_running:
            return
        self._closing = False
        self._task = asyncio.create_task(self._run(), name="pytrip-distance-sync")
        _logger.debug("Distance sync started (interval=%.1fs)", self._interval_s)

    async def stop(self) -> SyncOutcome | None:
        """Cancel the timer and any backoff.

        Returns the outcome of an attempt that was already on the wire when
        the scheduler stopped, if it succeeded and was not yet handed to the
        target.
        """
        task, self._task = self._task, None
        if task is not None and task is asyncio.current_task():
            # Called from inside our own tick; the loop exits once it returns.
            self._closing = True
        elif task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            _logger.debug("Distance sync stopped")

        pending, self._pending = self._pending, None
        if pending is None:
            return None
        snapshot, attempt = pending
        try:
            response = await attempt
        except Exception:
            _logger.debug("In-flight sync for trip %s failed during stop", snapshot.trip_id, exc_info=True)
            return None
        return SyncOutcome(snapshot, response)

    async def _run(self) -> None:
        while not self._closing:
            await self._sleep(self._interval_s)
            if self._closing:
                break
            try:
                await self.tick()
            except Exception:
                _logger.warning("Distance sync tick failed", exc_info=True)

    async def tick(self) -> bool:
        """Run one sync cycle. Returns ``True`` when a result was applied."""
        if self._in_flight:
            _logger.debug("Sync already in flight; skipping tick")
            return False
        snapshot = self._target.sync_snapshot()
        if snapshot is None or not snapshot.has_unsynced_distance:
            return False

        self._in_flight = True
        try:
            try:
                response = await self.submit(snapshot.request, snapshot=snapshot)
            except SyncError as exc:
                self._pending = None
                _logger.warning("Distance sync for trip %s failed: %s", snapshot.trip_id, exc)
                self._target.sync_failed(snapshot, exc)
                return False
            await self._target.apply_sync_result(snapshot, response)
            self._pending = None
            return True
        finally:
            self._in_flight = False

    async def submit(
        self,
        request: DistanceUpdateRequest,
        *,
        snapshot: SyncSnapshot | None = None,
    ) -> DistanceUpdateResponse | None:
        """Send *request* with retry/backoff; raises the last :class:`SyncError`."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._attempt(request, snapshot)
            except SyncPermanent:
                raise
            except SyncTransient as exc:
                self._pending = None
                if attempt >= self._max_attempts:
                    _logger.debug("Sync giving up after %d attempts", attempt)
                    raise
                delay = self._retry_base_delay_s * 2 ** (attempt - 1)
                _logger.debug("Sync attempt=%d failed (%s); retrying in %.1fs", attempt, exc, delay)
                await self._sleep(delay)

    async def _attempt(
        self,
        request: DistanceUpdateRequest,
        snapshot: SyncSnapshot | None,
    ) -> DistanceUpdateResponse | None:
        call = asyncio.ensure_future(
            asyncio.wait_for(self._accounting.update_distance(request), timeout=self._request_timeout_s)
        )
        if snapshot is not None:
            self._pending = (snapshot, call)
        try:
            return await asyncio.shield(call)
        except SyncError:
            raise
        except asyncio.TimeoutError as exc:
            raise SyncTransient(
                f"Distance sync timed out after {self._request_timeout_s}s",
                endpoint=UPDATE_DISTANCE_ENDPOINT,
            ) from exc
        except Exception as exc:
            raise SyncPermanent(f"Distance sync failed: {exc}", endpoint=UPDATE_DISTANCE_ENDPOINT) from exc
