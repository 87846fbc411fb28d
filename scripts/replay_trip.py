#!/usr/bin/env python3
"""Replay a recorded location trace through the trip engine.

Feeds every sample of a trace file to :class:`pytrip.TripLifecycle` and
prints the events it emits followed by the trip summary. Handy for tuning
deviation thresholds and proximity tiers against real drives.

Trace file format (JSON)::

    {
      "motor": {"vehicleId": "m1", "fuelTank": 15, "fuelEfficiency": 40, "currentFuelLevel": 50},
      "destination": {"lat": 14.61, "lng": 120.99},
      "route": [{"lat": 14.5995, "lng": 120.9842}, {"lat": 14.61, "lng": 120.99}],
      "samples": [{"lat": 14.5995, "lng": 120.9842, "timestampMs": 0, "speedKmh": 20}]
    }

``destination`` and ``route`` are optional; without a destination the trip
is free roam. The first sample is used as the origin.

Usage
-----
::

    python scripts/replay_trip.py trace.json
    python scripts/replay_trip.py trace.json --remote     # sync against PYTRIP_BASE_URL

Options::

    --remote            Use the HTTP accounting service instead of the local model
    --json              Output machine-readable JSON
    --output FILE       Write output to FILE instead of stdout
    --verbose, -v       Enable debug logging
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pytrip import (  # noqa: E402
    HttpFuelAccountingClient,
    LocalFuelAccounting,
    LocationCoords,
    LocationSample,
    Motor,
    TripConfig,
    TripEvent,
    TripLifecycle,
)


def _section(title: str) -> str:
    line = "=" * 60
    return f"\n{line}\n  {title}\n{line}"


def _load_trace(path: Path) -> dict[str, Any]:
    trace = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(trace, dict) or not trace.get("samples"):
        raise SystemExit(f"{path}: expected an object with a non-empty 'samples' list")
    return trace


async def replay(trace: dict[str, Any], *, remote: bool) -> dict[str, Any]:
    config = TripConfig.from_env(remote_fuel_enabled=remote)
    motor = Motor.model_validate(trace["motor"])
    samples = [LocationSample.model_validate(s) for s in trace["samples"]]
    destination = LocationCoords.model_validate(trace["destination"]) if trace.get("destination") else None
    route = [LocationCoords.model_validate(p) for p in trace.get("route") or []]

    events: list[TripEvent] = []

    async def _run(lifecycle: TripLifecycle) -> None:
        lifecycle.events.subscribe(events.append)
        await lifecycle.start(motor, origin=samples[0], destination=destination, route=route)
        for sample in samples:
            await lifecycle.on_location_sample(sample)
        if lifecycle.status == "tracking":
            await lifecycle.stop(has_arrived=False)

    if remote:
        async with HttpFuelAccountingClient(config) as client:
            lifecycle = TripLifecycle(config, accounting=client, fuel_calculator=client)
            await _run(lifecycle)
    else:
        lifecycle = TripLifecycle(config, accounting=LocalFuelAccounting([motor]))
        await _run(lifecycle)

    summary = lifecycle.summary
    return {
        "events": [e.model_dump(mode="json") for e in events],
        "summary": summary.model_dump(mode="json", exclude={"path"}) if summary is not None else None,
    }


def _render(result: dict[str, Any]) -> str:
    out: list[str] = [_section("EVENTS")]
    for event in result["events"]:
        data = ", ".join(f"{k}={v}" for k, v in event["data"].items())
        out.append(f"  {event['observed_at']}  {event['type']:<24} {data}")
    out.append(_section("SUMMARY"))
    summary = result["summary"] or {}
    for key, value in summary.items():
        out.append(f"  {key:<26}: {value}")
    return "\n".join(out)


async def main() -> None:
    parser = argparse.ArgumentParser(description="Replay a location trace through the pytrip engine.")
    parser.add_argument("trace", help="Trace file (JSON)")
    parser.add_argument("--remote", action="store_true", help="Use the HTTP accounting service")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--output", "-o", help="Write output to FILE instead of stdout")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    result = await replay(_load_trace(Path(args.trace)), remote=args.remote)

    payload = json.dumps(result, indent=2, default=str, ensure_ascii=False) if args.json_mode else _render(result)
    if args.output:
        Path(args.output).write_text(payload, encoding="utf-8")
        print(f"Output written to {args.output}", file=sys.stderr)
    else:
        print(payload)


if __name__ == "__main__":
    asyncio.run(main())
