from __future__ import annotations

import argparse
import asyncio
import json
import math
import random
from pathlib import Path
from typing import Any, AsyncIterator, Sequence

from ride_comfort.geometry import Coordinate
from ride_comfort.matcher import MapMatcher
from ride_comfort.ride_session import LocationEvent, MotionEvent, RideSession, SensorEvent
from ride_comfort.route_context import RouteContextBuilder, StaticAttributeProvider, StepTags
from ride_comfort.route_model import Route, RouteStep
from ride_comfort.scoring import RideMode
from ride_comfort.segment_store import SegmentStore
from ride_comfort.smoothness import BoardSensitivity, SmoothnessAggregator

METERS_PER_DEG_LAT = 111_320.0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Ride a synthetic route in-process and print live comfort scores as JSON."
    )
    parser.add_argument("--steps", type=int, default=6)
    parser.add_argument("--step-length-m", type=float, default=250.0)
    parser.add_argument("--start-lat", type=float, default=51.5072)
    parser.add_argument("--start-lon", type=float, default=-0.1276)
    parser.add_argument("--speed-mps", type=float, default=5.0)
    parser.add_argument("--motion-hz", type=float, default=20.0)
    parser.add_argument("--gps-hz", type=float, default=1.0)
    parser.add_argument("--gps-noise-m", type=float, default=4.0)
    parser.add_argument("--rough-steps", default="2", help="Comma-separated step indexes with rough pavement")
    parser.add_argument("--mode", choices=[m.value for m in RideMode], default=RideMode.SMOOTHEST.value)
    parser.add_argument(
        "--board",
        choices=[b.name.lower() for b in BoardSensitivity],
        default=BoardSensitivity.STREET.name.lower(),
    )
    parser.add_argument("--seed", type=int, default=7)
    parser.add_argument("--output", default=None)
    return parser


def offset_m(origin: Coordinate, north_m: float, east_m: float) -> Coordinate:
    lat = origin.lat + (north_m / METERS_PER_DEG_LAT)
    lon = origin.lon + (east_m / (METERS_PER_DEG_LAT * math.cos(math.radians(origin.lat))))
    return Coordinate(lat=lat, lon=lon)


def build_synthetic_route(
    *,
    start: Coordinate,
    steps: int,
    step_length_m: float,
    route_id: str = "synthetic",
) -> Route:
    """Staircase route alternating north and east legs, so turns alternate right and left."""
    if steps < 1:
        raise ValueError("steps must be >= 1")
    out: list[RouteStep] = []
    north = 0.0
    east = 0.0
    for i in range(steps):
        a = offset_m(start, north, east)
        if i % 2 == 0:
            north += step_length_m
        else:
            east += step_length_m
        b = offset_m(start, north, east)
        mid = Coordinate(lat=(a.lat + b.lat) / 2.0, lon=(a.lon + b.lon) / 2.0)
        out.append(
            RouteStep(
                index=i,
                polyline=(a, mid, b),
                instruction="Head north" if i == 0 else ("Turn left" if i % 2 == 0 else "Turn right"),
                distance_m=step_length_m,
                duration_s=step_length_m / 5.0,
            )
        )
    return Route(
        route_id=route_id,
        steps=tuple(out),
        distance_m=step_length_m * steps,
        duration_s=sum(s.duration_s for s in out),
    )


def _interpolate(step: RouteStep, fraction: float) -> Coordinate:
    a = step.polyline[0]
    b = step.polyline[-1]
    return Coordinate(lat=a.lat + (b.lat - a.lat) * fraction, lon=a.lon + (b.lon - a.lon) * fraction)


def synthetic_events(
    route: Route,
    *,
    speed_mps: float,
    motion_hz: float,
    gps_hz: float,
    gps_noise_m: float,
    rough_steps: set[int],
    rng: random.Random,
    t0: float = 0.0,
) -> list[SensorEvent]:
    """Time-ordered motion and location events for riding `route` end to end."""
    events: list[SensorEvent] = []
    t = t0
    motion_dt = 1.0 / motion_hz
    gps_dt = 1.0 / gps_hz
    next_gps = t0
    for step in route.steps:
        duration = step.length_m / speed_mps
        end = t + duration
        while t < end:
            base = 2.4 if step.index in rough_steps else 0.35
            events.append(MotionEvent(at=t, magnitude=abs(rng.gauss(base, base * 0.2))))
            if t >= next_gps:
                point = _interpolate(step, (t - (end - duration)) / duration)
                noisy = Coordinate(
                    lat=point.lat + rng.gauss(0.0, gps_noise_m) / METERS_PER_DEG_LAT,
                    lon=point.lon
                    + rng.gauss(0.0, gps_noise_m) / (METERS_PER_DEG_LAT * math.cos(math.radians(point.lat))),
                )
                events.append(LocationEvent(at=t, coordinate=noisy, speed_mps=speed_mps))
                next_gps += gps_dt
            t += motion_dt
    return events


async def _stream(events: Sequence[SensorEvent]) -> AsyncIterator[SensorEvent]:
    for event in events:
        yield event
        # Yield control like a live sensor feed would.
        await asyncio.sleep(0)


async def run_simulation(args: argparse.Namespace) -> dict[str, Any]:
    rng = random.Random(args.seed)
    start = Coordinate(lat=args.start_lat, lon=args.start_lon)
    route = build_synthetic_route(start=start, steps=args.steps, step_length_m=args.step_length_m)
    rough = {int(x) for x in str(args.rough_steps).split(",") if x.strip()}

    # A painted lane on the first step exercises the attribute path.
    first_mid = _interpolate(route.steps[0], 0.5)
    provider = StaticAttributeProvider(
        [(first_mid, StepTags(has_painted_lane=True, surface="asphalt"))],
        name="synthetic",
    )
    store = SegmentStore(capacity=max(8, args.steps * 2))
    session = RideSession(
        builder=RouteContextBuilder([provider]),
        store=store,
        matcher=MapMatcher(store),
        aggregator=SmoothnessAggregator(sensitivity=BoardSensitivity[args.board.upper()]),
        mode=RideMode(args.mode),
    )

    baseline = await session.start_route(route)
    events = synthetic_events(
        route,
        speed_mps=args.speed_mps,
        motion_hz=args.motion_hz,
        gps_hz=args.gps_hz,
        gps_noise_m=args.gps_noise_m,
        rough_steps=rough,
        rng=rng,
    )
    processed = await session.run(_stream(events))
    last_t = events[-1].at if events else 0.0
    live = session.live_scores(now=last_t)

    return {
        "route_id": route.route_id,
        "mode": session.mode.value,
        "events_processed": processed,
        "baseline": [round(s.score, 4) for s in baseline],
        "live": [
            {
                "step_id": s.step_id,
                "score": round(s.score, 4),
                "grade": s.grade.letter,
                "color": s.grade.color_hex,
                "roughness_rms": round(s.roughness_rms, 4),
                "freshness": round(s.freshness, 4),
                "samples": s.sample_count,
                "instruction": s.instruction,
            }
            for s in live
        ],
        "diagnostics": session.snapshot(),
    }


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    summary = asyncio.run(run_simulation(args))
    text = json.dumps(summary, indent=2)
    if args.output:
        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text, encoding="utf-8")
    print(text)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
