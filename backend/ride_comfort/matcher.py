from __future__ import annotations

from dataclasses import dataclass
from threading import Lock

from .geometry import Coordinate, Projection, nearest_point
from .route_model import Route
from .segment_store import SegmentStat, SegmentStore, make_step_id
from .settings import settings
from .smoothness import roughness_quality


@dataclass(frozen=True)
class MatchEvent:
    """A location fix paired with the roughness measured at the same moment."""

    at: float
    coordinate: Coordinate
    roughness_rms: float
    speed_mps: float | None = None
    route_generation: int | None = None


@dataclass(frozen=True)
class MatchResult:
    step_index: int
    step_id: str
    projection: Projection
    stat: SegmentStat


class MapMatcher:
    """Attributes roughness samples to steps of the active route.

    Samples further than `max_lateral_m` from every step are dropped.
    `set_route` bumps a generation counter; any match computed against an
    older generation is discarded instead of written.
    """

    def __init__(
        self,
        store: SegmentStore,
        *,
        max_lateral_m: float | None = None,
        window_steps: int | None = None,
        vertex_cap: int | None = None,
        rms_ceiling: float | None = None,
    ) -> None:
        self._store = store
        self._max_lateral_m = float(max_lateral_m if max_lateral_m is not None else settings.matcher_max_lateral_m)
        self._window_steps = int(window_steps if window_steps is not None else settings.matcher_window_steps)
        self._vertex_cap = int(vertex_cap if vertex_cap is not None else settings.projector_vertex_cap)
        self._rms_ceiling = float(rms_ceiling if rms_ceiling is not None else settings.smoothness_rms_ceiling)
        if self._max_lateral_m <= 0.0:
            raise ValueError("max_lateral_m must be > 0")
        if self._window_steps < 0:
            raise ValueError("window_steps must be >= 0")

        self._lock = Lock()
        self._route: Route | None = None
        self._generation = 0
        self._last_step_pos: int | None = None

        self._accepted = 0
        self._rejected = 0
        self._stale = 0
        self._accepted_distance_m = 0.0

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def route(self) -> Route | None:
        with self._lock:
            return self._route

    def set_route(self, route: Route | None) -> int:
        """Replace the active route, clearing matcher state and step statistics."""
        with self._lock:
            self._generation += 1
            self._route = route
            self._last_step_pos = None
            self._store.clear()
            return self._generation

    def _best_in(self, route: Route, positions: range, coordinate: Coordinate) -> tuple[int, Projection] | None:
        best: tuple[int, Projection] | None = None
        for pos in positions:
            projection = nearest_point(coordinate, route.steps[pos].polyline, vertex_cap=self._vertex_cap)
            if projection is None:
                continue
            if best is None or projection.distance_m < best[1].distance_m:
                best = (pos, projection)
        return best

    def _locate(self, route: Route, last_pos: int | None, coordinate: Coordinate) -> tuple[int, Projection] | None:
        n = len(route.steps)
        if last_pos is not None:
            lo = max(0, last_pos - 1)
            hi = min(n, last_pos + self._window_steps + 1)
            windowed = self._best_in(route, range(lo, hi), coordinate)
            if windowed is not None and windowed[1].distance_m <= self._max_lateral_m:
                return windowed
        return self._best_in(route, range(n), coordinate)

    def match(self, event: MatchEvent) -> MatchResult | None:
        with self._lock:
            route = self._route
            generation = self._generation
            last_pos = self._last_step_pos
        if route is None or not route.steps:
            return None
        if event.route_generation is not None and event.route_generation != generation:
            with self._lock:
                self._stale += 1
            return None

        located = self._locate(route, last_pos, event.coordinate)

        with self._lock:
            if generation != self._generation:
                # Rerouted while projecting; the step ids are no longer valid.
                self._stale += 1
                return None
            if located is None or located[1].distance_m > self._max_lateral_m:
                self._rejected += 1
                return None
            pos, projection = located
            step = route.steps[pos]
            step_id = make_step_id(route.route_id, step.index)
            stat = self._store.write(
                step_id,
                roughness=event.roughness_rms,
                quality=roughness_quality(event.roughness_rms, rms_ceiling=self._rms_ceiling),
                at=event.at,
            )
            self._last_step_pos = pos
            self._accepted += 1
            self._accepted_distance_m += projection.distance_m

        return MatchResult(step_index=step.index, step_id=step_id, projection=projection, stat=stat)

    def snapshot(self) -> dict[str, float | int | str | None]:
        with self._lock:
            return {
                "route_id": self._route.route_id if self._route is not None else None,
                "generation": self._generation,
                "accepted": self._accepted,
                "rejected": self._rejected,
                "stale": self._stale,
                "mean_accepted_distance_m": (
                    round(self._accepted_distance_m / self._accepted, 3) if self._accepted else 0.0
                ),
                "last_step_index": (
                    self._route.steps[self._last_step_pos].index
                    if self._route is not None and self._last_step_pos is not None
                    else None
                ),
            }
