from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import AsyncIterable, Sequence, Union

from .geometry import Coordinate
from .logging_utils import log_event
from .matcher import MapMatcher, MatchEvent
from .route_context import AttributeProvider, RouteContextBuilder, StepContextEntry
from .route_model import FLAT_GRADE, GradeSummary, Route
from .scoring import (
    RideMode,
    ScoreBreakdown,
    ScoreGrade,
    grade_for_score,
    slope_penalty_from_grade,
    step_score,
)
from .segment_store import SegmentStat, SegmentStore
from .settings import settings
from .smoothness import SmoothnessAggregator, SmoothnessReading

# Prior roughness multiplier for steps tagged with a rough surface.
ROUGH_SURFACE_PRIOR = 2.0


@dataclass(frozen=True)
class MotionEvent:
    at: float
    magnitude: float


@dataclass(frozen=True)
class LocationEvent:
    at: float
    coordinate: Coordinate
    speed_mps: float | None = None


SensorEvent = Union[MotionEvent, LocationEvent]


@dataclass(frozen=True)
class StepScore:
    step_index: int
    step_id: str
    score: float
    breakdown: ScoreBreakdown
    grade: ScoreGrade
    roughness_rms: float
    slope_penalty: float
    freshness: float
    sample_count: int
    instruction: str | None


class RideSession:
    """Wires sensing, matching, statistics and scoring for one rider.

    Ingestion (`ingest_*`, `run`) may happen on a background context while a
    renderer calls `live_scores`; shared state sits behind locks in the
    store, the matcher and here.
    """

    def __init__(
        self,
        *,
        builder: RouteContextBuilder,
        store: SegmentStore,
        matcher: MapMatcher,
        aggregator: SmoothnessAggregator,
        mode: RideMode = RideMode.SMOOTHEST,
        baseline_roughness_rms: float | None = None,
    ) -> None:
        self._builder = builder
        self._store = store
        self._matcher = matcher
        self._aggregator = aggregator
        self._baseline_rms = float(
            baseline_roughness_rms if baseline_roughness_rms is not None else settings.baseline_roughness_rms
        )

        self._lock = Lock()
        self._mode = RideMode(mode)
        self._route_token = 0
        self._route: Route | None = None
        self._grade: GradeSummary = FLAT_GRADE
        self._entries: dict[int, StepContextEntry] = {}
        self._order: list[int] = []
        self._unmatched = 0

    @property
    def mode(self) -> RideMode:
        with self._lock:
            return self._mode

    def set_mode(self, mode: RideMode | str) -> None:
        with self._lock:
            self._mode = RideMode(mode)

    @property
    def route(self) -> Route | None:
        with self._lock:
            return self._route

    async def start_route(
        self,
        route: Route,
        grade_summary: GradeSummary = FLAT_GRADE,
        *,
        attributes: Sequence[AttributeProvider] = (),
    ) -> list[StepScore]:
        """Activate `route`; returns the baseline score for every step.

        `attributes` are consulted ahead of the builder's own providers.

        Returns [] if another route was started while contexts were being built.
        """
        with self._lock:
            self._route_token += 1
            token = self._route_token
            previous = self._route.route_id if self._route is not None else None
            self._route = None
            self._entries = {}
            self._order = []

        # Stale matches must stop before the first await.
        self._matcher.set_route(route)
        entries = await self._builder.context(route, grade_summary, extra_providers=attributes)

        with self._lock:
            if token != self._route_token:
                return []
            self._route = route
            self._grade = grade_summary
            self._entries = {entry.step_index: entry for entry in entries}
            self._order = [entry.step_index for entry in entries]

        log_event(
            "route_replaced" if previous is not None else "route_context_built",
            route_id=route.route_id,
            previous_route_id=previous,
            step_count=len(entries),
            slope_penalty=round(grade_summary.slope_penalty, 4),
        )
        return self.live_scores()

    def ingest_motion(self, magnitude: float, at: float) -> SmoothnessReading | None:
        return self._aggregator.add_sample(magnitude, at)

    def ingest_location(
        self,
        coordinate: Coordinate,
        at: float,
        *,
        speed_mps: float | None = None,
    ) -> StepScore | None:
        reading = self._aggregator.current()
        if reading is None:
            return None
        result = self._matcher.match(
            MatchEvent(at=at, coordinate=coordinate, roughness_rms=reading.roughness_rms, speed_mps=speed_mps)
        )
        if result is None:
            with self._lock:
                self._unmatched += 1
            log_event(
                "sample_off_route",
                level=logging.DEBUG,
                lat=coordinate.lat,
                lon=coordinate.lon,
                at=at,
            )
            return None
        return self.score_step(result.step_index, now=at)

    async def run(self, events: AsyncIterable[SensorEvent]) -> int:
        """Consume sensor events until the source is exhausted."""
        processed = 0
        async for event in events:
            if isinstance(event, MotionEvent):
                self.ingest_motion(event.magnitude, event.at)
            elif isinstance(event, LocationEvent):
                self.ingest_location(event.coordinate, event.at, speed_mps=event.speed_mps)
            else:
                continue
            processed += 1
        return processed

    def _baseline_for(self, entry: StepContextEntry) -> float:
        if entry.context.surface_rough:
            return self._baseline_rms * ROUGH_SURFACE_PRIOR
        return self._baseline_rms

    def _score(self, entry: StepContextEntry, stat: SegmentStat | None, mode: RideMode) -> StepScore:
        baseline = self._baseline_for(entry)
        if stat is None:
            rms = baseline
            fresh = 0.0
            samples = 0
        else:
            fresh = stat.freshness_score
            # Stale statistics drift back to the prior.
            rms = (fresh * stat.roughness_rms) + ((1.0 - fresh) * baseline)
            samples = stat.sample_count
        slope = slope_penalty_from_grade(entry.context.grade_percent)
        score, breakdown = step_score(rms, slope, mode, entry.context)
        return StepScore(
            step_index=entry.step_index,
            step_id=entry.step_id,
            score=score,
            breakdown=breakdown,
            grade=grade_for_score(score),
            roughness_rms=rms,
            slope_penalty=slope,
            freshness=fresh,
            sample_count=samples,
            instruction=entry.instruction,
        )

    def score_step(self, step_index: int, *, now: float | None = None) -> StepScore | None:
        with self._lock:
            entry = self._entries.get(step_index)
            mode = self._mode
        if entry is None:
            return None
        return self._score(entry, self._store.read(entry.step_id, now=now), mode)

    def live_scores(self, *, now: float | None = None) -> list[StepScore]:
        ts = time.time() if now is None else float(now)
        with self._lock:
            entries = [self._entries[i] for i in self._order]
            mode = self._mode
        stats = self._store.read_many([entry.step_id for entry in entries], now=ts)
        return [self._score(entry, stats.get(entry.step_id), mode) for entry in entries]

    def reset(self) -> None:
        """End the ride: drop route, contexts, statistics and the motion window."""
        with self._lock:
            self._route_token += 1
            self._route = None
            self._grade = FLAT_GRADE
            self._entries = {}
            self._order = []
            self._unmatched = 0
        self._matcher.set_route(None)
        self._builder.discard()
        self._aggregator.reset()

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            route_id = self._route.route_id if self._route is not None else None
            step_count = len(self._order)
            unmatched = self._unmatched
            mode = self._mode.value
        reading = self._aggregator.current()
        return {
            "route_id": route_id,
            "mode": mode,
            "step_count": step_count,
            "unmatched_samples": unmatched,
            "latest_roughness_rms": reading.roughness_rms if reading is not None else None,
            "latest_stability": reading.stability if reading is not None else None,
            "matcher": self._matcher.snapshot(),
            "segment_store": self._store.stats(),
        }
