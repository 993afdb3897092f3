from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Mapping, Protocol, Sequence

from .geometry import Coordinate, haversine_m, midpoint, polyline_bearing_deg, signed_turn_radians
from .logging_utils import log_event
from .route_model import GradeSummary, Route, RouteStep
from .scoring import StepContext
from .segment_store import make_step_id


@dataclass(frozen=True)
class StepTags:
    """Attribute facts about one step, as reported by a single provider."""

    has_protected_lane: bool = False
    has_painted_lane: bool = False
    surface_rough: bool = False
    hazard_count: int = 0
    highway_class: str | None = None
    surface: str | None = None
    metadata: dict[str, str] = field(default_factory=dict, hash=False, compare=False)

    @property
    def is_neutral(self) -> bool:
        return (
            not self.has_protected_lane
            and not self.has_painted_lane
            and not self.surface_rough
            and self.hazard_count <= 0
            and self.highway_class is None
            and self.surface is None
            and not self.metadata
        )


NEUTRAL_TAGS = StepTags()


class AttributeProvider(Protocol):
    name: str

    async def tags(self, step: RouteStep) -> StepTags: ...


def merge_tags(primary: StepTags, secondary: StepTags) -> StepTags:
    """Merge two providers' tags; `primary` has the higher priority.

    Flags OR together, hazards take the max, strings keep the first non-null.
    """
    return StepTags(
        has_protected_lane=primary.has_protected_lane or secondary.has_protected_lane,
        has_painted_lane=primary.has_painted_lane or secondary.has_painted_lane,
        surface_rough=primary.surface_rough or secondary.surface_rough,
        hazard_count=max(max(0, primary.hazard_count), max(0, secondary.hazard_count)),
        highway_class=primary.highway_class if primary.highway_class is not None else secondary.highway_class,
        surface=primary.surface if primary.surface is not None else secondary.surface,
        metadata={**secondary.metadata, **primary.metadata},
    )


class StaticAttributeProvider:
    """In-memory provider keyed by coordinates; matches a step by its midpoint."""

    def __init__(
        self,
        points: Sequence[tuple[Coordinate, StepTags]],
        *,
        match_radius_m: float = 50.0,
        name: str = "static",
    ) -> None:
        self.name = name
        self._points = list(points)
        self._radius_m = float(match_radius_m)

    async def tags(self, step: RouteStep) -> StepTags:
        mid = midpoint(step.polyline)
        if mid is None:
            return NEUTRAL_TAGS
        best: StepTags | None = None
        best_dist = float("inf")
        for coordinate, tags in self._points:
            d = haversine_m(mid, coordinate)
            if d < best_dist:
                best_dist = d
                best = tags
        if best is not None and best_dist <= self._radius_m:
            return best
        return NEUTRAL_TAGS


class IndexedAttributeProvider:
    """Tags supplied alongside a route, keyed by step index."""

    def __init__(self, tags_by_index: Mapping[int, StepTags], *, name: str = "request") -> None:
        self.name = name
        self._tags = dict(tags_by_index)

    def __len__(self) -> int:
        return len(self._tags)

    async def tags(self, step: RouteStep) -> StepTags:
        return self._tags.get(step.index, NEUTRAL_TAGS)


class CompositeAttributeProvider:
    """Priority-ordered providers merged per step.

    A provider that raises for a step is left out of that step's merge;
    the others still contribute.
    """

    def __init__(self, providers: Sequence[AttributeProvider], *, name: str = "composite") -> None:
        self.name = name
        self._providers = list(providers)

    async def _safe_tags(self, provider: AttributeProvider, step: RouteStep) -> StepTags | None:
        try:
            return await provider.tags(step)
        except Exception as exc:
            log_event(
                "attribute_provider_failed",
                level=logging.WARNING,
                provider=getattr(provider, "name", type(provider).__name__),
                step_index=step.index,
                error=f"{type(exc).__name__}: {exc}",
            )
            return None

    async def tags(self, step: RouteStep) -> StepTags:
        results = await asyncio.gather(*(self._safe_tags(p, step) for p in self._providers))
        merged = NEUTRAL_TAGS
        # Fold from lowest to highest priority so the first provider's strings win.
        for tags in reversed(results):
            if tags is not None:
                merged = merge_tags(tags, merged)
        return merged

    async def tags_for_steps(self, steps: Sequence[RouteStep]) -> list[StepTags]:
        return list(await asyncio.gather(*(self.tags(step) for step in steps)))


def compose_instruction(base: str | None, tags: StepTags) -> str | None:
    base_text = base if base else None

    hints: list[str] = []
    if tags.has_protected_lane:
        hints.append("Protected lane")
    elif tags.has_painted_lane:
        hints.append("Painted lane")
    if tags.surface_rough:
        hints.append("Rough surface")
    if tags.hazard_count > 0:
        hints.append(f"Hazard ×{tags.hazard_count}")
    if tags.surface:
        hints.append(tags.surface.title())

    if not hints:
        return base_text
    summary = ", ".join(hints)
    if base_text is not None:
        return f"{base_text} – {summary}"
    return summary


def step_turns_radians(steps: Sequence[RouteStep]) -> list[float]:
    """Signed heading change entering each step; 0 for the first or degenerate steps."""
    bearings = [polyline_bearing_deg(step.polyline) for step in steps]
    turns: list[float] = []
    for i, current in enumerate(bearings):
        previous = bearings[i - 1] if i > 0 else None
        if previous is None or current is None:
            turns.append(0.0)
        else:
            turns.append(signed_turn_radians(previous, current))
    return turns


@dataclass(frozen=True)
class StepContextEntry:
    step_index: int
    step_id: str
    context: StepContext
    tags: StepTags
    instruction: str | None
    turn_radians_signed: float


class RouteContextBuilder:
    """Builds and owns the static per-step context of the active route."""

    def __init__(self, providers: Sequence[AttributeProvider] | None = None) -> None:
        self._attributes = CompositeAttributeProvider(list(providers or []))
        self._active_route_id: str | None = None
        self._entries: list[StepContextEntry] = []
        self._build_seq = 0

    @property
    def active_route_id(self) -> str | None:
        return self._active_route_id

    def active_contexts(self) -> list[StepContextEntry]:
        return list(self._entries)

    def discard(self) -> None:
        self._build_seq += 1
        self._active_route_id = None
        self._entries = []

    async def context(
        self,
        route: Route,
        grade_summary: GradeSummary,
        *,
        extra_providers: Sequence[AttributeProvider] = (),
    ) -> list[StepContextEntry]:
        """Build per-step contexts; `extra_providers` outrank the configured ones for this build only."""
        if self._active_route_id != route.route_id:
            self.discard()
        self._build_seq += 1
        seq = self._build_seq
        if not route.steps:
            self._active_route_id = route.route_id
            self._entries = []
            return []

        attributes = self._attributes
        if extra_providers:
            attributes = CompositeAttributeProvider([*extra_providers, self._attributes])
        all_tags = await attributes.tags_for_steps(route.steps)
        turns = step_turns_radians(route.steps)

        entries: list[StepContextEntry] = []
        for step, tags, turn in zip(route.steps, all_tags, turns):
            context = StepContext(
                has_protected_lane=tags.has_protected_lane,
                has_painted_lane=tags.has_painted_lane,
                surface_rough=tags.surface_rough,
                hazard_count=max(0, tags.hazard_count),
                highway_class=tags.highway_class,
                surface=tags.surface,
                turn_radians=abs(turn),
                grade_percent=grade_summary.grade_for_step(step.index),
            )
            entries.append(
                StepContextEntry(
                    step_index=step.index,
                    step_id=make_step_id(route.route_id, step.index),
                    context=context,
                    tags=tags,
                    instruction=compose_instruction(step.instruction, tags),
                    turn_radians_signed=turn,
                )
            )

        # A newer build started while providers were awaited; it owns the state.
        if seq == self._build_seq:
            self._active_route_id = route.route_id
            self._entries = entries
        return list(entries)
