from __future__ import annotations

from dataclasses import dataclass, field

from .geometry import Coordinate, polyline_length_m


@dataclass(frozen=True)
class RouteStep:
    index: int
    polyline: tuple[Coordinate, ...]
    instruction: str | None = None
    distance_m: float = 0.0
    duration_s: float = 0.0

    @property
    def length_m(self) -> float:
        # Providers occasionally report 0 for short steps.
        return self.distance_m if self.distance_m > 0.0 else polyline_length_m(self.polyline)


@dataclass(frozen=True)
class Route:
    route_id: str
    steps: tuple[RouteStep, ...]
    distance_m: float = 0.0
    duration_s: float = 0.0

    @property
    def coordinates(self) -> list[Coordinate]:
        merged: list[Coordinate] = []
        for step in self.steps:
            for point in step.polyline:
                if merged and merged[-1] == point:
                    continue
                merged.append(point)
        return merged


@dataclass(frozen=True)
class GradeSummary:
    """Route grade aggregates from the elevation provider (percent)."""

    mean_grade_percent: float = 0.0
    max_grade_percent: float = 0.0
    slope_penalty: float = 0.0
    ascent_m: float = 0.0
    descent_m: float = 0.0
    step_grades_percent: tuple[float, ...] = field(default_factory=tuple)
    braking_mask: tuple[bool, ...] = field(default_factory=tuple)

    def grade_for_step(self, index: int) -> float:
        if 0 <= index < len(self.step_grades_percent):
            return self.step_grades_percent[index]
        return self.mean_grade_percent


FLAT_GRADE = GradeSummary()
