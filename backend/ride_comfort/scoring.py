from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

# RMS at which the roughness factor bottoms out (~very rough asphalt).
ROUGHNESS_RMS_MAX = 3.5

LANE_WEIGHT = 0.10
TURN_WEIGHT = 0.35
HAZARD_WEIGHT = 0.40
HAZARD_STEP = 0.25


def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


@dataclass(frozen=True)
class RouteTuning:
    """Per-mode weighting. Only the smoothness/slope split enters the score."""

    smoothness_weight: float
    max_grade_percent: float | None
    label: str
    detail: str


class RideMode(str, Enum):
    SMOOTHEST = "smoothest"
    CHILL_FEW_CROSSINGS = "chill_few_crossings"
    FAST_MILD_ROUGHNESS = "fast_mild_roughness"
    TRICK_SPOT_CRAWL = "trick_spot_crawl"
    NIGHT_SAFE = "night_safe"

    @property
    def tuning(self) -> RouteTuning:
        return RIDE_MODE_TUNING[self]


RIDE_MODE_TUNING: dict[RideMode, RouteTuning] = {
    RideMode.SMOOTHEST: RouteTuning(
        smoothness_weight=1.00,
        max_grade_percent=5.0,
        label="Smoothest",
        detail="Prioritize buttery pavement and low grade.",
    ),
    RideMode.CHILL_FEW_CROSSINGS: RouteTuning(
        smoothness_weight=0.85,
        max_grade_percent=6.0,
        label="Chill",
        detail="Keep it mellow with fewer crossings.",
    ),
    RideMode.FAST_MILD_ROUGHNESS: RouteTuning(
        smoothness_weight=0.55,
        max_grade_percent=8.0,
        label="Fast",
        detail="Faster line; tolerates mild roughness.",
    ),
    RideMode.TRICK_SPOT_CRAWL: RouteTuning(
        smoothness_weight=0.40,
        max_grade_percent=7.0,
        label="Trick Crawl",
        detail="Short hops between nearby spots.",
    ),
    RideMode.NIGHT_SAFE: RouteTuning(
        smoothness_weight=0.90,
        max_grade_percent=5.0,
        label="Night Safe",
        detail="Favor lit paths and safer corridors.",
    ),
}


@dataclass(frozen=True)
class StepContext:
    """Static attributes of one route step, as consumed by `step_score`."""

    has_protected_lane: bool = False
    has_painted_lane: bool = False
    surface_rough: bool = False
    hazard_count: int = 0
    highway_class: str | None = None
    surface: str | None = None
    turn_radians: float = 0.0
    grade_percent: float = 0.0

    @property
    def lane_bonus(self) -> float:
        if self.has_protected_lane:
            return 1.0
        if self.has_painted_lane:
            return 0.5
        return 0.0

    @property
    def turn_penalty(self) -> float:
        # 0 straight on, 1 at a full reversal.
        return _clamp01(abs(float(self.turn_radians)) / math.pi)

    @property
    def hazard_penalty(self) -> float:
        return min(1.0, max(0, int(self.hazard_count)) * HAZARD_STEP)


@dataclass(frozen=True)
class ScoreBreakdown:
    roughness_factor: float
    slope_factor: float
    base_score: float
    lanes_factor: float
    turn_factor: float
    hazard_factor: float
    final_score: float


@dataclass(frozen=True)
class ScoreGrade:
    score: float
    letter: str
    label: str
    color_hex: str


def slope_penalty_from_grade(grade_percent: float) -> float:
    """No penalty up to 3 %, full penalty from 12 %."""
    return _clamp01((abs(float(grade_percent)) - 3.0) / (12.0 - 3.0))


def _mix(a: float, b: float, w1: float, w2: float) -> float:
    w = max(1e-4, w1 + w2)
    return ((a * w1) + (b * w2)) / w


def base_score(roughness_rms: float, slope_penalty: float, mode: RideMode) -> tuple[float, float, float]:
    """Return (base, roughness_factor, slope_factor) for the mode's weighting."""
    tuning = RideMode(mode).tuning
    rough_factor = _clamp01(1.0 - (max(0.0, float(roughness_rms)) / ROUGHNESS_RMS_MAX))
    slope_factor = _clamp01(1.0 - _clamp01(float(slope_penalty)))
    w = tuning.smoothness_weight
    return _clamp01(_mix(rough_factor, slope_factor, w, 1.0 - w)), rough_factor, slope_factor


def step_score(
    roughness_rms: float,
    slope_penalty: float,
    mode: RideMode,
    context: StepContext,
) -> tuple[float, ScoreBreakdown]:
    """Comfort score in [0, 1] for one step.

    The base blends roughness and slope by ride mode; lanes then boost it by
    up to 10 %, while turns and hazards damp it multiplicatively. Pure: equal
    inputs give bit-identical outputs.
    """
    base, rough_factor, slope_factor = base_score(roughness_rms, slope_penalty, mode)

    lanes_factor = 1.0 + (LANE_WEIGHT * context.lane_bonus)
    turn_factor = 1.0 - (TURN_WEIGHT * context.turn_penalty)
    hazard_factor = 1.0 - (HAZARD_WEIGHT * context.hazard_penalty)
    final = min(1.0, base * lanes_factor * turn_factor * hazard_factor)

    return final, ScoreBreakdown(
        roughness_factor=rough_factor,
        slope_factor=slope_factor,
        base_score=base,
        lanes_factor=lanes_factor,
        turn_factor=turn_factor,
        hazard_factor=hazard_factor,
        final_score=final,
    )


def score_color_hex(score: float) -> str:
    """Red (0) -> yellow (0.5) -> green (1) ramp for route overlays."""
    s = _clamp01(float(score))
    if s < 0.5:
        t = (s / 0.5) ** 0.9
        r, g = 1.0, 0.25 + (0.75 * t)
    else:
        t = ((s - 0.5) / 0.5) ** 0.9
        r, g = 1.0 - (0.8 * t), 1.0
    b = 0.20
    return "#{:02x}{:02x}{:02x}".format(round(r * 255), round(g * 255), round(b * 255))


def grade_for_score(score: float) -> ScoreGrade:
    s = _clamp01(float(score))
    if s >= 0.85:
        letter, label = "A", "Butter Smooth"
    elif s >= 0.60:
        letter, label = "B", "Chill"
    else:
        letter, label = "C", "Sketchy"
    return ScoreGrade(score=s, letter=letter, label=label, color_hex=score_color_hex(s))
