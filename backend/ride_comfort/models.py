from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from .geometry import Coordinate
from .ride_session import StepScore
from .route_context import IndexedAttributeProvider, StepTags
from .route_model import GradeSummary, Route, RouteStep
from .scoring import RideMode, slope_penalty_from_grade
from .segment_store import SegmentStat


class LatLng(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)

    def to_coordinate(self) -> Coordinate:
        return Coordinate(lat=self.lat, lon=self.lon)


class StepTagsPayload(BaseModel):
    has_protected_lane: bool = False
    has_painted_lane: bool = False
    surface_rough: bool = False
    hazard_count: int = Field(default=0, ge=0, le=100)
    highway_class: str | None = Field(default=None, max_length=64)
    surface: str | None = Field(default=None, max_length=64)

    def to_step_tags(self) -> StepTags:
        return StepTags(
            has_protected_lane=self.has_protected_lane,
            has_painted_lane=self.has_painted_lane,
            surface_rough=self.surface_rough,
            hazard_count=self.hazard_count,
            highway_class=self.highway_class,
            surface=self.surface,
        )


class RouteStepPayload(BaseModel):
    polyline: list[LatLng] = Field(default_factory=list)
    instruction: str | None = None
    distance_m: float = Field(default=0.0, ge=0.0)
    duration_s: float = Field(default=0.0, ge=0.0)
    tags: StepTagsPayload | None = None


class RoutePayload(BaseModel):
    route_id: str = Field(..., min_length=1, max_length=200)
    steps: list[RouteStepPayload] = Field(default_factory=list, max_length=2_000)
    distance_m: float = Field(default=0.0, ge=0.0)
    duration_s: float = Field(default=0.0, ge=0.0)

    def to_route(self) -> Route:
        return Route(
            route_id=self.route_id,
            steps=tuple(
                RouteStep(
                    index=i,
                    polyline=tuple(p.to_coordinate() for p in step.polyline),
                    instruction=step.instruction,
                    distance_m=step.distance_m,
                    duration_s=step.duration_s,
                )
                for i, step in enumerate(self.steps)
            ),
            distance_m=self.distance_m,
            duration_s=self.duration_s,
        )

    def attribute_provider(self) -> IndexedAttributeProvider | None:
        """Caller-supplied step tags, or None when no step carries any."""
        tagged = {i: step.tags.to_step_tags() for i, step in enumerate(self.steps) if step.tags is not None}
        if not tagged:
            return None
        return IndexedAttributeProvider(tagged, name="request_tags")


class GradeSummaryPayload(BaseModel):
    """Grade aggregates (percent). `slope_penalty` is derived when omitted."""

    mean_grade_percent: float = 0.0
    max_grade_percent: float = Field(default=0.0, ge=0.0)
    slope_penalty: float | None = Field(default=None, ge=0.0, le=1.0)
    ascent_m: float = Field(default=0.0, ge=0.0)
    descent_m: float = Field(default=0.0, ge=0.0)
    step_grades_percent: list[float] = Field(default_factory=list)

    def to_grade_summary(self) -> GradeSummary:
        penalty = self.slope_penalty
        if penalty is None:
            penalty = slope_penalty_from_grade(self.max_grade_percent)
        return GradeSummary(
            mean_grade_percent=self.mean_grade_percent,
            max_grade_percent=self.max_grade_percent,
            slope_penalty=penalty,
            ascent_m=self.ascent_m,
            descent_m=self.descent_m,
            step_grades_percent=tuple(self.step_grades_percent),
        )


class RouteContextRequest(BaseModel):
    route: RoutePayload
    grade_summary: GradeSummaryPayload = Field(default_factory=GradeSummaryPayload)
    mode: RideMode = RideMode.SMOOTHEST


class RoutePlanRequest(BaseModel):
    origin: LatLng
    destination: LatLng
    via: list[LatLng] = Field(default_factory=list, max_length=24)
    mode: RideMode = RideMode.SMOOTHEST
    use_elevation: bool = True


class ScoreBreakdownOut(BaseModel):
    roughness_factor: float
    slope_factor: float
    base_score: float
    lanes_factor: float
    turn_factor: float
    hazard_factor: float
    final_score: float


class StepScoreOut(BaseModel):
    step_index: int
    step_id: str
    score: float
    letter: str
    label: str
    color_hex: str
    roughness_rms: float
    slope_penalty: float
    freshness: float
    sample_count: int
    instruction: str | None = None
    breakdown: ScoreBreakdownOut

    @classmethod
    def from_score(cls, item: StepScore) -> "StepScoreOut":
        b = item.breakdown
        return cls(
            step_index=item.step_index,
            step_id=item.step_id,
            score=item.score,
            letter=item.grade.letter,
            label=item.grade.label,
            color_hex=item.grade.color_hex,
            roughness_rms=item.roughness_rms,
            slope_penalty=item.slope_penalty,
            freshness=item.freshness,
            sample_count=item.sample_count,
            instruction=item.instruction,
            breakdown=ScoreBreakdownOut(
                roughness_factor=b.roughness_factor,
                slope_factor=b.slope_factor,
                base_score=b.base_score,
                lanes_factor=b.lanes_factor,
                turn_factor=b.turn_factor,
                hazard_factor=b.hazard_factor,
                final_score=b.final_score,
            ),
        )


class RouteScoresResponse(BaseModel):
    route_id: str | None
    mode: RideMode
    steps: list[StepScoreOut]


class MotionSample(BaseModel):
    t: float = Field(..., description="Sample timestamp, epoch seconds")
    magnitude: float

    @field_validator("magnitude")
    @classmethod
    def finite(cls, v: float) -> float:
        if v != v or v in (float("inf"), float("-inf")):
            raise ValueError("magnitude must be finite")
        return v


class MotionBatchRequest(BaseModel):
    samples: list[MotionSample] = Field(..., min_length=1, max_length=10_000)


class MotionBatchResponse(BaseModel):
    accepted: int
    roughness_rms: float | None = None
    stability: float | None = None


class LocationSampleRequest(BaseModel):
    t: float
    position: LatLng
    speed_mps: float | None = Field(default=None, ge=0.0)


class LocationSampleResponse(BaseModel):
    matched: bool
    step: StepScoreOut | None = None


class SegmentStatOut(BaseModel):
    step_id: str
    quality: float
    roughness_rms: float
    last_updated: float
    freshness_score: float
    sample_count: int

    @classmethod
    def from_stat(cls, stat: SegmentStat) -> "SegmentStatOut":
        return cls(
            step_id=stat.step_id,
            quality=stat.quality,
            roughness_rms=stat.roughness_rms,
            last_updated=stat.last_updated,
            freshness_score=stat.freshness_score,
            sample_count=stat.sample_count,
        )


class RideModeOut(BaseModel):
    id: RideMode
    label: str
    detail: str
    smoothness_weight: float
    max_grade_percent: float | None = None


class PlaceOut(BaseModel):
    name: str
    position: LatLng


class GeocodeResponse(BaseModel):
    query: str
    places: list[PlaceOut]
