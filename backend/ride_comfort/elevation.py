from __future__ import annotations

from typing import Any, Sequence

import httpx

from .geometry import Coordinate
from .provider_errors import ProviderError
from .provider_http import request_json
from .route_model import GradeSummary, Route
from .scoring import slope_penalty_from_grade

# Steps steeper downhill than this are flagged for braking.
BRAKING_GRADE_PERCENT = -6.0
# Grades beyond this are DEM noise on short steps.
MAX_PLAUSIBLE_GRADE_PERCENT = 35.0


def _clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def summarize_grades(route: Route, endpoint_elevations_m: Sequence[tuple[float, float] | None]) -> GradeSummary:
    """Per-step grade from each step's start/end elevation.

    `endpoint_elevations_m[i]` is (start, end) for step i, or None when the
    step has no usable geometry; those steps get a 0 % grade.
    """
    grades: list[float] = []
    braking: list[bool] = []
    ascent = 0.0
    descent = 0.0
    sampled: list[float] = []

    for i, step in enumerate(route.steps):
        pair = endpoint_elevations_m[i] if i < len(endpoint_elevations_m) else None
        length = step.length_m
        if pair is None or length <= 0.0:
            grades.append(0.0)
            braking.append(False)
            continue
        rise = float(pair[1]) - float(pair[0])
        grade = _clamp((rise / length) * 100.0, -MAX_PLAUSIBLE_GRADE_PERCENT, MAX_PLAUSIBLE_GRADE_PERCENT)
        grades.append(grade)
        braking.append(grade < BRAKING_GRADE_PERCENT)
        sampled.append(grade)
        if rise > 0.0:
            ascent += rise
        else:
            descent += -rise

    mean = sum(sampled) / len(sampled) if sampled else 0.0
    max_abs = max((abs(g) for g in sampled), default=0.0)
    return GradeSummary(
        mean_grade_percent=mean,
        max_grade_percent=max_abs,
        slope_penalty=slope_penalty_from_grade(max_abs),
        ascent_m=round(ascent, 3),
        descent_m=round(descent, 3),
        step_grades_percent=tuple(grades),
        braking_mask=tuple(braking),
    )


def _endpoint_samples(route: Route) -> tuple[list[Coordinate], list[int | None]]:
    """Flatten step endpoints into one lookup list; index map per step."""
    locations: list[Coordinate] = []
    offsets: list[int | None] = []
    for step in route.steps:
        if len(step.polyline) < 2:
            offsets.append(None)
            continue
        offsets.append(len(locations))
        locations.append(step.polyline[0])
        locations.append(step.polyline[-1])
    return locations, offsets


class ElevationClient:
    """Open-Elevation style lookup (`POST /api/v1/lookup`)."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_s: float = 15.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s, connect=5.0),
            headers={"accept": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def lookup(self, locations: Sequence[Coordinate]) -> list[float]:
        if not locations:
            return []
        data = await request_json(
            self._client,
            "POST",
            f"{self.base_url}/api/v1/lookup",
            provider="elevation",
            reason_code="elevation_provider_unavailable",
            json_body={"locations": [{"latitude": c.lat, "longitude": c.lon} for c in locations]},
            max_retries=self.max_retries,
        )
        results: Any = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list) or len(results) != len(locations):
            raise ProviderError(
                reason_code="elevation_response_invalid",
                message="Elevation provider returned a mismatched result set",
                details={"expected": len(locations)},
            )
        out: list[float] = []
        for item in results:
            value = item.get("elevation") if isinstance(item, dict) else None
            if not isinstance(value, (int, float)):
                raise ProviderError(
                    reason_code="elevation_response_invalid",
                    message="Elevation provider returned a non-numeric elevation",
                )
            out.append(float(value))
        return out

    async def grade_summary(self, route: Route) -> GradeSummary:
        locations, offsets = _endpoint_samples(route)
        elevations = await self.lookup(locations)
        pairs: list[tuple[float, float] | None] = []
        for offset in offsets:
            if offset is None:
                pairs.append(None)
            else:
                pairs.append((elevations[offset], elevations[offset + 1]))
        return summarize_grades(route, pairs)
