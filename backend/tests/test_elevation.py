from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest

from ride_comfort.elevation import ElevationClient, summarize_grades
from ride_comfort.geometry import Coordinate
from ride_comfort.provider_errors import ProviderError
from ride_comfort.route_model import Route, RouteStep


def _route() -> Route:
    pts = [Coordinate(lat=51.5 + i * 0.001, lon=-0.12) for i in range(4)]
    steps = (
        RouteStep(index=0, polyline=(pts[0], pts[1]), distance_m=100.0),
        RouteStep(index=1, polyline=(pts[1], pts[2]), distance_m=100.0),
        RouteStep(index=2, polyline=(pts[2],), distance_m=0.0),
    )
    return Route(route_id="elev", steps=steps)


def test_summarize_grades() -> None:
    summary = summarize_grades(_route(), [(10.0, 13.0), (13.0, 5.0), None])
    assert summary.step_grades_percent == pytest.approx((3.0, -8.0, 0.0))
    assert summary.braking_mask == (False, True, False)
    assert summary.mean_grade_percent == pytest.approx(-2.5)
    assert summary.max_grade_percent == pytest.approx(8.0)
    assert summary.slope_penalty == pytest.approx(5.0 / 9.0)
    assert summary.ascent_m == 3.0
    assert summary.descent_m == 8.0
    assert summary.grade_for_step(1) == pytest.approx(-8.0)


def test_summarize_grades_clamps_dem_noise() -> None:
    summary = summarize_grades(_route(), [(0.0, 80.0)])
    assert summary.step_grades_percent[0] == 35.0
    assert summary.slope_penalty == 1.0


def test_grade_summary_uses_step_endpoints() -> None:
    bodies: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        bodies.append(body)
        elevations = [10.0, 13.0, 13.0, 5.0]
        return httpx.Response(200, json={"results": [{"elevation": e} for e in elevations]})

    async def run() -> Any:
        client = ElevationClient(base_url="http://elev.test", transport=httpx.MockTransport(handler))
        try:
            return await client.grade_summary(_route())
        finally:
            await client.aclose()

    summary = asyncio.run(run())
    assert len(bodies[0]["locations"]) == 4
    assert bodies[0]["locations"][0] == {"latitude": 51.5, "longitude": -0.12}
    assert summary.step_grades_percent == pytest.approx((3.0, -8.0, 0.0))


def test_mismatched_result_set_is_invalid() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"results": [{"elevation": 1.0}]})

    async def run() -> None:
        client = ElevationClient(base_url="http://elev.test", transport=httpx.MockTransport(handler))
        try:
            await client.lookup([Coordinate(lat=0, lon=0), Coordinate(lat=1, lon=1)])
        finally:
            await client.aclose()

    with pytest.raises(ProviderError) as exc:
        asyncio.run(run())
    assert exc.value.reason_code == "elevation_response_invalid"


def test_lookup_of_nothing_skips_the_network() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    async def run() -> list[float]:
        client = ElevationClient(base_url="http://elev.test", transport=httpx.MockTransport(handler))
        try:
            return await client.lookup([])
        finally:
            await client.aclose()

    assert asyncio.run(run()) == []
