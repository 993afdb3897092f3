from __future__ import annotations

import math
import random

import pytest

from ride_comfort.geometry import (
    Coordinate,
    haversine_m,
    nearest_point,
    planar_distance_m,
    polyline_bearing_deg,
    polyline_length_m,
    progress,
    signed_turn_radians,
    snap,
    subsample,
)

ORIGIN = Coordinate(lat=51.5072, lon=-0.1276)


def _random_polyline(rng: random.Random, n: int) -> list[Coordinate]:
    return [
        Coordinate(lat=ORIGIN.lat + rng.uniform(-0.01, 0.01), lon=ORIGIN.lon + rng.uniform(-0.01, 0.01))
        for _ in range(n)
    ]


def test_nearest_point_needs_two_vertices() -> None:
    assert nearest_point(ORIGIN, []) is None
    assert nearest_point(ORIGIN, [ORIGIN]) is None
    assert snap(ORIGIN, [ORIGIN]) == ORIGIN


def test_nearest_point_never_beats_any_vertex_and_t_is_clamped() -> None:
    rng = random.Random(20240611)
    for _ in range(200):
        polyline = _random_polyline(rng, rng.randint(2, 9))
        query = _random_polyline(rng, 1)[0]
        projection = nearest_point(query, polyline)
        assert projection is not None
        assert 0.0 <= projection.t <= 1.0
        assert 0 <= projection.segment_index < len(polyline) - 1
        for vertex in polyline:
            assert projection.distance_m <= planar_distance_m(query, vertex) + 1e-6


def test_zero_length_segment_degenerates_to_point_distance() -> None:
    a = Coordinate(lat=51.5, lon=-0.12)
    query = Coordinate(lat=51.501, lon=-0.12)
    projection = nearest_point(query, [a, a])
    assert projection is not None
    assert projection.t == 0.0
    assert projection.coordinate == a
    assert projection.distance_m == pytest.approx(planar_distance_m(query, a), rel=1e-9)


def test_ties_resolve_to_lowest_segment_index() -> None:
    a = Coordinate(lat=51.50, lon=-0.12)
    b = Coordinate(lat=51.51, lon=-0.12)
    far = Coordinate(lat=51.60, lon=0.20)
    # Segments 0 and 3 are the same A->B leg.
    polyline = [a, b, far, a, b]
    query = Coordinate(lat=51.505, lon=-0.1195)
    projection = nearest_point(query, polyline)
    assert projection is not None
    assert projection.segment_index == 0


def test_snap_lands_on_segment() -> None:
    a = Coordinate(lat=51.50, lon=-0.12)
    b = Coordinate(lat=51.51, lon=-0.12)
    snapped = snap(Coordinate(lat=51.505, lon=-0.118), [a, b])
    assert snapped.lon == pytest.approx(-0.12, abs=1e-12)
    assert snapped.lat == pytest.approx(51.505, abs=1e-6)


def test_subsample_keeps_endpoints_and_respects_cap() -> None:
    polyline = [Coordinate(lat=51.0 + i * 1e-5, lon=-0.1) for i in range(12_000)]
    thinned = subsample(polyline, 5_000)
    assert len(thinned) <= 5_000
    assert thinned[0] == polyline[0]
    assert thinned[-1] == polyline[-1]
    assert subsample(polyline[:10], 5_000) == polyline[:10]

    with pytest.raises(ValueError):
        subsample(polyline, 1)


def test_nearest_point_on_capped_polyline_reports_capped_index() -> None:
    polyline = [Coordinate(lat=51.0 + i * 1e-5, lon=-0.1) for i in range(300)]
    projection = nearest_point(polyline[-1], polyline, vertex_cap=10)
    assert projection is not None
    assert projection.segment_index <= 8
    assert projection.distance_m == pytest.approx(0.0, abs=1e-6)


def test_progress_is_monotonic_and_complements_remaining() -> None:
    a = Coordinate(lat=51.500, lon=-0.12)
    b = Coordinate(lat=51.505, lon=-0.12)
    c = Coordinate(lat=51.505, lon=-0.11)
    polyline = [a, b, c]

    walk = [Coordinate(lat=51.500 + i * 0.0005, lon=-0.12) for i in range(11)]
    walk += [Coordinate(lat=51.505, lon=-0.12 + i * 0.001) for i in range(1, 11)]

    last = -1.0
    for point in walk:
        p = progress(polyline, point)
        assert p is not None
        assert p.fraction >= last - 1e-12
        last = p.fraction
        assert p.fraction + (p.remaining_m / p.total_m) == pytest.approx(1.0, abs=1e-9)

    start = progress(polyline, a)
    end = progress(polyline, c)
    assert start is not None and end is not None
    assert start.fraction == pytest.approx(0.0, abs=1e-9)
    assert end.fraction == pytest.approx(1.0, abs=1e-9)
    assert end.total_m == pytest.approx(polyline_length_m(polyline))


def test_progress_on_degenerate_polyline() -> None:
    assert progress([ORIGIN], ORIGIN) is None
    p = progress([ORIGIN, ORIGIN], Coordinate(lat=51.6, lon=-0.1))
    assert p is not None
    assert p.fraction == 0.0
    assert p.remaining_m == 0.0


def test_haversine_one_degree_of_latitude() -> None:
    d = haversine_m(Coordinate(lat=0.0, lon=0.0), Coordinate(lat=1.0, lon=0.0))
    assert d == pytest.approx(111_195.0, rel=1e-3)


def test_bearings_and_signed_turns() -> None:
    north = polyline_bearing_deg([Coordinate(lat=51.0, lon=0.0), Coordinate(lat=51.1, lon=0.0)])
    assert north == pytest.approx(0.0, abs=1e-9)
    assert polyline_bearing_deg([ORIGIN]) is None
    assert polyline_bearing_deg([ORIGIN, ORIGIN]) is None

    assert signed_turn_radians(0.0, 90.0) == pytest.approx(math.pi / 2)
    assert signed_turn_radians(90.0, 0.0) == pytest.approx(-math.pi / 2)
    assert signed_turn_radians(0.0, 180.0) == pytest.approx(math.pi)
    assert signed_turn_radians(10.0, 350.0) == pytest.approx(math.radians(-20.0))
