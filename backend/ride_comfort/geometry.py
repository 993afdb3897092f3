from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

EARTH_RADIUS_M = 6_371_000.0
DEFAULT_VERTEX_CAP = 5_000


@dataclass(frozen=True)
class Coordinate:
    """WGS84 position in degrees."""

    lat: float
    lon: float


Polyline = Sequence[Coordinate]


@dataclass(frozen=True)
class Projection:
    coordinate: Coordinate
    segment_index: int
    t: float
    distance_m: float


@dataclass(frozen=True)
class Progress:
    projection: Projection
    fraction: float
    traversed_m: float
    remaining_m: float
    total_m: float


def _clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def haversine_m(a: Coordinate, b: Coordinate) -> float:
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    dphi = phi2 - phi1
    dlambda = math.radians(b.lon - a.lon)
    h = (
        math.sin(dphi / 2.0) ** 2
        + (math.cos(phi1) * math.cos(phi2) * (math.sin(dlambda / 2.0) ** 2))
    )
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(max(0.0, h))))


def planar_distance_m(origin: Coordinate, other: Coordinate) -> float:
    """Equirectangular distance measured in the flat frame centred on `origin`.

    This is the metric `nearest_point` minimises, so it is the one to compare
    projection distances against.
    """
    k = EARTH_RADIUS_M * math.cos(math.radians(origin.lat))
    dx = math.radians(other.lon - origin.lon) * k
    dy = math.radians(other.lat - origin.lat) * EARTH_RADIUS_M
    return math.hypot(dx, dy)


def _to_xy_m(points: Polyline, origin: Coordinate) -> np.ndarray:
    arr = np.asarray([(p.lat, p.lon) for p in points], dtype=np.float64)
    k = EARTH_RADIUS_M * math.cos(math.radians(origin.lat))
    x = np.radians(arr[:, 1] - origin.lon) * k
    y = np.radians(arr[:, 0] - origin.lat) * EARTH_RADIUS_M
    return np.column_stack((x, y))


def subsample(polyline: Polyline, cap: int = DEFAULT_VERTEX_CAP) -> list[Coordinate]:
    """Uniformly thin `polyline` to at most `cap` vertices, keeping both endpoints."""
    if cap < 2:
        raise ValueError("vertex cap must be at least 2")
    points = list(polyline)
    if len(points) <= cap:
        return points
    idx = np.unique(np.rint(np.linspace(0, len(points) - 1, num=cap)).astype(np.int64))
    return [points[int(i)] for i in idx]


def nearest_point(
    coordinate: Coordinate,
    polyline: Polyline,
    *,
    vertex_cap: int = DEFAULT_VERTEX_CAP,
) -> Projection | None:
    """Project `coordinate` onto the closest segment of `polyline`.

    Returns None for polylines with fewer than two vertices. Ties resolve to
    the lowest segment index.
    """
    points = subsample(polyline, vertex_cap)
    if len(points) < 2:
        return None

    xy = _to_xy_m(points, coordinate)
    a = xy[:-1]
    ab = xy[1:] - a
    denom = np.einsum("ij,ij->i", ab, ab)
    raw_t = np.divide(
        -np.einsum("ij,ij->i", a, ab),
        denom,
        out=np.zeros_like(denom),
        where=denom > 0.0,
    )
    t = np.clip(raw_t, 0.0, 1.0)
    nearest = a + (ab * t[:, None])
    dist = np.hypot(nearest[:, 0], nearest[:, 1])

    # argmin returns the first occurrence, which is the lowest segment index.
    best = int(np.argmin(dist))
    best_t = float(t[best])
    start = points[best]
    end = points[best + 1]
    snapped = Coordinate(
        lat=start.lat + ((end.lat - start.lat) * best_t),
        lon=start.lon + ((end.lon - start.lon) * best_t),
    )
    return Projection(
        coordinate=snapped,
        segment_index=best,
        t=best_t,
        distance_m=float(dist[best]),
    )


def snap(coordinate: Coordinate, polyline: Polyline, *, vertex_cap: int = DEFAULT_VERTEX_CAP) -> Coordinate:
    projection = nearest_point(coordinate, polyline, vertex_cap=vertex_cap)
    return coordinate if projection is None else projection.coordinate


def segment_lengths_m(polyline: Polyline) -> list[float]:
    points = list(polyline)
    return [haversine_m(points[i], points[i + 1]) for i in range(len(points) - 1)]


def polyline_length_m(polyline: Polyline) -> float:
    return float(sum(segment_lengths_m(polyline)))


def progress(
    along: Polyline,
    from_coordinate: Coordinate,
    *,
    vertex_cap: int = DEFAULT_VERTEX_CAP,
) -> Progress | None:
    """Fraction of `along` already travelled at the projection of `from_coordinate`."""
    points = subsample(along, vertex_cap)
    projection = nearest_point(from_coordinate, points, vertex_cap=vertex_cap)
    if projection is None:
        return None

    lengths = segment_lengths_m(points)
    total = float(sum(lengths))
    traversed = float(sum(lengths[: projection.segment_index]))
    traversed += lengths[projection.segment_index] * projection.t
    fraction = _clamp(traversed / total, 0.0, 1.0) if total > 0.0 else 0.0
    return Progress(
        projection=projection,
        fraction=fraction,
        traversed_m=traversed,
        remaining_m=max(0.0, total - traversed),
        total_m=total,
    )


def initial_bearing_deg(a: Coordinate, b: Coordinate) -> float:
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    dlambda = math.radians(b.lon - a.lon)
    y = math.sin(dlambda) * math.cos(phi2)
    x = (math.cos(phi1) * math.sin(phi2)) - (math.sin(phi1) * math.cos(phi2) * math.cos(dlambda))
    theta = math.degrees(math.atan2(y, x))
    return (theta + 360.0) % 360.0


def polyline_bearing_deg(polyline: Polyline) -> float | None:
    """Coarse heading of a step: first vertex to last vertex."""
    points = list(polyline)
    if len(points) < 2:
        return None
    first, last = points[0], points[-1]
    if first == last:
        return None
    return initial_bearing_deg(first, last)


def signed_turn_radians(previous_bearing_deg: float, next_bearing_deg: float) -> float:
    """Smallest signed heading change, positive clockwise, in (-pi, pi]."""
    delta = (next_bearing_deg - previous_bearing_deg + 180.0) % 360.0 - 180.0
    if delta == -180.0:
        delta = 180.0
    return math.radians(delta)


def midpoint(polyline: Polyline) -> Coordinate | None:
    """Middle vertex, or the mean of the two middle vertices for even counts."""
    points = list(polyline)
    n = len(points)
    if n < 2:
        return None
    if n % 2 == 1:
        return points[n // 2]
    a, b = points[(n // 2) - 1], points[n // 2]
    return Coordinate(lat=(a.lat + b.lat) / 2.0, lon=(a.lon + b.lon) / 2.0)
