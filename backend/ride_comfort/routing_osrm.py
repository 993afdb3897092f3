# backend/ride_comfort/routing_osrm.py
from __future__ import annotations

import hashlib
from typing import Any

import httpx

from .geometry import Coordinate
from .provider_errors import ProviderError
from .provider_http import request_json
from .route_model import Route, RouteStep


def _geojson_polyline(geometry: Any) -> tuple[Coordinate, ...]:
    if not isinstance(geometry, dict):
        return ()
    coords = geometry.get("coordinates")
    if not isinstance(coords, list):
        return ()
    out: list[Coordinate] = []
    for pt in coords:
        if (
            isinstance(pt, (list, tuple))
            and len(pt) >= 2
            and isinstance(pt[0], (int, float))
            and isinstance(pt[1], (int, float))
        ):
            # GeoJSON is [lon, lat]
            out.append(Coordinate(lat=float(pt[1]), lon=float(pt[0])))
    return tuple(out)


def maneuver_instruction(step: dict[str, Any]) -> str | None:
    """Compose short display text from an OSRM step's maneuver."""
    maneuver = step.get("maneuver") or {}
    kind = str(maneuver.get("type") or "").strip()
    modifier = str(maneuver.get("modifier") or "").strip()
    name = str(step.get("name") or "").strip()

    if kind == "depart":
        text = "Head out"
    elif kind == "arrive":
        return "Arrive at destination"
    elif kind in {"turn", "end of road", "fork", "on ramp", "off ramp"} and modifier:
        text = "Make a U-turn" if modifier == "uturn" else f"Turn {modifier}"
    elif kind in {"roundabout", "rotary"}:
        exit_no = maneuver.get("exit")
        text = f"Take exit {exit_no} at the roundabout" if exit_no else "Enter the roundabout"
    elif kind in {"continue", "new name", "notification"}:
        text = "Continue"
    elif modifier:
        text = f"Keep {modifier}"
    elif kind:
        text = kind.capitalize()
    else:
        return None
    return f"{text} onto {name}" if name else text


def route_id_for(route: dict[str, Any]) -> str:
    geom = route.get("geometry")
    seed = repr(geom if geom is not None else route.get("legs"))
    return "osrm_" + hashlib.sha1(seed.encode("utf-8")).hexdigest()[:12]


def parse_route(route: dict[str, Any], *, route_id: str | None = None) -> Route:
    """Turn one OSRM route object (fetched with steps=true) into a `Route`."""
    legs = route.get("legs")
    if not isinstance(legs, list) or not legs:
        raise ProviderError(reason_code="routing_response_invalid", message="OSRM route has no legs")

    steps: list[RouteStep] = []
    for leg in legs:
        for raw in (leg or {}).get("steps", []) or []:
            if not isinstance(raw, dict):
                continue
            steps.append(
                RouteStep(
                    index=len(steps),
                    polyline=_geojson_polyline(raw.get("geometry")),
                    instruction=maneuver_instruction(raw),
                    distance_m=float(raw.get("distance") or 0.0),
                    duration_s=float(raw.get("duration") or 0.0),
                )
            )
    if not steps:
        raise ProviderError(reason_code="routing_response_invalid", message="OSRM route has no steps")

    return Route(
        route_id=route_id or route_id_for(route),
        steps=tuple(steps),
        distance_m=float(route.get("distance") or 0.0),
        duration_s=float(route.get("duration") or 0.0),
    )


class OSRMClient:
    def __init__(
        self,
        *,
        base_url: str,
        profile: str = "cycling",
        timeout_s: float = 15.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        self.max_retries = max_retries
        # trust_env=False keeps proxy env vars from hijacking localhost / service-name requests.
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s, connect=5.0),
            trust_env=False,
            headers={"accept": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_route(
        self,
        *,
        origin: Coordinate,
        destination: Coordinate,
        via: list[Coordinate] | None = None,
    ) -> Route:
        coords_parts = [f"{origin.lon},{origin.lat}"]
        if via:
            coords_parts.extend(f"{c.lon},{c.lat}" for c in via)
        coords_parts.append(f"{destination.lon},{destination.lat}")
        url = f"{self.base_url}/route/v1/{self.profile}/{';'.join(coords_parts)}"

        data = await request_json(
            self._client,
            "GET",
            url,
            provider="OSRM",
            reason_code="routing_provider_unavailable",
            params={
                "overview": "full",
                "geometries": "geojson",
                "steps": "true",
                "alternatives": "false",
            },
            max_retries=self.max_retries,
        )
        if not isinstance(data, dict) or data.get("code") != "Ok":
            code = data.get("code") if isinstance(data, dict) else None
            message = data.get("message") if isinstance(data, dict) else None
            raise ProviderError(
                reason_code="routing_no_route",
                message=f"OSRM error code={code} message={message}",
            )
        routes = data.get("routes", [])
        if not isinstance(routes, list) or not routes:
            raise ProviderError(reason_code="routing_no_route", message="OSRM returned no routes")
        return parse_route(routes[0])
