from __future__ import annotations

from dataclasses import dataclass

import httpx

from .geometry import Coordinate
from .lru_cache import BoundedLRUCache
from .provider_http import request_json


@dataclass(frozen=True)
class Place:
    name: str
    coordinate: Coordinate


def normalise_query(query: str) -> str:
    return " ".join(str(query or "").lower().split())


class GeocoderClient:
    """Nominatim-style place search, memoized per normalised query."""

    def __init__(
        self,
        *,
        base_url: str,
        cache: BoundedLRUCache[str, tuple[Place, ...]],
        timeout_s: float = 15.0,
        max_retries: int = 3,
        limit: int = 5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.cache = cache
        self.max_retries = max_retries
        self.limit = limit
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s, connect=5.0),
            headers={"accept": "application/json", "user-agent": "ride-comfort-router/0.3"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def search(self, query: str) -> tuple[Place, ...]:
        key = normalise_query(query)
        if not key:
            return ()
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        data = await request_json(
            self._client,
            "GET",
            f"{self.base_url}/search",
            provider="geocoder",
            reason_code="geocoder_unavailable",
            params={"q": key, "format": "jsonv2", "limit": str(self.limit)},
            max_retries=self.max_retries,
        )
        places: list[Place] = []
        for item in data if isinstance(data, list) else []:
            if not isinstance(item, dict):
                continue
            try:
                lat = float(item["lat"])
                lon = float(item["lon"])
            except (KeyError, TypeError, ValueError):
                continue
            name = str(item.get("display_name") or item.get("name") or key)
            places.append(Place(name=name, coordinate=Coordinate(lat=lat, lon=lon)))

        result = tuple(places)
        self.cache.set(key, result)
        return result
