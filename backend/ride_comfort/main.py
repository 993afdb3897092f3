from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Annotated

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from .elevation import ElevationClient
from .geocoding import GeocoderClient, Place
from .logging_utils import log_event
from .lru_cache import BoundedLRUCache
from .matcher import MapMatcher
from .models import (
    GeocodeResponse,
    LatLng,
    LocationSampleRequest,
    LocationSampleResponse,
    MotionBatchRequest,
    MotionBatchResponse,
    PlaceOut,
    RideModeOut,
    RouteContextRequest,
    RoutePlanRequest,
    RouteScoresResponse,
    SegmentStatOut,
    StepScoreOut,
)
from .provider_errors import ProviderError
from .ride_session import RideSession, StepScore
from .route_context import RouteContextBuilder
from .route_model import FLAT_GRADE, GradeSummary
from .routing_osrm import OSRMClient
from .scoring import RIDE_MODE_TUNING, RideMode
from .segment_store import SegmentStore, build_segment_store
from .settings import settings
from .smoothness import SmoothnessAggregator


def build_ride_session(store: SegmentStore) -> RideSession:
    return RideSession(
        builder=RouteContextBuilder([]),
        store=store,
        matcher=MapMatcher(store),
        aggregator=SmoothnessAggregator(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.osrm = OSRMClient(
        base_url=settings.osrm_base_url,
        profile=settings.osrm_profile,
        timeout_s=settings.provider_timeout_s,
        max_retries=settings.provider_max_retries,
    )
    app.state.elevation = ElevationClient(
        base_url=settings.elevation_base_url,
        timeout_s=settings.provider_timeout_s,
        max_retries=settings.provider_max_retries,
    )
    app.state.geocoder = GeocoderClient(
        base_url=settings.geocoder_base_url,
        cache=BoundedLRUCache[str, tuple[Place, ...]](settings.lookup_cache_max_entries),
        timeout_s=settings.provider_timeout_s,
        max_retries=settings.provider_max_retries,
    )
    app.state.store = build_segment_store()
    app.state.session = build_ride_session(app.state.store)
    yield
    await app.state.osrm.aclose()
    await app.state.elevation.aclose()
    await app.state.geocoder.aclose()


app = FastAPI(title="Ride Comfort Router", version="0.3.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _state(request: Request, name: str, label: str):
    value = getattr(request.app.state, name, None)  # type: ignore[attr-defined]
    if value is None:
        raise HTTPException(status_code=503, detail=f"{label} not initialised")
    return value


def osrm_client(request: Request) -> OSRMClient:
    return _state(request, "osrm", "OSRM client")


def elevation_client(request: Request) -> ElevationClient:
    return _state(request, "elevation", "Elevation client")


def geocoder_client(request: Request) -> GeocoderClient:
    return _state(request, "geocoder", "Geocoder client")


def segment_store(request: Request) -> SegmentStore:
    return _state(request, "store", "Segment store")


def ride_session(request: Request) -> RideSession:
    return _state(request, "session", "Ride session")


OSRMDep = Annotated[OSRMClient, Depends(osrm_client)]
ElevationDep = Annotated[ElevationClient, Depends(elevation_client)]
GeocoderDep = Annotated[GeocoderClient, Depends(geocoder_client)]
StoreDep = Annotated[SegmentStore, Depends(segment_store)]
SessionDep = Annotated[RideSession, Depends(ride_session)]


def _scores_response(session: RideSession, scores: list[StepScore]) -> RouteScoresResponse:
    route = session.route
    return RouteScoresResponse(
        route_id=route.route_id if route is not None else None,
        mode=session.mode,
        steps=[StepScoreOut.from_score(s) for s in scores],
    )


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/ride-modes", response_model=list[RideModeOut])
async def list_ride_modes() -> list[RideModeOut]:
    return [
        RideModeOut(
            id=mode,
            label=tuning.label,
            detail=tuning.detail,
            smoothness_weight=tuning.smoothness_weight,
            max_grade_percent=tuning.max_grade_percent,
        )
        for mode, tuning in RIDE_MODE_TUNING.items()
    ]


@app.post("/route/context", response_model=RouteScoresResponse)
async def route_context(req: RouteContextRequest, session: SessionDep) -> RouteScoresResponse:
    t0 = time.perf_counter()
    route = req.route.to_route()
    request_tags = req.route.attribute_provider()
    session.set_mode(req.mode)
    scores = await session.start_route(
        route,
        req.grade_summary.to_grade_summary(),
        attributes=[request_tags] if request_tags is not None else (),
    )

    log_event(
        "route_context_request",
        request_id=str(uuid.uuid4()),
        route_id=route.route_id,
        mode=req.mode.value,
        step_count=len(route.steps),
        tagged_steps=len(request_tags) if request_tags is not None else 0,
        duration_ms=round((time.perf_counter() - t0) * 1000.0, 2),
    )
    return _scores_response(session, scores)


@app.post("/route/plan", response_model=RouteScoresResponse)
async def route_plan(
    req: RoutePlanRequest,
    osrm: OSRMDep,
    elevation: ElevationDep,
    session: SessionDep,
) -> RouteScoresResponse:
    t0 = time.perf_counter()
    request_id = str(uuid.uuid4())

    try:
        route = await osrm.fetch_route(
            origin=req.origin.to_coordinate(),
            destination=req.destination.to_coordinate(),
            via=[p.to_coordinate() for p in req.via] or None,
        )
    except ProviderError as e:
        log_event(
            "route_plan_request",
            level=logging.WARNING,
            request_id=request_id,
            reason_code=e.reason_code,
            duration_ms=round((time.perf_counter() - t0) * 1000.0, 2),
        )
        raise HTTPException(status_code=502, detail=e.as_detail()) from e

    grade: GradeSummary = FLAT_GRADE
    if req.use_elevation:
        try:
            grade = await elevation.grade_summary(route)
        except ProviderError as e:
            # Grade is an enrichment; a flat profile still yields usable scores.
            log_event(
                "elevation_unavailable",
                level=logging.WARNING,
                request_id=request_id,
                route_id=route.route_id,
                reason_code=e.reason_code,
            )

    session.set_mode(req.mode)
    scores = await session.start_route(route, grade)

    log_event(
        "route_plan_request",
        request_id=request_id,
        route_id=route.route_id,
        mode=req.mode.value,
        step_count=len(route.steps),
        distance_m=round(route.distance_m, 1),
        slope_penalty=round(grade.slope_penalty, 4),
        duration_ms=round((time.perf_counter() - t0) * 1000.0, 2),
    )
    return _scores_response(session, scores)


@app.post("/ride/motion", response_model=MotionBatchResponse)
async def ride_motion(req: MotionBatchRequest, session: SessionDep) -> MotionBatchResponse:
    for sample in sorted(req.samples, key=lambda s: s.t):
        session.ingest_motion(sample.magnitude, sample.t)
    reading = session.snapshot()
    return MotionBatchResponse(
        accepted=len(req.samples),
        roughness_rms=reading["latest_roughness_rms"],  # type: ignore[arg-type]
        stability=reading["latest_stability"],  # type: ignore[arg-type]
    )


@app.post("/ride/location", response_model=LocationSampleResponse)
async def ride_location(req: LocationSampleRequest, session: SessionDep) -> LocationSampleResponse:
    scored = session.ingest_location(req.position.to_coordinate(), req.t, speed_mps=req.speed_mps)
    if scored is None:
        return LocationSampleResponse(matched=False)
    return LocationSampleResponse(matched=True, step=StepScoreOut.from_score(scored))


@app.get("/ride/scores", response_model=RouteScoresResponse)
async def ride_scores(
    session: SessionDep,
    now: Annotated[float | None, Query(description="Evaluate freshness at this epoch time")] = None,
) -> RouteScoresResponse:
    if session.route is None:
        raise HTTPException(
            status_code=404,
            detail={"reason_code": "route_not_active", "message": "No active route"},
        )
    return _scores_response(session, session.live_scores(now=now))


@app.get("/ride/segments/{step_id}", response_model=SegmentStatOut)
async def ride_segment(
    step_id: str,
    store: StoreDep,
    now: Annotated[float | None, Query()] = None,
) -> SegmentStatOut:
    stat = store.read(step_id, now=now)
    if stat is None:
        raise HTTPException(
            status_code=404,
            detail={"reason_code": "step_not_found", "message": f"No statistics for step '{step_id}'"},
        )
    return SegmentStatOut.from_stat(stat)


@app.post("/ride/reset")
async def ride_reset(session: SessionDep) -> dict[str, str]:
    session.reset()
    log_event("ride_reset")
    return {"status": "reset"}


@app.get("/geocode", response_model=GeocodeResponse)
async def geocode(
    geocoder: GeocoderDep,
    q: Annotated[str, Query(min_length=1, max_length=200)],
) -> GeocodeResponse:
    try:
        places = await geocoder.search(q)
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=e.as_detail()) from e
    return GeocodeResponse(
        query=q,
        places=[
            PlaceOut(name=p.name, position=LatLng(lat=p.coordinate.lat, lon=p.coordinate.lon))
            for p in places
        ],
    )


@app.get("/diagnostics")
async def diagnostics(session: SessionDep, geocoder: GeocoderDep) -> dict[str, object]:
    return {
        "session": session.snapshot(),
        "lookup_cache": geocoder.cache.snapshot(),
        "ride_modes": [m.value for m in RideMode],
    }


def serve() -> None:
    uvicorn.run("ride_comfort.main:app", host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    serve()
