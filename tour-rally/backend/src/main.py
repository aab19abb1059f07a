from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Optional, Union

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from config import Configuration
from errors import ExternalUnavailable, InputError, NotFoundError, TourError
from models import (
    REWARD_CATEGORIES,
    Coordinates,
    IssuedReward,
    LocationReading,
    PointOfInterest,
    PreferenceProfile,
    RouteSegment,
    ScheduledStop,
)
from services.planner import TourPlanner
from services.redis_store import RedisStore
from services.report import build_itinerary_report, build_progress_report
from services.rewards import RewardEngine
from services.store import InMemoryStore, VisitorStore
from services.tracker import ProgressTracker
from utils import Clock, SystemClock

load_dotenv()

app = FastAPI(title="Enoshima / Kamakura Tour Rally")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -- wiring -----------------------------------------------------------------

@lru_cache
def get_config() -> Configuration:
    cfg = Configuration.from_env()
    logger.info("cfg: {}", cfg.log_summary())
    return cfg


@lru_cache
def get_clock() -> Clock:
    return SystemClock(get_config().timezone)


@lru_cache
def get_store() -> VisitorStore:
    cfg = get_config()
    if cfg.store_backend.lower() == "redis":
        logger.info("using redis store at {}", cfg.redis_url)
        return RedisStore.from_url(cfg.redis_url, ttl_sec=cfg.store_ttl_sec)
    return InMemoryStore(ttl_sec=cfg.store_ttl_sec)


@lru_cache
def get_planner() -> TourPlanner:
    return TourPlanner.from_config(get_config(), clock=get_clock())


def get_rewards(
    store: VisitorStore = Depends(get_store),
    cfg: Configuration = Depends(get_config),
    clock: Clock = Depends(get_clock),
) -> RewardEngine:
    return RewardEngine(store, cfg, clock)


def get_tracker(
    store: VisitorStore = Depends(get_store),
    rewards: RewardEngine = Depends(get_rewards),
    cfg: Configuration = Depends(get_config),
    clock: Clock = Depends(get_clock),
) -> ProgressTracker:
    return ProgressTracker(store, rewards, cfg, clock)


# -- errors -----------------------------------------------------------------

def _failure(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"success": False, "error": message})


@app.exception_handler(RequestValidationError)
async def _on_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    return _failure(400, f"{where}: {first.get('msg', 'invalid request')}" if where else "invalid request")


@app.exception_handler(InputError)
async def _on_input(request: Request, exc: InputError) -> JSONResponse:
    return _failure(400, str(exc))


@app.exception_handler(NotFoundError)
async def _on_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return _failure(404, str(exc))


@app.exception_handler(ExternalUnavailable)
async def _on_external(request: Request, exc: ExternalUnavailable) -> JSONResponse:
    logger.warning("{} {} upstream unavailable: {}", request.method, request.url.path, exc)
    return _failure(503, str(exc))


@app.exception_handler(TourError)
@app.exception_handler(Exception)
async def _on_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("{} {} failed: {}", request.method, request.url.path, exc)
    return _failure(500, "internal error")


# -- payloads ---------------------------------------------------------------

class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PlanRequest(_Request):
    travel_style: str = Field(..., validation_alias=AliasChoices("travel_style", "travelStyle"))
    must_visit: str = Field("undecided", validation_alias=AliasChoices("must_visit", "mustVisit"))
    age: Optional[str] = None
    gender: Optional[str] = None
    what_to_do: Optional[str] = Field(None, validation_alias=AliasChoices("what_to_do", "whatToDo"))
    custom_spot: Optional[str] = Field(None, validation_alias=AliasChoices("custom_spot", "customSpot"))
    interests: List[str] = Field(default_factory=list)


class StopsRequest(_Request):
    spot_ids: List[str] = Field(default_factory=list, validation_alias=AliasChoices("spot_ids", "spotIds"))
    stops: List[Dict[str, Any]] = Field(default_factory=list, description="Full stop records as returned by /plan")


class ScheduleRequest(StopsRequest):
    start_time: str = Field(..., validation_alias=AliasChoices("start_time", "startTime"))
    start_location: str = Field("", validation_alias=AliasChoices("start_location", "startLocation"))
    include_routes: bool = Field(False, validation_alias=AliasChoices("include_routes", "includeRoutes"))


class LatLng(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class RouteInfoRequest(BaseModel):
    origin: Union[LatLng, str]
    destination: Union[LatLng, str]
    mode: str = Field("transit", pattern="^(transit|walking|driving|bicycling)$")


class AcceptRequest(StopsRequest):
    visitor_id: str = Field(..., min_length=1, validation_alias=AliasChoices("visitor_id", "visitorId"))


class CheckInRequest(AcceptRequest):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: float = Field(0.0, ge=0)
    timestamp: Optional[datetime] = None


def _spot(spot: PointOfInterest) -> Dict[str, Any]:
    return asdict(spot)


def _scheduled(item: ScheduledStop) -> Dict[str, Any]:
    return {
        "order": item.order,
        "start_time": item.start_time,
        "end_time": item.end_time,
        "travel_from_prev_minutes": item.travel_from_prev_minutes,
        "spot": _spot(item.spot),
    }


def _reward(reward: IssuedReward) -> Dict[str, Any]:
    return reward.to_record()


def _segment(seg: RouteSegment) -> Dict[str, Any]:
    return asdict(seg)


def _state(state) -> Dict[str, Any]:
    record = state.to_record()
    record["completion_percentage"] = state.completion_percentage
    return record


def _point(value: Union[LatLng, str]) -> Union[Coordinates, str]:
    if isinstance(value, LatLng):
        return Coordinates(lat=value.lat, lng=value.lng)
    return value


# -- routes -----------------------------------------------------------------

@app.get("/healthz")
def healthz(cfg: Configuration = Depends(get_config)) -> dict:
    return {
        "status": "ok",
        "config": cfg.log_summary(),
        "content_enabled": cfg.content_enabled(),
        "directions_enabled": bool(cfg.google_maps_api_key),
    }


@app.get("/spots")
def list_spots(area: Optional[str] = None, planner: TourPlanner = Depends(get_planner)) -> dict:
    spots = planner.list_spots(area)
    return {"success": True, "spots": [_spot(s) for s in spots]}


@app.post("/plan")
async def plan(req: PlanRequest, planner: TourPlanner = Depends(get_planner)) -> dict:
    profile = PreferenceProfile(
        travel_style=req.travel_style,
        must_visit=req.must_visit,
        age=req.age,
        gender=req.gender,
        what_to_do=req.what_to_do,
        custom_spot=req.custom_spot,
        interests=req.interests,
    )
    result = await planner.plan(profile)
    return {
        "success": True,
        "stops": [_spot(s) for s in result.stops],
        "notices": result.notices,
    }


@app.post("/schedule")
async def schedule(req: ScheduleRequest, planner: TourPlanner = Depends(get_planner)) -> dict:
    stops = planner.resolve_itinerary(req.spot_ids, req.stops)
    scheduled = planner.schedule(stops, req.start_time, req.start_location)
    segments: list[RouteSegment] = []
    if req.include_routes:
        segments = await planner.route_segments([s.spot for s in scheduled])
    return {
        "success": True,
        "schedule": [_scheduled(s) for s in scheduled],
        "routes": [_segment(s) for s in segments],
        "report_markdown": build_itinerary_report(scheduled, req.start_location, segments),
    }


@app.post("/route-info")
async def route_info(req: RouteInfoRequest, planner: TourPlanner = Depends(get_planner)) -> dict:
    info = await planner.route_info(_point(req.origin), _point(req.destination), req.mode)
    return {"success": True, "route": asdict(info)}


@app.post("/itinerary/accept")
def accept_itinerary(
    req: AcceptRequest,
    planner: TourPlanner = Depends(get_planner),
    tracker: ProgressTracker = Depends(get_tracker),
) -> dict:
    stops = planner.resolve_itinerary(req.spot_ids, req.stops)
    state, instant = tracker.accept_itinerary(req.visitor_id, stops)
    return {"success": True, "progress": _state(state), "instant_rewards": [_reward(r) for r in instant]}


@app.post("/check-in")
def check_in(
    req: CheckInRequest,
    planner: TourPlanner = Depends(get_planner),
    tracker: ProgressTracker = Depends(get_tracker),
) -> dict:
    stops = planner.resolve_itinerary(req.spot_ids, req.stops)
    reading = LocationReading(
        latitude=req.latitude,
        longitude=req.longitude,
        accuracy=req.accuracy,
        timestamp=req.timestamp,
    )
    outcome = tracker.submit_check_in(req.visitor_id, reading, stops)
    return {
        "success": outcome.result.success,
        "check_in": asdict(outcome.result),
        "progress": _state(outcome.state),
        "new_rewards": [_reward(r) for r in outcome.new_rewards],
    }


@app.get("/progress/{visitor_id}")
def progress(
    visitor_id: str,
    tracker: ProgressTracker = Depends(get_tracker),
    rewards: RewardEngine = Depends(get_rewards),
) -> dict:
    state = tracker.get_progress(visitor_id)
    available = rewards.list_available(visitor_id)
    return {
        "success": True,
        "progress": _state(state),
        "report_markdown": build_progress_report(state, available),
    }


@app.get("/rewards/{visitor_id}")
def list_rewards(
    visitor_id: str,
    spot_ids: Optional[List[str]] = Query(None),
    category: Optional[str] = None,
    rewards: RewardEngine = Depends(get_rewards),
) -> dict:
    if category and category not in REWARD_CATEGORIES:
        raise InputError(f"category must be one of {', '.join(REWARD_CATEGORIES)}")
    items = rewards.list_available(visitor_id, spot_ids)
    if category:
        items = [r for r in items if r.category == category]
    return {"success": True, "rewards": [_reward(r) for r in items]}


@app.get("/rewards/{visitor_id}/used")
def list_used_rewards(visitor_id: str, rewards: RewardEngine = Depends(get_rewards)) -> dict:
    return {"success": True, "rewards": [_reward(r) for r in rewards.list_used(visitor_id)]}


@app.post("/rewards/{visitor_id}/{reward_id}/validate")
def validate_reward(visitor_id: str, reward_id: str, rewards: RewardEngine = Depends(get_rewards)) -> dict:
    verdict = rewards.validate(visitor_id, reward_id)
    return {"success": verdict.valid, "valid": verdict.valid, "message": verdict.message}


@app.post("/rewards/{visitor_id}/{reward_id}/redeem")
def redeem_reward(visitor_id: str, reward_id: str, rewards: RewardEngine = Depends(get_rewards)) -> dict:
    result = rewards.redeem(visitor_id, reward_id)
    return {
        "success": result.success,
        "message": result.message,
        "reward": _reward(result.reward) if result.reward else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)
