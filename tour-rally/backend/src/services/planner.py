from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any, Dict, List, Optional

from loguru import logger

from config import Configuration
from errors import DirectionsError, InputError, NotFoundError
from models import (
    Coordinates,
    PlanResult,
    PointOfInterest,
    PreferenceProfile,
    RouteInfo,
    RouteSegment,
    ScheduledStop,
)
from services.catalog import index_by_id, load_catalog
from services.content import ContentProvider
from services.directions import DirectionsClient
from services.route_info import build_route_segments
from services.scheduler import schedule_itinerary
from services.selector import plan_itinerary
from services.spot_parser import validate_records
from utils import Clock, SystemClock


class TourPlanner:
    """Planning operations over one catalog snapshot and its providers."""

    def __init__(
        self,
        cfg: Configuration,
        catalog: Optional[List[PointOfInterest]] = None,
        content: Optional[ContentProvider] = None,
        directions: Optional[DirectionsClient] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.cfg = cfg
        self.catalog = catalog if catalog is not None else load_catalog(cfg.catalog_path)
        self.content = content
        self.directions = directions
        self.clock = clock or SystemClock(cfg.timezone)
        self._by_id = index_by_id(self.catalog)

    @classmethod
    def from_config(cls, cfg: Configuration, clock: Optional[Clock] = None) -> "TourPlanner":
        content = ContentProvider(cfg) if cfg.content_enabled() else None
        directions = DirectionsClient(cfg) if cfg.google_maps_api_key else None
        if content is None:
            logger.info("no LLM configured; plans use the catalog only")
        if directions is None:
            logger.info("GOOGLE_MAPS_API_KEY unset; route segments will be empty")
        return cls(cfg, content=content, directions=directions, clock=clock)

    def list_spots(self, area: Optional[str] = None) -> List[PointOfInterest]:
        if not area:
            return list(self.catalog)
        return [s for s in self.catalog if s.area == area.lower()]

    def get_spot(self, spot_id: str) -> PointOfInterest:
        spot = self._by_id.get(spot_id)
        if spot is None:
            raise NotFoundError(f"unknown spot id {spot_id!r}")
        return spot

    def resolve_stops(self, spot_ids: List[str]) -> List[PointOfInterest]:
        if not spot_ids:
            raise InputError("spot_ids must not be empty")
        return [self.get_spot(sid) for sid in spot_ids]

    def resolve_itinerary(
        self,
        spot_ids: Optional[List[str]] = None,
        raw_stops: Optional[List[Dict[str, Any]]] = None,
    ) -> List[PointOfInterest]:
        """Stops from full records (as returned by ``plan``) or catalog ids.

        Records whose id is in the catalog are replaced by the catalog entry;
        other records lose any coupons they carry, since rewards are only
        issued from catalog templates.
        """
        if not raw_stops:
            return self.resolve_stops(spot_ids or [])
        stops: list[PointOfInterest] = []
        for spot in validate_records(raw_stops):
            known = self._by_id.get(spot.id)
            stops.append(known if known is not None else replace(spot, coupons=[]))
        if not stops:
            raise InputError("no valid stops in request")
        return stops

    async def plan(self, profile: PreferenceProfile) -> PlanResult:
        return await plan_itinerary(
            self.catalog,
            profile,
            self.content,
            timeout=float(self.cfg.content_timeout),
        )

    def schedule(self, stops: List[PointOfInterest], start_time: str, start_location: str) -> List[ScheduledStop]:
        return schedule_itinerary(stops, start_time, start_location, on_date=self.clock.now().date())

    async def route_segments(self, stops: List[PointOfInterest]) -> List[RouteSegment]:
        return await build_route_segments(
            self.directions,
            stops,
            timeout=float(self.cfg.directions_timeout),
        )

    async def route_info(self, origin: Coordinates | str, destination: Coordinates | str, mode: str = "transit") -> RouteInfo:
        if self.directions is None:
            raise DirectionsError("directions provider is not configured")
        return await asyncio.to_thread(self.directions.route, origin, destination, mode)
