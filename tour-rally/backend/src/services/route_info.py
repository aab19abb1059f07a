from __future__ import annotations

import asyncio
from typing import Any, List, Optional

from loguru import logger

from models import PointOfInterest, RouteInfo, RouteSegment


WALKABLE_SECONDS = 30 * 60


def recommend(segment: RouteSegment) -> RouteSegment:
    transit, walking = segment.transit, segment.walking
    if transit and walking:
        if transit.duration_value < walking.duration_value:
            method, info, reason = "transit", transit, "Public transport is faster"
        elif walking.duration_value < WALKABLE_SECONDS:
            method, info, reason = "walking", walking, "Close enough to walk"
        else:
            method, info, reason = "transit", transit, "Walking would take too long"
    elif transit:
        method, info, reason = "transit", transit, "Use public transport"
    elif walking:
        method, info, reason = "walking", walking, "Reachable on foot"
    else:
        return segment
    segment.recommended_method = method
    segment.recommended_duration = info.duration
    segment.recommended_reason = reason
    return segment


async def _lookup(directions: Any, origin, destination, mode: str, timeout: float) -> Optional[RouteInfo]:
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(directions.route, origin, destination, mode), timeout=timeout
        )
    except asyncio.TimeoutError:
        logger.warning("directions timed out after {}s mode={}", timeout, mode)
    except Exception as exc:
        logger.warning("directions failed mode={}: {}", mode, exc)
    return None


async def build_segment(
    directions: Any,
    from_spot: PointOfInterest,
    to_spot: PointOfInterest,
    *,
    timeout: float,
) -> RouteSegment:
    transit, walking = await asyncio.gather(
        _lookup(directions, from_spot.coordinates, to_spot.coordinates, "transit", timeout),
        _lookup(directions, from_spot.coordinates, to_spot.coordinates, "walking", timeout),
    )
    segment = RouteSegment(
        from_name=from_spot.name,
        to_name=to_spot.name,
        from_coordinates=from_spot.coordinates,
        to_coordinates=to_spot.coordinates,
        transit=transit,
        walking=walking,
    )
    return recommend(segment)


async def build_route_segments(
    directions: Any,
    stops: List[PointOfInterest],
    *,
    timeout: float = 10.0,
) -> List[RouteSegment]:
    """Route detail for each consecutive pair; failed legs come back 'unknown'."""
    if directions is None or len(stops) < 2:
        return []
    segments = await asyncio.gather(
        *(
            build_segment(directions, stops[i], stops[i + 1], timeout=timeout)
            for i in range(len(stops) - 1)
        )
    )
    unknown = sum(1 for s in segments if s.recommended_method == "unknown")
    if unknown:
        logger.info("route segments built total={} unknown={}", len(segments), unknown)
    return list(segments)
