from __future__ import annotations

import asyncio
import time

from errors import DirectionsError
from models import Coordinates, PointOfInterest, RouteInfo, RouteSegment
from services.route_info import build_route_segments, recommend


def _info(seconds: int) -> RouteInfo:
    return RouteInfo(duration=f"{seconds // 60} mins", duration_value=seconds, distance="1 km", distance_value=1000)


def _segment(transit=None, walking=None) -> RouteSegment:
    c = Coordinates(35.3, 139.5)
    return RouteSegment(from_name="A", to_name="B", from_coordinates=c, to_coordinates=c, transit=transit, walking=walking)


def _stop(sid: str) -> PointOfInterest:
    return PointOfInterest(id=sid, name=sid, area="kamakura", category="temple", coordinates=Coordinates(35.3, 139.5))


class FakeDirections:
    def __init__(self, table, delay: float = 0.0):
        self.table = table
        self.delay = delay

    def route(self, origin, destination, mode="transit"):
        if self.delay:
            time.sleep(self.delay)
        value = self.table.get(mode)
        if value is None:
            raise DirectionsError(f"no {mode} route")
        return value


def test_recommend_prefers_faster_transit() -> None:
    seg = recommend(_segment(transit=_info(600), walking=_info(900)))
    assert seg.recommended_method == "transit"
    assert seg.recommended_duration == "10 mins"


def test_recommend_walk_when_short() -> None:
    seg = recommend(_segment(transit=_info(1200), walking=_info(1000)))
    assert seg.recommended_method == "walking"


def test_recommend_transit_when_walk_too_long() -> None:
    seg = recommend(_segment(transit=_info(2400), walking=_info(2000)))
    assert seg.recommended_method == "transit"


def test_recommend_single_or_none() -> None:
    assert recommend(_segment(walking=_info(3000))).recommended_method == "walking"
    assert recommend(_segment(transit=_info(3000))).recommended_method == "transit"
    assert recommend(_segment()).recommended_method == "unknown"


def test_segments_for_consecutive_pairs() -> None:
    directions = FakeDirections({"transit": _info(600), "walking": _info(900)})
    stops = [_stop("a"), _stop("b"), _stop("c")]
    segments = asyncio.run(build_route_segments(directions, stops, timeout=1.0))
    assert [(s.from_name, s.to_name) for s in segments] == [("a", "b"), ("b", "c")]
    assert all(s.recommended_method == "transit" for s in segments)


def test_failed_lookups_degrade_to_unknown() -> None:
    directions = FakeDirections({"walking": _info(500)})
    segments = asyncio.run(build_route_segments(directions, [_stop("a"), _stop("b")], timeout=1.0))
    assert segments[0].transit is None
    assert segments[0].recommended_method == "walking"

    nothing = asyncio.run(build_route_segments(FakeDirections({}), [_stop("a"), _stop("b")], timeout=1.0))
    assert nothing[0].recommended_method == "unknown"


def test_slow_provider_times_out() -> None:
    directions = FakeDirections({"transit": _info(600)}, delay=0.5)
    segments = asyncio.run(build_route_segments(directions, [_stop("a"), _stop("b")], timeout=0.05))
    assert segments[0].recommended_method == "unknown"


def test_no_provider_or_single_stop() -> None:
    assert asyncio.run(build_route_segments(None, [_stop("a"), _stop("b")])) == []
    assert asyncio.run(build_route_segments(FakeDirections({}), [_stop("a")])) == []
