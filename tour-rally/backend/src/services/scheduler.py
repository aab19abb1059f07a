"""
Scheduler: orders stops by preferred visit window and stamps each with a
start/end clock time.

Travel times here are local estimates from fixed tables. The directions
provider is only used for display-grade route detail (services.route_info)
and never moves the clock.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from loguru import logger

from errors import InputError
from models import PointOfInterest, ScheduledStop


WINDOW_PRIORITY: Dict[str, int] = {"morning": 0, "afternoon": 1, "evening": 2}
UNSPECIFIED_PRIORITY = 99

START_TRAVEL_MINUTES: Dict[str, Dict[str, int]] = {
    "enoshima_station": {"enoshima": 10, "kamakura": 25},
    "kamakura_station": {"enoshima": 25, "kamakura": 5},
    "fujisawa_station": {"enoshima": 15, "kamakura": 20},
}
DEFAULT_START_TRAVEL_MINUTES = 20

SAME_AREA_MINUTES = 15
CROSS_AREA_MINUTES = 30
TOUR_TRAVEL_CONSTANT = 30


def parse_clock(value: str) -> tuple[int, int]:
    """'HH:MM' -> (hour, minute); raises InputError on junk."""
    try:
        hh, mm = (value or "").strip().split(":")
        hour, minute = int(hh), int(mm)
    except ValueError:
        raise InputError(f"start_time must look like HH:MM; got {value!r}")
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise InputError(f"start_time out of range: {value!r}")
    return hour, minute


def order_by_visit_window(stops: List[PointOfInterest]) -> List[PointOfInterest]:
    return sorted(stops, key=lambda s: WINDOW_PRIORITY.get(s.best_visit_time or "", UNSPECIFIED_PRIORITY))


def travel_to_first(start_location: str, area: str) -> int:
    return START_TRAVEL_MINUTES.get(start_location or "", {}).get(area, DEFAULT_START_TRAVEL_MINUTES)


def travel_between(from_spot: PointOfInterest, to_spot: PointOfInterest) -> int:
    if from_spot.area == to_spot.area:
        return SAME_AREA_MINUTES
    return CROSS_AREA_MINUTES


def tour_duration(stops: List[PointOfInterest]) -> int:
    """Sum of visit durations plus a flat allowance between stops."""
    if not stops:
        return 0
    return sum(s.duration for s in stops) + TOUR_TRAVEL_CONSTANT * (len(stops) - 1)


def schedule_itinerary(
    stops: List[PointOfInterest],
    start_time: str,
    start_location: str,
    *,
    on_date: Optional[date] = None,
) -> List[ScheduledStop]:
    if not stops:
        raise InputError("at least one stop is required to build a schedule")
    hour, minute = parse_clock(start_time)
    day = on_date or date.today()
    clock = datetime(day.year, day.month, day.day, hour, minute)

    ordered = order_by_visit_window(stops)
    lead = travel_to_first(start_location, ordered[0].area)
    clock += timedelta(minutes=lead)

    scheduled: list[ScheduledStop] = []
    travel_prev = lead
    for index, spot in enumerate(ordered):
        start_at = clock
        clock += timedelta(minutes=spot.duration)
        scheduled.append(
            ScheduledStop(
                spot=spot,
                order=index + 1,
                start_at=start_at,
                end_at=clock,
                travel_from_prev_minutes=travel_prev,
            )
        )
        if index < len(ordered) - 1:
            travel_prev = travel_between(spot, ordered[index + 1])
            clock += timedelta(minutes=travel_prev)

    logger.debug(
        "scheduled {} stops from {} at {}: {}",
        len(scheduled),
        start_location,
        start_time,
        [(s.spot.id, s.start_time, s.end_time) for s in scheduled],
    )
    return scheduled
