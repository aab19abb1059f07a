from __future__ import annotations

import uuid
from typing import List, Optional

from loguru import logger

from config import Configuration
from errors import InputError, NotFoundError
from models import (
    CheckInOutcome,
    CheckInResult,
    CompletionState,
    IssuedReward,
    LocationReading,
    PointOfInterest,
)
from services.rewards import RewardEngine
from services.store import PROGRESS, VisitorStore
from utils import Clock, SystemClock, haversine_m


def locate_check_in(
    reading: LocationReading,
    stops: List[PointOfInterest],
    radius_m: float = 100.0,
) -> CheckInResult:
    """Match a reading against the itinerary.

    The first stop in itinerary order within ``radius_m`` wins, even when a
    later stop is closer. On a miss the nearest stop is reported instead.
    """
    if not stops:
        raise InputError("itinerary has no stops to check in against")

    nearest: Optional[PointOfInterest] = None
    nearest_m = float("inf")
    for spot in stops:
        d = haversine_m(reading.latitude, reading.longitude, spot.coordinates.lat, spot.coordinates.lng)
        if d <= radius_m:
            return CheckInResult(
                success=True,
                message=f"Checked in at {spot.name}",
                spot_id=spot.id,
                spot_name=spot.name,
                distance=round(d),
            )
        if d < nearest_m:
            nearest, nearest_m = spot, d

    if nearest is None:
        raise InputError("reading could not be compared with any stop coordinates")
    return CheckInResult(
        success=False,
        message=f"Not close enough to a stop; nearest is {nearest.name} ({round(nearest_m)} m away)",
        spot_id=None,
        spot_name=nearest.name,
        distance=round(nearest_m),
    )


def apply_check_in(state: CompletionState, spot_id: str, points_per_visit: int = 100) -> CompletionState:
    """Mark ``spot_id`` visited. A repeat visit returns the state unchanged."""
    if spot_id in state.visited_spots:
        return state
    state.visited_spots.append(spot_id)
    state.points += points_per_visit
    return state


class ProgressTracker:
    def __init__(
        self,
        store: VisitorStore,
        rewards: RewardEngine,
        cfg: Optional[Configuration] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.rewards = rewards
        self.cfg = cfg or Configuration()
        self.clock = clock or SystemClock(self.cfg.timezone)

    def _load(self, visitor_id: str) -> Optional[CompletionState]:
        record = self.store.get(visitor_id, PROGRESS)
        return CompletionState.from_record(record) if record else None

    def _save(self, visitor_id: str, state: CompletionState) -> None:
        self.store.set(visitor_id, PROGRESS, state.to_record())

    def _fresh_state(self, previous: Optional[CompletionState], stops: List[PointOfInterest]) -> CompletionState:
        return CompletionState(
            itinerary_id=uuid.uuid4().hex,
            total_spots=len(stops),
            visited_spots=[],
            points=previous.points if previous else 0,
            awarded_tiers=[],
            started_at=self.clock.now(),
        )

    def accept_itinerary(
        self, visitor_id: str, stops: List[PointOfInterest]
    ) -> tuple[CompletionState, List[IssuedReward]]:
        if not visitor_id:
            raise InputError("visitor_id is required")
        if not stops:
            raise InputError("an itinerary needs at least one stop")
        with self.store.lock(visitor_id):
            state = self._fresh_state(self._load(visitor_id), stops)
            self._save(visitor_id, state)
            instant = self.rewards.issue_instant(visitor_id, state.itinerary_id, stops)
        logger.info(
            "visitor={} accepted itinerary={} stops={} instant_rewards={}",
            visitor_id,
            state.itinerary_id,
            len(stops),
            len(instant),
        )
        return state, instant

    def submit_check_in(
        self,
        visitor_id: str,
        reading: LocationReading,
        stops: List[PointOfInterest],
    ) -> CheckInOutcome:
        if not visitor_id:
            raise InputError("visitor_id is required")
        logger.debug(
            "visitor={} reading lat={} lng={} accuracy={}m at={}",
            visitor_id,
            reading.latitude,
            reading.longitude,
            reading.accuracy,
            reading.timestamp,
        )
        result = locate_check_in(reading, stops, self.cfg.check_in_radius_m)

        with self.store.lock(visitor_id):
            state = self._load(visitor_id)
            if state is None:
                state = self._fresh_state(None, stops)
            if not result.success:
                logger.info("visitor={} check-in missed: {}", visitor_id, result.message)
                return CheckInOutcome(result=result, state=state)

            if result.spot_id in state.visited_spots:
                return CheckInOutcome(result=result, state=state)

            old_pct = state.completion_percentage
            apply_check_in(state, result.spot_id, self.cfg.points_per_visit)
            new_pct = state.completion_percentage

            spot = next(s for s in stops if s.id == result.spot_id)
            new_rewards = self.rewards.issue_check_in_rewards(visitor_id, spot)
            new_rewards += self.rewards.issue_milestones(visitor_id, state, old_pct, new_pct)
            self._save(visitor_id, state)

        logger.info(
            "visitor={} checked in spot={} progress={:.0f}% points={} rewards={}",
            visitor_id,
            result.spot_id,
            new_pct,
            state.points,
            len(new_rewards),
        )
        return CheckInOutcome(result=result, state=state, new_rewards=new_rewards)

    def get_progress(self, visitor_id: str) -> CompletionState:
        with self.store.lock(visitor_id):
            state = self._load(visitor_id)
        if state is None:
            raise NotFoundError(f"no itinerary in progress for visitor {visitor_id}")
        return state
