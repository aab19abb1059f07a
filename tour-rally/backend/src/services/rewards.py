"""
Reward engine: issues check-in, milestone and instant coupons for a visitor
and handles validation and redemption.

Methods prefixed with ``issue_`` expect the caller to already hold
``store.lock(visitor_id)``; the tracker calls them inside its own critical
section. Public query and redemption methods take the lock themselves.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, List, Optional

from loguru import logger

from config import Configuration
from models import (
    GENERAL_SPOT_ID,
    CompletionState,
    IssuedReward,
    PointOfInterest,
    RedemptionResult,
    ValidationResult,
)
from services.store import REWARDS, VisitorStore
from utils import Clock, SystemClock


@dataclass(frozen=True)
class RewardTier:
    percentage: int
    title: str
    description: str
    coupons: int
    special_reward: Optional[str] = None


REWARD_TIERS: tuple[RewardTier, ...] = (
    RewardTier(25, "25% reached", "Tour started", 1),
    RewardTier(50, "50% reached", "Halfway there", 2),
    RewardTier(75, "75% reached", "Almost at the goal", 3),
    RewardTier(100, "Complete", "Every spot visited", 5, special_reward="20% OFF on your next visit"),
)

MIN_ROUTE_STOPS = 3
MIN_ROUTE_AREAS = 2


@dataclass(frozen=True)
class _Coupon:
    key: str
    title: str
    description: str
    discount: str
    spot_id: str
    spot_name: str
    special: bool = False


_FOOD = _Coupon("food", "Enoshima gourmet coupon", "10% OFF at participating restaurants",
                "10%OFF", GENERAL_SPOT_ID, "Enoshima area")
_SOUVENIR = _Coupon("souvenir", "Souvenir shop discount", "5% OFF at Komachi Street souvenir shops",
                    "5%OFF", "komachi-street", "Komachi Street")
_TRANSPORT = _Coupon("transport", "Enoden ride discount", "100 yen OFF the Enoden one-day pass",
                     "100円OFF", GENERAL_SPOT_ID, "Enoden line")
_ACTIVITY = _Coupon("activity", "Activity discount", "15% OFF Enoshima Island Spa admission",
                    "15%OFF", "enoshima-spa", "Enoshima Island Spa")
_SPECIAL = _Coupon("special", "Next visit special", "20% OFF your next Enoshima / Kamakura trip",
                   "20%OFF", GENERAL_SPOT_ID, "Enoshima / Kamakura", special=True)

_INSTANT_ROUTE = _Coupon("route", "Route challenge coupon", "Picked a route with 3 or more spots",
                         "10%OFF", GENERAL_SPOT_ID, "Enoshima / Kamakura")
_INSTANT_AREA = _Coupon("area", "Two-area explorer coupon", "Picked a route across Enoshima and Kamakura",
                        "15%OFF", GENERAL_SPOT_ID, "Enoshima / Kamakura")
_INSTANT_FOOD = _Coupon("food", "Gourmet route coupon", "Picked a route with a food spot",
                        "500円OFF", GENERAL_SPOT_ID, "Enoshima / Kamakura")


def milestone_coupons(percentage: int) -> List[_Coupon]:
    """Coupons for one tier, in issue order, before expiry is stamped."""
    tier = next((t for t in REWARD_TIERS if t.percentage == percentage), None)
    if tier is None:
        return []
    base = [_FOOD, _SOUVENIR]
    if percentage >= 50:
        base.append(_TRANSPORT)
    if percentage >= 75:
        base.append(_ACTIVITY)
    if percentage == 100:
        base.append(_SPECIAL)
    return base[: tier.coupons]


def crossed_tiers(old_pct: float, new_pct: float) -> List[int]:
    return [t.percentage for t in REWARD_TIERS if old_pct < t.percentage <= new_pct]


def new_reward_id(clock: Clock) -> str:
    return f"coupon_{int(clock.now().timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"


def is_expired(reward: IssuedReward, today: date) -> bool:
    # valid through the whole of valid_until
    return today > reward.valid_until


class RewardEngine:
    def __init__(
        self,
        store: VisitorStore,
        cfg: Optional[Configuration] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.cfg = cfg or Configuration()
        self.clock = clock or SystemClock(self.cfg.timezone)

    # -- persistence ------------------------------------------------------

    def _load(self, visitor_id: str) -> List[IssuedReward]:
        records = self.store.get(visitor_id, REWARDS) or []
        return [IssuedReward.from_record(r) for r in records]

    def _save(self, visitor_id: str, rewards: List[IssuedReward]) -> None:
        self.store.set(visitor_id, REWARDS, [r.to_record() for r in rewards])

    def _append(self, visitor_id: str, fresh: List[IssuedReward]) -> List[IssuedReward]:
        if fresh:
            self._save(visitor_id, self._load(visitor_id) + fresh)
        return fresh

    def _mint(self, coupon: _Coupon, coupon_id: str, category: str, *, is_instant: bool = False) -> IssuedReward:
        now = self.clock.now()
        days = self.cfg.special_reward_validity_days if coupon.special else self.cfg.reward_validity_days
        return IssuedReward(
            id=new_reward_id(self.clock),
            coupon_id=coupon_id,
            title=coupon.title,
            description=coupon.description,
            discount=coupon.discount,
            valid_until=now.date() + timedelta(days=days),
            spot_id=coupon.spot_id,
            spot_name=coupon.spot_name,
            obtained_at=now,
            category=category,
            is_instant=is_instant,
        )

    # -- issuance (caller holds the visitor lock) -------------------------

    def issue_check_in_rewards(self, visitor_id: str, spot: PointOfInterest) -> List[IssuedReward]:
        now = self.clock.now()
        fresh = [
            IssuedReward(
                id=new_reward_id(self.clock),
                coupon_id=tpl.id,
                title=tpl.title,
                description=tpl.description,
                discount=tpl.discount,
                valid_until=tpl.valid_until,
                spot_id=tpl.spot_id or spot.id,
                spot_name=spot.name,
                obtained_at=now,
                category="check-in",
            )
            for tpl in spot.coupons
        ]
        if fresh:
            logger.info("visitor={} check-in rewards spot={} count={}", visitor_id, spot.id, len(fresh))
        return self._append(visitor_id, fresh)

    def issue_milestones(
        self,
        visitor_id: str,
        state: CompletionState,
        old_pct: float,
        new_pct: float,
    ) -> List[IssuedReward]:
        """Issue every tier crossed by old_pct -> new_pct that this itinerary
        has not been awarded yet. Records the tiers on ``state``."""
        fresh: list[IssuedReward] = []
        for pct in crossed_tiers(old_pct, new_pct):
            if pct in state.awarded_tiers:
                continue
            category = "completion" if pct == 100 else "milestone"
            for coupon in milestone_coupons(pct):
                coupon_id = "completion-special" if coupon.special else f"milestone-{pct}-{coupon.key}"
                fresh.append(self._mint(coupon, coupon_id, category))
            state.awarded_tiers.append(pct)
            logger.info("visitor={} itinerary={} reached tier {}%", visitor_id, state.itinerary_id, pct)
        return self._append(visitor_id, fresh)

    def issue_instant(self, visitor_id: str, itinerary_id: str, stops: List[PointOfInterest]) -> List[IssuedReward]:
        rules = [
            (len(stops) >= MIN_ROUTE_STOPS, _INSTANT_ROUTE),
            (len({s.area for s in stops}) >= MIN_ROUTE_AREAS, _INSTANT_AREA),
            (any(s.category == "food" for s in stops), _INSTANT_FOOD),
        ]
        fresh = [
            self._mint(coupon, f"instant-{coupon.key}-{itinerary_id}", "instant", is_instant=True)
            for ok, coupon in rules
            if ok
        ]
        if fresh:
            logger.info("visitor={} instant rewards={}", visitor_id, [r.coupon_id for r in fresh])
        return self._append(visitor_id, fresh)

    # -- queries ----------------------------------------------------------

    def list_all(self, visitor_id: str) -> List[IssuedReward]:
        with self.store.lock(visitor_id):
            return self._load(visitor_id)

    def list_available(self, visitor_id: str, spot_ids: Optional[Iterable[str]] = None) -> List[IssuedReward]:
        """Unused rewards; a non-empty ``spot_ids`` keeps only exact spot matches.

        Rewards scoped to ``"general"`` only show up in a filtered view when
        ``"general"`` is in the filter.
        """
        unused = [r for r in self.list_all(visitor_id) if not r.used]
        allow = set(spot_ids or ())
        if not allow:
            return unused
        return [r for r in unused if r.spot_id in allow]

    def list_used(self, visitor_id: str) -> List[IssuedReward]:
        return [r for r in self.list_all(visitor_id) if r.used]

    def list_by_category(self, visitor_id: str, category: str) -> List[IssuedReward]:
        return [r for r in self.list_all(visitor_id) if r.category == category]

    # -- validation / redemption -----------------------------------------

    def check(self, reward: IssuedReward) -> ValidationResult:
        if reward.used:
            return ValidationResult(valid=False, message="This reward has already been used")
        if is_expired(reward, self.clock.now().date()):
            return ValidationResult(valid=False, message="This reward has expired")
        return ValidationResult(valid=True, message="This reward can be used")

    def validate(self, visitor_id: str, reward_id: str) -> ValidationResult:
        reward = next((r for r in self.list_all(visitor_id) if r.id == reward_id), None)
        if reward is None:
            return ValidationResult(valid=False, message="Reward not found")
        return self.check(reward)

    def redeem(self, visitor_id: str, reward_id: str) -> RedemptionResult:
        with self.store.lock(visitor_id):
            rewards = self._load(visitor_id)
            reward = next((r for r in rewards if r.id == reward_id), None)
            if reward is None:
                return RedemptionResult(success=False, message="Reward not found")
            verdict = self.check(reward)
            if not verdict.valid:
                logger.info("visitor={} redeem refused reward={}: {}", visitor_id, reward_id, verdict.message)
                return RedemptionResult(success=False, message=verdict.message, reward=reward)
            now = self.clock.now()
            reward.used = True
            reward.used_at = max(now, reward.obtained_at)
            self._save(visitor_id, rewards)
        logger.info("visitor={} redeemed reward={} ({})", visitor_id, reward_id, reward.coupon_id)
        return RedemptionResult(success=True, message="Reward redeemed", reward=reward)
