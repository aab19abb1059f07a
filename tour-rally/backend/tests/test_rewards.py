from __future__ import annotations

import threading
from datetime import date, datetime

from config import Configuration
from models import CompletionState
from services.catalog import index_by_id, load_catalog
from services.rewards import REWARD_TIERS, RewardEngine, crossed_tiers, milestone_coupons
from services.store import InMemoryStore
from utils import FixedClock


def _engine(**cfg):
    clock = FixedClock(datetime(2026, 4, 1, 9, 0))
    return RewardEngine(InMemoryStore(), Configuration(**cfg), clock), clock


def test_tier_table_shape() -> None:
    assert [(t.percentage, t.coupons) for t in REWARD_TIERS] == [(25, 1), (50, 2), (75, 3), (100, 5)]
    assert REWARD_TIERS[-1].special_reward
    for tier in REWARD_TIERS:
        assert len(milestone_coupons(tier.percentage)) == tier.coupons
    assert milestone_coupons(30) == []


def test_crossed_tiers_is_edge_triggered() -> None:
    assert crossed_tiers(0, 25) == [25]
    assert crossed_tiers(25, 25) == []
    assert crossed_tiers(20, 80) == [25, 50, 75]
    assert crossed_tiers(75, 100) == [100]


def test_milestone_issued_once_per_itinerary() -> None:
    engine, _ = _engine()
    state = CompletionState(itinerary_id="it", total_spots=4)
    first = engine.issue_milestones("v", state, 0, 25)
    assert len(first) == 1
    assert first[0].coupon_id == "milestone-25-food"
    # same crossing replayed (e.g. a retried request) is ignored
    assert engine.issue_milestones("v", state, 0, 25) == []
    assert len(engine.list_all("v")) == 1


def test_synthetic_expiry_uses_validity_days() -> None:
    engine, _ = _engine(reward_validity_days=30, special_reward_validity_days=90)
    state = CompletionState(itinerary_id="it", total_spots=1)
    issued = engine.issue_milestones("v", state, 0, 100)
    special = next(r for r in issued if r.coupon_id == "completion-special")
    normal = next(r for r in issued if r.coupon_id == "milestone-25-food")
    assert normal.valid_until == date(2026, 5, 1)
    assert special.valid_until == date(2026, 6, 30)
    assert {r.category for r in issued if r.coupon_id.startswith("milestone-100")} == {"completion"}


def test_check_in_rewards_copy_templates() -> None:
    engine, _ = _engine()
    shrine = index_by_id(load_catalog())["enoshima-shrine"]
    issued = engine.issue_check_in_rewards("v", shrine)
    assert len(issued) == 1
    reward = issued[0]
    assert reward.coupon_id == "shrine-omamori"
    assert reward.category == "check-in"
    assert reward.spot_id == "enoshima-shrine"
    assert reward.spot_name == shrine.name
    assert reward.valid_until == date(2027, 3, 31)
    assert reward.id.startswith("coupon_")


def test_redeem_then_redeem_again_keeps_first_timestamp() -> None:
    engine, clock = _engine()
    shrine = index_by_id(load_catalog())["enoshima-shrine"]
    reward = engine.issue_check_in_rewards("v", shrine)[0]

    clock.advance(hours=1)
    first = engine.redeem("v", reward.id)
    assert first.success
    assert first.reward.used_at == datetime(2026, 4, 1, 10, 0)

    clock.advance(hours=1)
    second = engine.redeem("v", reward.id)
    assert not second.success
    assert "already been used" in second.message
    stored = engine.list_used("v")
    assert len(stored) == 1
    assert stored[0].used_at == datetime(2026, 4, 1, 10, 0)
    assert stored[0].used_at >= stored[0].obtained_at


def test_validate_reports_expiry() -> None:
    engine, clock = _engine(reward_validity_days=10)
    state = CompletionState(itinerary_id="it", total_spots=4)
    reward = engine.issue_milestones("v", state, 0, 25)[0]
    assert engine.validate("v", reward.id).valid

    clock.advance(days=10)
    assert engine.validate("v", reward.id).valid  # last valid day

    clock.advance(days=1)
    verdict = engine.validate("v", reward.id)
    assert not verdict.valid
    assert "expired" in verdict.message

    result = engine.redeem("v", reward.id)
    assert not result.success
    assert engine.list_used("v") == []


def test_unknown_reward() -> None:
    engine, _ = _engine()
    assert not engine.validate("v", "nope").valid
    result = engine.redeem("v", "nope")
    assert not result.success
    assert result.reward is None


def test_spot_filter_and_general_pass_through() -> None:
    engine, _ = _engine()
    catalog = index_by_id(load_catalog())
    engine.issue_check_in_rewards("v", catalog["komachi-street"])
    engine.issue_check_in_rewards("v", catalog["kamakura-daibutsu"])
    state = CompletionState(itinerary_id="it", total_spots=4)
    engine.issue_milestones("v", state, 0, 25)  # general-scoped food coupon

    assert len(engine.list_available("v")) == 3
    assert len(engine.list_available("v", [])) == 3

    only_komachi = engine.list_available("v", ["komachi-street"])
    assert [r.spot_id for r in only_komachi] == ["komachi-street"]

    with_general = engine.list_available("v", ["komachi-street", "general"])
    assert sorted(r.spot_id for r in with_general) == ["general", "komachi-street"]


def test_used_rewards_leave_available_list() -> None:
    engine, _ = _engine()
    komachi = index_by_id(load_catalog())["komachi-street"]
    reward = engine.issue_check_in_rewards("v", komachi)[0]
    engine.redeem("v", reward.id)
    assert engine.list_available("v") == []
    assert [r.id for r in engine.list_used("v")] == [reward.id]


def test_instant_rewards_rules() -> None:
    engine, _ = _engine()
    catalog = index_by_id(load_catalog())
    one_area = [catalog["enoshima-shrine"], catalog["enoshima-aquarium"], catalog["enoshima-spa"]]
    issued = engine.issue_instant("v", "it1", one_area)
    assert [r.coupon_id for r in issued] == ["instant-route-it1"]
    assert all(r.is_instant and r.category == "instant" for r in issued)

    two = [catalog["enoshima-shrine"], catalog["komachi-street"]]
    issued = engine.issue_instant("w", "it2", two)
    assert [r.coupon_id for r in issued] == ["instant-area-it2", "instant-food-it2"]


def test_concurrent_redeem_succeeds_once() -> None:
    engine, _ = _engine()
    shrine = index_by_id(load_catalog())["enoshima-shrine"]
    reward = engine.issue_check_in_rewards("v-race", shrine)[0]
    results = []

    def redeem() -> None:
        results.append(engine.redeem("v-race", reward.id).success)

    workers = [threading.Thread(target=redeem) for _ in range(8)]
    for w in workers:
        w.start()
    for w in workers:
        w.join()

    assert sorted(results) == [False] * 7 + [True]
    assert [r.id for r in engine.list_used("v-race")] == [reward.id]
