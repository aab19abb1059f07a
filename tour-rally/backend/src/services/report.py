from __future__ import annotations

from typing import List, Optional

from models import CompletionState, IssuedReward, RouteSegment, ScheduledStop
from services.rewards import REWARD_TIERS
from services.scheduler import tour_duration

AREA_NAMES = {"enoshima": "Enoshima", "kamakura": "Kamakura"}
AREA_NAMES_JA = {"enoshima": "江ノ島", "kamakura": "鎌倉"}
METHOD_NAMES = {"transit": "Public transport", "walking": "Walk", "unknown": "Unknown"}


def _area(area: str) -> str:
    en = AREA_NAMES.get(area, area or "Unknown")
    ja = AREA_NAMES_JA.get(area)
    return f"{en} ({ja})" if ja else en


def _fee(yen: int) -> str:
    return f"{yen:,} yen" if yen else "Free"


def build_itinerary_report(
    scheduled: List[ScheduledStop],
    start_location: str,
    segments: Optional[List[RouteSegment]] = None,
) -> str:
    areas = list(dict.fromkeys(s.spot.area for s in scheduled))
    total_fee = sum(s.spot.entrance_fee for s in scheduled)
    header = [
        "## Tour Itinerary",
        "## 観光プラン",
        "",
        f"- Start: {start_location or 'Not specified'}",
        f"- Areas: {', '.join(_area(a) for a in areas) if areas else 'None'}",
        f"- Stops: {len(scheduled)}",
    ]
    if scheduled:
        header.append(f"- Time: {scheduled[0].start_time} - {scheduled[-1].end_time}")
    header += [
        f"- Entrance fees: {_fee(total_fee)}",
        f"- Estimated length: {tour_duration([s.spot for s in scheduled])} min",
        "",
        "> Note: opening hours and fees may change. Please confirm on site.",
        "",
        "### Schedule",
        "### スケジュール",
    ]

    lines = header
    for item in scheduled:
        spot = item.spot
        tips = (spot.tips or [])[:2]
        lines += [
            f"#### {item.order}. {spot.name}",
            f"- Time: {item.start_time} - {item.end_time} ({spot.duration} min)",
            f"- Travel before: ~{item.travel_from_prev_minutes} min",
            f"- Area: {_area(spot.area)} / {spot.category}",
            f"- Open: {spot.open_hours or 'Not provided'}",
            f"- Fee: {_fee(spot.entrance_fee)}",
            ("- Tips:\n" + "\n".join(f"  * {t}" for t in tips)) if tips else "- Tips: none",
        ]
        if spot.reason:
            lines.append(f"- Why: {spot.reason}")
        if spot.coupons:
            lines.append(f"- Check-in rewards: {', '.join(c.title for c in spot.coupons)}")
        lines.append("")

    if segments:
        lines += ["### Getting Around", "### 移動"]
        for seg in segments:
            lines.append(
                f"- {seg.from_name} → {seg.to_name}: {METHOD_NAMES.get(seg.recommended_method, seg.recommended_method)}"
                f" ({seg.recommended_duration}) - {seg.recommended_reason}"
            )
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"


def build_progress_report(state: CompletionState, rewards: Optional[List[IssuedReward]] = None) -> str:
    pct = state.completion_percentage
    next_tier = next((t for t in REWARD_TIERS if t.percentage > pct), None)
    lines = [
        "## Rally Progress",
        "## スタンプラリー進捗",
        "",
        f"- Visited: {len(state.visited_spots)} / {state.total_spots}",
        f"- Completion: {pct:.0f}%",
        f"- Points: {state.points}",
        f"- Tiers reached: {', '.join(f'{t}%' for t in sorted(state.awarded_tiers)) or 'none yet'}",
    ]
    if next_tier is not None:
        lines.append(f"- Next reward: {next_tier.title} ({next_tier.coupons} coupon(s))")
    else:
        lines.append("- Next reward: all tiers reached")

    available = [r for r in rewards or [] if not r.used]
    if available:
        lines += ["", "### Available Rewards", "### 利用可能なクーポン"]
        for r in available:
            lines.append(f"- {r.title} - {r.discount} @ {r.spot_name} (until {r.valid_until.isoformat()})")
    return "\n".join(lines) + "\n"
