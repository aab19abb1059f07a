from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from loguru import logger

from errors import InputError
from models import (
    TRAVEL_STYLES,
    PlanResult,
    PointOfInterest,
    PreferenceProfile,
    ScoredCandidate,
)
from services.catalog import find_spot_by_name


NO_AREA_FILTER = {"", "both", "undecided"}
DEFAULT_LOOKUP_AREA = "enoshima"
BOTH_SEARCH_AREA = "kamakura"

GUARANTEED_SLOTS = 3
MAX_BASE_STOPS = 4
MAX_TOTAL_STOPS = 8
STYLE_SEARCH_CAP = 2
INTEREST_SEARCH_CAP = 1
WHAT_TO_DO_CAP = 2

# Catalog tags are Japanese; English synonyms cover provider-generated spots.
STYLE_TAGS: Dict[str, Iterable[str]] = {
    "relaxed": ["癒し", "庭園", "静寂", "relaxing", "garden", "quiet"],
    "active": ["アクティブ", "マリンスポーツ", "活動", "active", "marine sports", "activity"],
    "cultural": ["歴史", "文化財", "武士", "history", "cultural property", "samurai"],
    "gourmet": ["グルメ", "食べ歩き", "gourmet", "street food"],
}
STYLE_CATEGORIES: Dict[str, Iterable[str]] = {
    "cultural": ["temple", "shrine"],
    "gourmet": ["food", "shopping"],
}
STYLE_DIFFICULTIES: Dict[str, Iterable[str]] = {
    "relaxed": ["easy"],
    "active": ["moderate", "hard"],
}
STYLE_DURATION: Dict[str, Callable[[int], bool]] = {
    "relaxed": lambda minutes: minutes <= 60,
    "active": lambda minutes: minutes >= 90,
}
STYLE_SEARCHES: Dict[str, str] = {
    "gourmet": "gourmet & cafes",
    "cultural": "culture & history",
    "active": "activities",
}

_YOUNG = ["若者向け", "インスタ映え", "写真映え", "youth", "instagrammable", "photogenic"]
_COUPLES = ["カップル", "デート", "couples", "date"]
AGE_TAGS: Dict[str, Iterable[str]] = {
    "10s": _YOUNG,
    "20s": _YOUNG,
    "30s": _COUPLES,
    "40s": _COUPLES,
    "50s": ["大人向け", "静寂", "歴史", "mature", "quiet", "history"],
}
GENDER_TAGS: Dict[str, Iterable[str]] = {
    "female": ["女性人気", "縁結び", "花", "popular with women", "matchmaking", "flowers"],
}

STYLE_TAG_BONUS = 3
STYLE_TRAIT_BONUS = 2
STYLE_DURATION_BONUS = 1
AGE_BONUS = 2
GENDER_BONUS = 1


def _tag_set(tags: Iterable[str]) -> Set[str]:
    return {t.strip().casefold() for t in tags if t and t.strip()}


def _has_any(tags: Set[str], wanted: Optional[Iterable[str]]) -> bool:
    if not wanted:
        return False
    return any(w.casefold() in tags for w in wanted)


def validate_profile(profile: PreferenceProfile) -> None:
    if profile.travel_style not in TRAVEL_STYLES:
        raise InputError(
            f"travel_style must be one of {', '.join(TRAVEL_STYLES)}; got {profile.travel_style!r}"
        )


def filter_by_area(catalog: List[PointOfInterest], must_visit: Optional[str]) -> List[PointOfInterest]:
    area = (must_visit or "").strip().lower()
    if area in NO_AREA_FILTER:
        return list(catalog)
    return [s for s in catalog if s.area == area]


def score_spot(spot: PointOfInterest, profile: PreferenceProfile) -> int:
    tags = _tag_set(spot.tags)
    style = profile.travel_style
    score = 0

    if _has_any(tags, STYLE_TAGS.get(style)):
        score += STYLE_TAG_BONUS
    if spot.category in STYLE_CATEGORIES.get(style, ()):
        score += STYLE_TRAIT_BONUS
    if spot.difficulty in STYLE_DIFFICULTIES.get(style, ()):
        score += STYLE_TRAIT_BONUS
    duration_rule = STYLE_DURATION.get(style)
    if duration_rule is not None and duration_rule(spot.duration):
        score += STYLE_DURATION_BONUS

    if _has_any(tags, AGE_TAGS.get((profile.age or "").lower())):
        score += AGE_BONUS
    if _has_any(tags, GENDER_TAGS.get((profile.gender or "").lower())):
        score += GENDER_BONUS
    return score


def rank_spots(spots: List[PointOfInterest], profile: PreferenceProfile) -> List[ScoredCandidate]:
    scored = [ScoredCandidate(spot=s, score=float(score_spot(s, profile))) for s in spots]
    # stable: equal scores keep catalog order
    scored.sort(key=lambda c: -c.score)
    return scored


def _distinct_categories(items: List[ScoredCandidate]) -> Set[str]:
    return {c.spot.category for c in items}


def _repair_diversity(chosen: List[ScoredCandidate], ranked: List[ScoredCandidate]) -> List[ScoredCandidate]:
    """Swap duplicate-category picks for the best unused categories until
    min(3, categories on offer) are represented."""
    target = min(GUARANTEED_SLOTS, len(_distinct_categories(ranked)))
    chosen = list(chosen)
    while len(_distinct_categories(chosen)) < target:
        used = _distinct_categories(chosen)
        picked = {id(c) for c in chosen}
        replacement = next(
            (c for c in ranked if id(c) not in picked and c.spot.category not in used),
            None,
        )
        if replacement is None:
            break
        counts: Dict[str, int] = {}
        for c in chosen:
            counts[c.spot.category] = counts.get(c.spot.category, 0) + 1
        victim = next(
            (i for i in range(len(chosen) - 1, -1, -1) if counts[chosen[i].spot.category] > 1),
            None,
        )
        if victim is None:
            chosen.append(replacement)
        else:
            chosen[victim] = replacement
    position = {id(c): i for i, c in enumerate(ranked)}
    chosen.sort(key=lambda c: position[id(c)])
    return chosen


def select_candidates(catalog: List[PointOfInterest], profile: PreferenceProfile) -> List[ScoredCandidate]:
    """Score, slice and diversify the catalog for one profile."""
    validate_profile(profile)
    filtered = filter_by_area(catalog, profile.must_visit)
    ranked = rank_spots(filtered, profile)
    head_size = 5 if (profile.must_visit or "").lower() == "both" else 4
    head = ranked[:head_size]

    chosen: list[ScoredCandidate] = []
    used_categories: set[str] = set()
    for cand in head:
        if len(chosen) < GUARANTEED_SLOTS or cand.spot.category not in used_categories:
            chosen.append(cand)
            used_categories.add(cand.spot.category)
        if len(chosen) >= MAX_BASE_STOPS:
            break

    chosen = _repair_diversity(chosen, ranked)
    logger.debug(
        "selected style={} area={} filtered={} chosen={}",
        profile.travel_style,
        profile.must_visit,
        len(filtered),
        [(c.spot.id, c.score) for c in chosen],
    )
    return chosen


def dedupe_by_name(spots: List[PointOfInterest]) -> List[PointOfInterest]:
    seen: set[str] = set()
    out: list[PointOfInterest] = []
    for s in spots:
        if s.name in seen:
            continue
        seen.add(s.name)
        out.append(s)
    return out


async def _call_provider(fn: Callable[..., Any], *args: Any, timeout: float, default: Any, label: str) -> Any:
    try:
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("content provider timed out after {}s: {}", timeout, label)
    except Exception as exc:
        logger.warning("content provider failed for {}: {}", label, exc)
    return default


def _search_area(must_visit: str) -> str:
    area = (must_visit or "").lower()
    return BOTH_SEARCH_AREA if area == "both" else area


def _lookup_area(must_visit: str) -> str:
    area = (must_visit or "").lower()
    return area if area in ("enoshima", "kamakura") else DEFAULT_LOOKUP_AREA


async def plan_itinerary(
    catalog: List[PointOfInterest],
    profile: PreferenceProfile,
    content: Any = None,
    *,
    timeout: float = 30.0,
) -> PlanResult:
    """Base selection plus custom-spot resolution and provider supplements."""
    base = [c.spot for c in select_candidates(catalog, profile)]
    base_ids = {s.id for s in base}
    plan: list[PointOfInterest] = []
    notices: list[str] = []

    if profile.custom_spot:
        existing = find_spot_by_name(catalog, profile.custom_spot)
        if existing is not None:
            if existing.id not in base_ids:
                plan.append(existing)
        else:
            found = None
            if content is not None:
                found = await _call_provider(
                    content.lookup_spot,
                    profile.custom_spot,
                    _lookup_area(profile.must_visit),
                    timeout=timeout,
                    default=None,
                    label=f"lookup:{profile.custom_spot}",
                )
            if isinstance(found, PointOfInterest):
                plan.append(found)
            else:
                notices.append(f"Spot '{profile.custom_spot}' could not be found and was skipped")

    plan.extend(base)

    if content is not None:
        area = _search_area(profile.must_visit)
        prefs = ", ".join(p for p in (profile.gender, profile.age, profile.travel_style) if p)
        jobs: list[tuple[Any, int]] = []
        style_query = STYLE_SEARCHES.get(profile.travel_style)
        if style_query:
            jobs.append((
                _call_provider(content.search_category, style_query, area, prefs,
                               timeout=timeout, default=[], label=f"category:{style_query}"),
                STYLE_SEARCH_CAP,
            ))
        for interest in profile.interests:
            jobs.append((
                _call_provider(content.search_category, interest, area, prefs,
                               timeout=timeout, default=[], label=f"interest:{interest}"),
                INTEREST_SEARCH_CAP,
            ))
        if profile.what_to_do:
            jobs.append((
                _call_provider(content.search_what_to_do, profile.what_to_do, area, prefs,
                               timeout=timeout, default=[], label="what-to-do"),
                WHAT_TO_DO_CAP,
            ))
        results = await asyncio.gather(*(job for job, _ in jobs))
        for (_, cap), found in zip(jobs, results):
            if isinstance(found, list):
                plan.extend(s for s in found[:cap] if isinstance(s, PointOfInterest))

    stops = dedupe_by_name(plan)[:MAX_TOTAL_STOPS]
    logger.info(
        "planned itinerary style={} area={} stops={} notices={}",
        profile.travel_style,
        profile.must_visit,
        len(stops),
        len(notices),
    )
    return PlanResult(stops=stops, notices=notices)
