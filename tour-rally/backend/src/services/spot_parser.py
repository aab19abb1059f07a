"""Schema validation for spot records coming from the catalog file or an LLM.

Provider output is untrusted: records that fail validation are dropped, and a
response that cannot be parsed at all counts as zero results.
"""

from __future__ import annotations

import hashlib
import uuid
from datetime import date
from typing import Any, Iterable, List, Optional

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from models import (
    CATEGORIES,
    DIFFICULTIES,
    VISIT_WINDOWS,
    Coordinates,
    PointOfInterest,
    RewardTemplate,
)
from utils import extract_json_block


AREA_CENTERS = {
    "enoshima": Coordinates(lat=35.2993, lng=139.4804),
    "kamakura": Coordinates(lat=35.3167, lng=139.5358),
}


class CoordinatesPayload(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180, validation_alias=AliasChoices("lng", "lon"))


class CouponPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    title: str
    description: str = ""
    discount: str = ""
    valid_until: date = Field(validation_alias=AliasChoices("valid_until", "validUntil"))
    spot_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("spot_id", "spotId"))


class SpotPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    name: str = Field(min_length=1)
    description: str = ""
    area: Optional[str] = None
    category: str = "culture"
    tags: List[str] = Field(default_factory=list)
    duration: int = Field(default=60, gt=0)
    difficulty: str = "easy"
    coordinates: Optional[CoordinatesPayload] = None
    open_hours: str = Field(default="", validation_alias=AliasChoices("open_hours", "openHours"))
    best_visit_time: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("best_visit_time", "bestVisitTime")
    )
    entrance_fee: int = Field(default=0, ge=0, validation_alias=AliasChoices("entrance_fee", "entranceFee"))
    tips: List[str] = Field(default_factory=list)
    coupons: List[CouponPayload] = Field(default_factory=list)
    reason: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("empty name")
        return v

    @field_validator("category", mode="before")
    @classmethod
    def _check_category(cls, v: Any) -> str:
        if v is None or v == "":
            return "culture"
        value = str(v).strip().lower()
        if value not in CATEGORIES:
            raise ValueError(f"unknown category {v!r}")
        return value

    @field_validator("difficulty", mode="before")
    @classmethod
    def _coerce_difficulty(cls, v: Any) -> str:
        value = str(v or "").strip().lower()
        return value if value in DIFFICULTIES else "easy"

    @field_validator("best_visit_time", mode="before")
    @classmethod
    def _coerce_window(cls, v: Any) -> Optional[str]:
        value = str(v or "").strip().lower()
        return value if value in VISIT_WINDOWS else None

    @field_validator("duration", "entrance_fee", mode="before")
    @classmethod
    def _round_numbers(cls, v: Any) -> Any:
        if isinstance(v, float):
            return int(round(v))
        if isinstance(v, str):
            # "500円", "約60分"
            digits = "".join(ch for ch in v if ch.isdigit())
            return int(digits) if digits else 0
        return v

    @field_validator("tags", "tips", mode="before")
    @classmethod
    def _string_list(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        if isinstance(v, list):
            return [str(x).strip() for x in v if str(x).strip()]
        raise ValueError("expected a list of strings")


def derived_spot_id(name: str, area: str, coords: Coordinates) -> str:
    """Stable id for a record that arrives without one.

    Same name, area and coordinates (to ~1 m) always give the same id, so a
    stop resent without its id still checks in as the same stop.
    """
    key = f"{' '.join(name.casefold().split())}|{area}|{coords.lat:.5f}|{coords.lng:.5f}"
    return f"spot-{hashlib.sha1(key.encode('utf-8')).hexdigest()[:12]}"


def to_point_of_interest(
    payload: SpotPayload,
    *,
    area: Optional[str] = None,
    spot_id: Optional[str] = None,
    extra_tags: Iterable[str] = (),
) -> Optional[PointOfInterest]:
    """Build a PointOfInterest; None when the record cannot be located."""
    spot_area = (area or payload.area or "").strip().lower()
    if payload.coordinates is not None:
        coords = Coordinates(lat=payload.coordinates.lat, lng=payload.coordinates.lng)
    elif spot_area in AREA_CENTERS:
        coords = AREA_CENTERS[spot_area]
    else:
        return None
    sid = spot_id or payload.id or derived_spot_id(payload.name, spot_area, coords)
    coupons = [
        RewardTemplate(
            id=c.id,
            title=c.title,
            description=c.description,
            discount=c.discount,
            valid_until=c.valid_until,
            spot_id=c.spot_id or sid,
        )
        for c in payload.coupons
    ]
    return PointOfInterest(
        id=sid,
        name=payload.name,
        description=payload.description,
        area=spot_area,
        category=payload.category,
        tags=list(dict.fromkeys([*extra_tags, *payload.tags])),
        duration=payload.duration,
        difficulty=payload.difficulty,
        coordinates=coords,
        open_hours=payload.open_hours or "check on site",
        best_visit_time=payload.best_visit_time,
        entrance_fee=payload.entrance_fee,
        tips=payload.tips,
        coupons=coupons,
        reason=payload.reason,
    )


def validate_records(
    items: Any,
    *,
    area: Optional[str] = None,
    id_prefix: Optional[str] = None,
    extra_tags: Iterable[str] = (),
) -> List[PointOfInterest]:
    if not isinstance(items, list):
        return []
    extra = list(extra_tags)
    out: list[PointOfInterest] = []
    for idx, raw in enumerate(items):
        if not isinstance(raw, dict):
            continue
        try:
            payload = SpotPayload.model_validate(raw)
        except ValidationError as exc:
            logger.warning("dropping invalid spot record #{}: {}", idx, exc.errors()[:2])
            continue
        spot_id = f"{id_prefix}-{uuid.uuid4().hex[:8]}-{idx}" if id_prefix else None
        spot = to_point_of_interest(payload, area=area, spot_id=spot_id, extra_tags=extra)
        if spot is None:
            logger.warning("dropping spot {} without coordinates or known area", payload.name)
            continue
        out.append(spot)
    return out


def parse_spot_list(
    text: str,
    *,
    area: Optional[str],
    id_prefix: str,
    extra_tags: Iterable[str] = (),
) -> List[PointOfInterest]:
    data = extract_json_block(text, prefer="array")
    if isinstance(data, dict):
        data = [data]
    return validate_records(data, area=area, id_prefix=id_prefix, extra_tags=extra_tags)


def parse_single_spot(
    text: str,
    *,
    area: Optional[str],
    id_prefix: str,
    extra_tags: Iterable[str] = (),
) -> Optional[PointOfInterest]:
    data = extract_json_block(text, prefer="object")
    if isinstance(data, dict):
        data = [data]
    spots = validate_records(data, area=area, id_prefix=id_prefix, extra_tags=extra_tags)
    return spots[0] if spots else None
