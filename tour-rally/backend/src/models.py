"""Data models for the tour rally backend."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional


CATEGORIES = ("shrine", "temple", "nature", "culture", "food", "shopping", "activity")
DIFFICULTIES = ("easy", "moderate", "hard")
TRAVEL_STYLES = ("relaxed", "active", "cultural", "gourmet")
VISIT_WINDOWS = ("morning", "afternoon", "evening")
REWARD_CATEGORIES = ("check-in", "milestone", "completion", "special", "instant")

GENERAL_SPOT_ID = "general"


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float


@dataclass
class RewardTemplate:
    id: str
    title: str
    description: str
    discount: str
    valid_until: date
    spot_id: str


@dataclass
class PointOfInterest:
    id: str
    name: str
    area: str
    category: str
    coordinates: Coordinates
    description: str = ""
    tags: list[str] = field(default_factory=list)
    duration: int = 60  # minutes
    difficulty: str = "easy"
    open_hours: str = ""
    best_visit_time: Optional[str] = None
    entrance_fee: int = 0
    tips: list[str] = field(default_factory=list)
    coupons: list[RewardTemplate] = field(default_factory=list)
    reason: Optional[str] = None


@dataclass
class PreferenceProfile:
    travel_style: str
    must_visit: str = "undecided"
    age: Optional[str] = None
    gender: Optional[str] = None
    what_to_do: Optional[str] = None
    custom_spot: Optional[str] = None
    interests: list[str] = field(default_factory=list)


@dataclass
class ScoredCandidate:
    spot: PointOfInterest
    score: float


@dataclass
class PlanResult:
    stops: list[PointOfInterest]
    notices: list[str] = field(default_factory=list)


@dataclass
class ScheduledStop:
    spot: PointOfInterest
    order: int
    start_at: datetime
    end_at: datetime
    travel_from_prev_minutes: int = 0

    @property
    def start_time(self) -> str:
        return self.start_at.strftime("%H:%M")

    @property
    def end_time(self) -> str:
        return self.end_at.strftime("%H:%M")


@dataclass
class RouteStep:
    instruction: str
    duration: str
    distance: str
    travel_mode: str
    transit_details: Optional[Dict[str, Any]] = None


@dataclass
class RouteInfo:
    duration: str
    duration_value: int  # seconds
    distance: str
    distance_value: int  # meters
    fare: Optional[str] = None
    steps: list[RouteStep] = field(default_factory=list)
    summary: str = ""
    warnings: list[str] = field(default_factory=list)


@dataclass
class RouteSegment:
    from_name: str
    to_name: str
    from_coordinates: Coordinates
    to_coordinates: Coordinates
    transit: Optional[RouteInfo] = None
    walking: Optional[RouteInfo] = None
    recommended_method: str = "unknown"
    recommended_duration: str = "unknown"
    recommended_reason: str = "Route information could not be retrieved"


@dataclass
class LocationReading:
    latitude: float
    longitude: float
    accuracy: float = 0.0
    timestamp: Optional[datetime] = None


@dataclass
class CheckInResult:
    success: bool
    message: str
    spot_id: Optional[str] = None
    spot_name: Optional[str] = None
    distance: Optional[int] = None


@dataclass
class CompletionState:
    itinerary_id: str
    total_spots: int
    visited_spots: list[str] = field(default_factory=list)
    points: int = 0
    awarded_tiers: list[int] = field(default_factory=list)
    started_at: Optional[datetime] = None

    @property
    def completion_percentage(self) -> float:
        if self.total_spots <= 0:
            return 0.0
        return min(100.0, len(self.visited_spots) / self.total_spots * 100)

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record["started_at"] = self.started_at.isoformat() if self.started_at else None
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "CompletionState":
        started = record.get("started_at")
        return cls(
            itinerary_id=str(record["itinerary_id"]),
            total_spots=int(record.get("total_spots") or 0),
            visited_spots=list(dict.fromkeys(record.get("visited_spots") or [])),
            points=int(record.get("points") or 0),
            awarded_tiers=[int(t) for t in record.get("awarded_tiers") or []],
            started_at=datetime.fromisoformat(started) if started else None,
        )


@dataclass
class IssuedReward:
    id: str
    coupon_id: str
    title: str
    description: str
    discount: str
    valid_until: date
    spot_id: str
    spot_name: str
    obtained_at: datetime
    category: str
    used: bool = False
    used_at: Optional[datetime] = None
    is_instant: bool = False

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record["valid_until"] = self.valid_until.isoformat()
        record["obtained_at"] = self.obtained_at.isoformat()
        record["used_at"] = self.used_at.isoformat() if self.used_at else None
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "IssuedReward":
        used_at = record.get("used_at")
        return cls(
            id=str(record["id"]),
            coupon_id=str(record["coupon_id"]),
            title=str(record.get("title") or ""),
            description=str(record.get("description") or ""),
            discount=str(record.get("discount") or ""),
            valid_until=date.fromisoformat(record["valid_until"]),
            spot_id=str(record.get("spot_id") or GENERAL_SPOT_ID),
            spot_name=str(record.get("spot_name") or ""),
            obtained_at=datetime.fromisoformat(record["obtained_at"]),
            category=str(record.get("category") or "check-in"),
            used=bool(record.get("used")),
            used_at=datetime.fromisoformat(used_at) if used_at else None,
            is_instant=bool(record.get("is_instant")),
        )


@dataclass
class ValidationResult:
    valid: bool
    message: str


@dataclass
class RedemptionResult:
    success: bool
    message: str
    reward: Optional[IssuedReward] = None


@dataclass
class CheckInOutcome:
    result: CheckInResult
    state: CompletionState
    new_rewards: List[IssuedReward] = field(default_factory=list)
