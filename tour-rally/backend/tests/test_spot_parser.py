from __future__ import annotations

from datetime import date

from services.catalog import find_spot_by_name, load_catalog
from services.spot_parser import AREA_CENTERS, parse_single_spot, parse_spot_list, validate_records


LLM_ANSWER = """<think>The user wants cafes.</think>
Here are some ideas:
```json
[
  {
    "name": "Cafe Kaiga",
    "description": "Cafe near Kamakura station",
    "category": "food",
    "tags": ["cafe", "sweets"],
    "duration": "約45分",
    "difficulty": "EASY",
    "coordinates": {"lat": 35.3190, "lng": 139.5500},
    "openHours": "10:00-18:00",
    "entrance_fee": "0円",
    "tips": "Try the pancakes, Go early",
    "reason": "Fits a gourmet trip",
  },
  {
    "name": "Mystery Place",
    "category": "spaceport",
    "coordinates": {"lat": 35.3, "lng": 139.5}
  },
  {
    "name": "Zeniarai Benten",
    "category": "shrine",
    "bestVisitTime": "Morning"
  },
]
```
"""


def test_parse_list_validates_each_record() -> None:
    spots = parse_spot_list(LLM_ANSWER, area="kamakura", id_prefix="category", extra_tags=["カテゴリ検索", "cafe"])
    assert [s.name for s in spots] == ["Cafe Kaiga", "Zeniarai Benten"]

    cafe, shrine = spots
    assert cafe.duration == 45
    assert cafe.difficulty == "easy"
    assert cafe.entrance_fee == 0
    assert cafe.tips == ["Try the pancakes", "Go early"]
    assert cafe.tags[:2] == ["カテゴリ検索", "cafe"]
    assert cafe.tags.count("cafe") == 1
    assert cafe.id.startswith("category-")
    assert cafe.area == "kamakura"

    # no coordinates -> area centre
    assert shrine.coordinates == AREA_CENTERS["kamakura"]
    assert shrine.best_visit_time == "morning"


def test_malformed_answer_yields_nothing() -> None:
    assert parse_spot_list("Sorry, I cannot help with that.", area="enoshima", id_prefix="x") == []
    assert parse_spot_list("[{broken", area="enoshima", id_prefix="x") == []
    assert parse_single_spot("null", area="enoshima", id_prefix="x") is None


def test_single_spot_prefers_object() -> None:
    text = 'Result: {"name": "Ryukoji", "category": "temple", "tags": ["history", "quiet"]}'
    spot = parse_single_spot(text, area="enoshima", id_prefix="custom", extra_tags=["Web検索"])
    assert spot is not None
    assert spot.name == "Ryukoji"
    assert spot.tags == ["Web検索", "history", "quiet"]
    assert spot.coordinates == AREA_CENTERS["enoshima"]


def test_record_without_location_is_dropped() -> None:
    assert validate_records([{"name": "Nowhere", "category": "nature"}]) == []


def test_bad_coordinates_are_dropped() -> None:
    rows = [{"name": "Off the map", "area": "enoshima", "coordinates": {"lat": 135.0, "lng": 139.0}}]
    assert validate_records(rows) == []


def test_catalog_loads_with_coupons() -> None:
    catalog = load_catalog()
    assert len(catalog) == 11
    shrine = next(s for s in catalog if s.id == "enoshima-shrine")
    assert shrine.open_hours == "08:30-17:00"
    assert shrine.best_visit_time == "morning"
    assert shrine.coupons[0].valid_until == date(2027, 3, 31)
    assert shrine.coupons[0].spot_id == "enoshima-shrine"


def test_find_spot_by_name() -> None:
    catalog = load_catalog()
    assert find_spot_by_name(catalog, "  KOMACHI street ").id == "komachi-street"
    assert find_spot_by_name(catalog, "Great Buddha").id == "kamakura-daibutsu"
    assert find_spot_by_name(catalog, "Atlantis") is None
    assert find_spot_by_name(catalog, "") is None


def test_records_without_id_get_stable_ids() -> None:
    record = {"name": "Zazen Hall", "area": "kamakura", "coordinates": {"lat": 35.326, "lng": 139.55}}
    first = validate_records([record])[0]
    again = validate_records([dict(record, name="ZAZEN HALL")])[0]
    moved = validate_records([dict(record, coordinates={"lat": 35.33, "lng": 139.55})])[0]
    assert first.id == again.id
    assert first.id.startswith("spot-")
    assert moved.id != first.id
