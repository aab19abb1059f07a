from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger

from models import PointOfInterest
from services.spot_parser import validate_records


DEFAULT_CATALOG_PATH = Path(__file__).resolve().parents[2] / "data" / "spots.json"


def _normalize_name(text: Optional[str]) -> str:
    if not text:
        return ""
    return " ".join(text.casefold().split())


def load_catalog(path: Optional[str] = None) -> List[PointOfInterest]:
    """Read a catalog snapshot; rows failing validation are skipped."""
    src = Path(path) if path else DEFAULT_CATALOG_PATH
    try:
        raw = json.loads(src.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ValueError(f"cannot read catalog {src}: {exc}")
    spots = validate_records(raw)
    logger.info("catalog loaded path={} spots={} rows={}", src, len(spots), len(raw) if isinstance(raw, list) else 0)
    return spots


def index_by_id(catalog: List[PointOfInterest]) -> Dict[str, PointOfInterest]:
    return {s.id: s for s in catalog}


def find_spot_by_name(catalog: List[PointOfInterest], name: Optional[str]) -> Optional[PointOfInterest]:
    """Exact (case-insensitive) match first, then substring match."""
    query = _normalize_name(name)
    if not query:
        return None
    for spot in catalog:
        if _normalize_name(spot.name) == query:
            return spot
    for spot in catalog:
        if query in _normalize_name(spot.name):
            return spot
    return None
