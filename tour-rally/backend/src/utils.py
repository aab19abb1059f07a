"""Utility helpers for the tour rally backend."""

from __future__ import annotations

import json
import math
import re
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Optional
from zoneinfo import ZoneInfo


EARTH_RADIUS_M = 6371e3


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    if not value:
        return "unset"
    if len(value) <= visible * 2:
        return "*" * len(value)
    return f"{value[:visible]}...{value[-visible:]}"


def strip_thinking_tokens(text: str) -> str:
    """Remove <think>...</think> blocks if present."""
    if not text:
        return text
    while True:
        start = text.find("<think>")
        if start == -1:
            break
        end = text.find("</think>", start)
        if end == -1:
            break
        text = text[:start] + text[end + len("</think>") :]
    return text


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


_FENCED = re.compile(r"```(?:json)?\s*([\[\{][\s\S]*?[\]\}])\s*```", re.I)
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")


def extract_json_block(text: str, *, prefer: str = "array") -> Any:
    """Pull the outermost JSON array/object out of free-form LLM output.

    `prefer` decides which bracket kind is tried first outside code fences.
    Returns None when nothing parseable is found.
    """
    text = strip_thinking_tokens(text or "").strip()
    if not text:
        return None

    candidates: list[str] = []
    fenced = _FENCED.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    pairs = [("[", "]"), ("{", "}")]
    if prefer == "object":
        pairs.reverse()
    for open_ch, close_ch in pairs:
        s, e = text.find(open_ch), text.rfind(close_ch)
        if s != -1 and e > s:
            candidates.append(text[s : e + 1])
    if text in ("null", "[]"):
        candidates.append(text)

    for raw in candidates:
        cleaned = _TRAILING_COMMA.sub(r"\1", raw.strip())
        try:
            return json.loads(cleaned)
        except ValueError:
            continue
    return None


class Clock:
    """Source of "now" for scheduling and expiry checks."""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    def __init__(self, tz: Optional[str] = None) -> None:
        self.tz: tzinfo = ZoneInfo(tz) if tz else timezone.utc

    def now(self) -> datetime:
        return datetime.now(self.tz)


class FixedClock(Clock):
    """Clock pinned to a given instant; `advance` moves it forward."""

    def __init__(self, at: datetime) -> None:
        self._at = at

    def now(self) -> datetime:
        return self._at

    def advance(self, **delta: float) -> None:
        self._at = self._at + timedelta(**delta)
