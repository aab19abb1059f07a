from __future__ import annotations

import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import requests

from config import Configuration
from errors import DirectionsError
from models import Coordinates, RouteInfo, RouteStep


UNKNOWN = "unknown"
_HTML_TAG = re.compile(r"<[^>]*>")


@dataclass
class _RetryPolicy:
    retries: int = 3
    base_delay: float = 0.5


def _latlng(value: Coordinates | str) -> str:
    if isinstance(value, Coordinates):
        return f"{value.lat},{value.lng}"
    return str(value)


class DirectionsClient:
    def __init__(self, cfg: Configuration, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.base = cfg.directions_base_url.rstrip("/")
        self.session = session or requests.Session()
        self.retry = _RetryPolicy()
        self._cache_ttl = 60 * 10  # transit timetables move; keep it short
        self._cache_max = 256
        self._route_cache: OrderedDict[str, Tuple[float, RouteInfo]] = OrderedDict()
        self._cache_lock = threading.Lock()

    def _cache_get(self, key: str) -> Optional[RouteInfo]:
        with self._cache_lock:
            entry = self._route_cache.get(key)
            if not entry:
                return None
            ts, value = entry
            if time.time() - ts > self._cache_ttl:
                self._route_cache.pop(key, None)
                return None
            self._route_cache.move_to_end(key)
            return value

    def _cache_set(self, key: str, value: RouteInfo) -> None:
        with self._cache_lock:
            if len(self._route_cache) >= self._cache_max:
                self._route_cache.popitem(last=False)
            self._route_cache[key] = (time.time(), value)

    def _get(self, path: str, params: dict) -> dict:
        url = f"{self.base}{path}"
        headers = {"Accept": "application/json"}
        params = {**params, "key": self.cfg.google_maps_api_key}
        policy = self.retry
        attempt = 0
        while True:
            attempt += 1
            try:
                resp = self.session.get(url, headers=headers, params=params, timeout=self.cfg.directions_timeout)
            except requests.RequestException as exc:  # network error
                if attempt <= policy.retries:
                    time.sleep(policy.base_delay * attempt)
                    continue
                raise DirectionsError(f"request error: {exc}")

            if resp.status_code in (429, 500, 502, 503, 504):
                if attempt <= policy.retries:
                    time.sleep(policy.base_delay * attempt)
                    continue
                snippet = resp.text[:300]
                raise DirectionsError(f"upstream {resp.status_code}: {snippet}")

            if not resp.ok:
                snippet = resp.text[:300]
                raise DirectionsError(f"upstream {resp.status_code}: {snippet}")

            try:
                return resp.json()
            except ValueError:
                raise DirectionsError("invalid json response")

    @staticmethod
    def _parse_steps(raw_steps: List[dict]) -> List[RouteStep]:
        steps: list[RouteStep] = []
        for step in raw_steps or []:
            details = step.get("transit_details")
            transit = None
            if isinstance(details, dict):
                transit = {
                    "line": (details.get("line") or {}).get("name") or UNKNOWN,
                    "departure_stop": (details.get("departure_stop") or {}).get("name") or UNKNOWN,
                    "arrival_stop": (details.get("arrival_stop") or {}).get("name") or UNKNOWN,
                    "departure_time": (details.get("departure_time") or {}).get("text") or UNKNOWN,
                    "arrival_time": (details.get("arrival_time") or {}).get("text") or UNKNOWN,
                    "num_stops": int(details.get("num_stops") or 0),
                }
            steps.append(
                RouteStep(
                    instruction=_HTML_TAG.sub("", step.get("html_instructions") or ""),
                    duration=(step.get("duration") or {}).get("text") or UNKNOWN,
                    distance=(step.get("distance") or {}).get("text") or UNKNOWN,
                    travel_mode=str(step.get("travel_mode") or UNKNOWN),
                    transit_details=transit,
                )
            )
        return steps

    def _parse_route(self, payload: dict) -> RouteInfo:
        status = payload.get("status")
        if status != "OK":
            raise DirectionsError(f"directions status {status}")
        routes = payload.get("routes") or []
        if not routes or not (routes[0].get("legs") or []):
            raise DirectionsError("directions returned no legs")
        route = routes[0]
        leg = route["legs"][0]
        duration = leg.get("duration") or {}
        distance = leg.get("distance") or {}
        fare = route.get("fare") or {}
        return RouteInfo(
            duration=duration.get("text") or UNKNOWN,
            duration_value=int(duration.get("value") or 0),
            distance=distance.get("text") or UNKNOWN,
            distance_value=int(distance.get("value") or 0),
            fare=fare.get("text") or None,
            steps=self._parse_steps(leg.get("steps") or []),
            summary=route.get("summary") or "",
            warnings=[str(w) for w in route.get("warnings") or []],
        )

    def route(
        self,
        origin: Coordinates | str,
        destination: Coordinates | str,
        mode: str = "transit",
    ) -> RouteInfo:
        """Fetch one route; raises DirectionsError on any provider problem."""
        try:
            self.cfg.require_directions()
        except ValueError as exc:
            raise DirectionsError(str(exc))
        o, d = _latlng(origin), _latlng(destination)
        key = f"route:{mode}:{o}:{d}"
        cached = self._cache_get(key)
        if cached is not None:
            return cached
        params: dict[str, Any] = {
            "origin": o,
            "destination": d,
            "mode": mode,
            "language": self.cfg.directions_language,
        }
        if mode == "transit":
            params["departure_time"] = int(time.time())
        payload = self._get("/directions/json", params)
        info = self._parse_route(payload)
        self._cache_set(key, info)
        return info
