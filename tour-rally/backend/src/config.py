from __future__ import annotations

import os
from typing import Any, Optional

from pydantic import BaseModel, Field

from utils import mask_secret


class Configuration(BaseModel):
    # Directions (Google Maps)
    google_maps_api_key: Optional[str] = Field(default=None)
    directions_base_url: str = Field(default="https://maps.googleapis.com/maps/api")
    directions_timeout: int = Field(default=10)
    directions_language: str = Field(default="ja")

    # LLM content provider
    local_llm: Optional[str] = Field(default=None)
    llm_provider: Optional[str] = Field(default=None)
    llm_api_key: Optional[str] = Field(default=None)
    llm_base_url: Optional[str] = Field(default=None)
    llm_model_id: Optional[str] = Field(default=None)
    # native ollama base (without /v1)
    ollama_base_url: str = Field(default="http://localhost:11434")
    content_timeout: int = Field(default=30)

    # Check-in and rewards
    check_in_radius_m: float = Field(default=100.0)
    points_per_visit: int = Field(default=100)
    reward_validity_days: int = Field(default=180)
    special_reward_validity_days: int = Field(default=365)
    timezone: str = Field(default="Asia/Tokyo")

    # Storage
    store_backend: str = Field(default="memory")
    redis_url: str = Field(default="redis://localhost:6379/0")
    store_ttl_sec: int = Field(default=60 * 60 * 24 * 365)
    catalog_path: Optional[str] = Field(default=None)

    @classmethod
    def from_env(cls, overrides: Optional[dict[str, Any]] = None) -> "Configuration":
        raw: dict[str, Any] = {}

        env_map = {
            "google_maps_api_key": os.getenv("GOOGLE_MAPS_API_KEY"),
            "directions_base_url": os.getenv("DIRECTIONS_BASE_URL"),
            "directions_timeout": os.getenv("DIRECTIONS_TIMEOUT"),
            "directions_language": os.getenv("DIRECTIONS_LANGUAGE"),
            # LLM
            "local_llm": os.getenv("LOCAL_LLM"),
            "llm_provider": os.getenv("LLM_PROVIDER"),
            "llm_api_key": os.getenv("LLM_API_KEY") or os.getenv("GEMINI_API_KEY"),
            "llm_base_url": os.getenv("LLM_BASE_URL"),
            "llm_model_id": os.getenv("LLM_MODEL_ID"),
            "ollama_base_url": os.getenv("OLLAMA_BASE_URL"),
            "content_timeout": os.getenv("CONTENT_TIMEOUT"),
            # core
            "check_in_radius_m": os.getenv("CHECK_IN_RADIUS_M"),
            "points_per_visit": os.getenv("POINTS_PER_VISIT"),
            "reward_validity_days": os.getenv("REWARD_VALIDITY_DAYS"),
            "special_reward_validity_days": os.getenv("SPECIAL_REWARD_VALIDITY_DAYS"),
            "timezone": os.getenv("TIMEZONE"),
            # storage
            "store_backend": os.getenv("STORE_BACKEND"),
            "redis_url": os.getenv("REDIS_URL"),
            "store_ttl_sec": os.getenv("STORE_TTL_SEC"),
            "catalog_path": os.getenv("CATALOG_PATH"),
        }

        for k, v in env_map.items():
            if v is None:
                continue
            raw[k] = v

        if overrides:
            raw.update({k: v for k, v in overrides.items() if v is not None})

        return cls(**raw)

    def require_directions(self) -> None:
        if not self.google_maps_api_key:
            raise ValueError("GOOGLE_MAPS_API_KEY is required")

    def content_enabled(self) -> bool:
        return bool(self.llm_provider or self.llm_base_url or self.local_llm)

    def log_summary(self) -> str:
        return (
            "directions=%s base=%s timeout=%s llm=%s store=%s catalog=%s api_key=%s llm_key=%s"
            % (
                bool(self.google_maps_api_key),
                self.directions_base_url,
                self.directions_timeout,
                self.llm_provider or "unset",
                self.store_backend,
                self.catalog_path or "bundled",
                mask_secret(self.google_maps_api_key),
                mask_secret(self.llm_api_key),
            )
        )

    def sanitized_ollama_url(self) -> str:
        base = (self.ollama_base_url or "http://localhost:11434").rstrip("/")
        if not base.endswith("/v1"):
            base = f"{base}/v1"
        return base
