from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Optional, Union

from hello_agents import HelloAgentsLLM, ToolAwareSimpleAgent
from loguru import logger

from config import Configuration
from errors import ContentError
from models import CATEGORIES, DIFFICULTIES, PointOfInterest
from services.spot_parser import parse_single_spot, parse_spot_list

try:
    from google import genai
    GEMINI_AVAILABLE = True
except ImportError:
    GEMINI_AVAILABLE = False


DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"
AREA_LABELS = {"enoshima": "Enoshima", "kamakura": "Kamakura"}

SYSTEM_PROMPT = (
    "You are a local tour guide for the Enoshima and Kamakura area in Japan."
    " Only suggest places that really exist. Answer with JSON only."
)

_RECORD_SHAPE = {
    "name": "spot name",
    "description": "about 100 characters",
    "category": "/".join(CATEGORIES),
    "tags": ["related tags"],
    "duration": "minutes to spend (number)",
    "difficulty": "/".join(DIFFICULTIES),
    "coordinates": {"lat": "latitude", "lng": "longitude"},
    "openHours": "opening hours",
    "entrance_fee": "fee in yen (number)",
    "tips": ["short tips"],
    "reason": "why this spot fits the visitor",
}


def _init_llm(cfg: Configuration) -> tuple[Union["genai.Client", HelloAgentsLLM], str]:
    """Gemini when configured, otherwise a HelloAgents LLM (Ollama or OpenAI-compatible)."""
    provider = (cfg.llm_provider or "").lower()

    if provider == "google" and GEMINI_AVAILABLE and cfg.llm_api_key:
        try:
            os.environ["GEMINI_API_KEY"] = cfg.llm_api_key
            client = genai.Client()
            logger.debug("content provider using Gemini model: {}", cfg.llm_model_id or DEFAULT_GEMINI_MODEL)
            return client, "gemini"
        except Exception as e:
            logger.warning("Gemini initialization failed: {}, falling back to HelloAgents LLM", e)

    kw: Dict[str, Any] = {"temperature": 0.2}
    if cfg.llm_model_id or cfg.local_llm:
        kw["model"] = cfg.llm_model_id or cfg.local_llm
    if cfg.llm_provider:
        kw["provider"] = cfg.llm_provider
    if cfg.llm_base_url:
        kw["base_url"] = cfg.llm_base_url
    elif provider == "ollama":
        kw["base_url"] = cfg.sanitized_ollama_url()
    if cfg.llm_api_key:
        kw["api_key"] = cfg.llm_api_key
    return HelloAgentsLLM(**kw), "hello_agents"


class ContentProvider:
    """LLM-backed spot search. Every answer is treated as untrusted text."""

    def __init__(self, cfg: Configuration) -> None:
        self.cfg = cfg
        self._client: Optional[Any] = None
        self._kind = ""

    def _llm(self) -> tuple[Any, str]:
        if self._client is None:
            self._client, self._kind = _init_llm(self.cfg)
        return self._client, self._kind

    def _generate(self, prompt: str) -> str:
        try:
            client, kind = self._llm()
            if kind == "gemini":
                response = client.models.generate_content(
                    model=self.cfg.llm_model_id or DEFAULT_GEMINI_MODEL,
                    contents=f"{SYSTEM_PROMPT}\n\n{prompt}",
                )
                raw = response.text
            else:
                agent = ToolAwareSimpleAgent(
                    name="SpotGuide",
                    llm=client,
                    system_prompt=SYSTEM_PROMPT,
                    enable_tool_calling=False,
                )
                raw = agent.run(prompt)
                agent.clear_history()
        except Exception as exc:
            raise ContentError(f"content provider call failed: {exc}") from exc
        if not raw:
            raise ContentError("content provider returned an empty answer")
        return raw

    @staticmethod
    def _area_label(area: str) -> str:
        return AREA_LABELS.get((area or "").lower(), "Enoshima / Kamakura")

    def search_category(self, category: str, area: str, preferences: str = "") -> List[PointOfInterest]:
        prompt = (
            f"Recommend 3 spots in {self._area_label(area)} related to \"{category}\".\n"
            + (f"Visitor preferences: {preferences}\n" if preferences else "")
            + "Answer with a JSON array of objects shaped like:\n"
            + json.dumps([_RECORD_SHAPE], ensure_ascii=False, indent=2)
            + "\nReturn an empty array if nothing fits."
        )
        spots = parse_spot_list(
            self._generate(prompt),
            area=area,
            id_prefix="category",
            extra_tags=["カテゴリ検索", category],
        )
        logger.info("category search '{}' area={} -> {} spots", category, area, len(spots))
        return spots

    def search_what_to_do(self, what_to_do: str, area: str, preferences: str = "") -> List[PointOfInterest]:
        prompt = (
            f"A visitor to {self._area_label(area)} wrote what they want to do:\n\"{what_to_do}\"\n"
            + (f"Visitor preferences: {preferences}\n" if preferences else "")
            + "Suggest up to 3 real spots where they can do it, as a JSON array of objects shaped like:\n"
            + json.dumps([_RECORD_SHAPE], ensure_ascii=False, indent=2)
            + "\nReturn an empty array if nothing fits."
        )
        spots = parse_spot_list(
            self._generate(prompt),
            area=area,
            id_prefix="what-to-do",
            extra_tags=["やりたいこと", "Web検索"],
        )
        logger.info("what-to-do search area={} -> {} spots", area, len(spots))
        return spots

    def lookup_spot(self, name: str, area: str) -> Optional[PointOfInterest]:
        prompt = (
            f"Give details for the spot \"{name}\" in {self._area_label(area)}.\n"
            "Answer with one JSON object shaped like:\n"
            + json.dumps(_RECORD_SHAPE, ensure_ascii=False, indent=2)
            + "\nAnswer null if the spot does not exist."
        )
        spot = parse_single_spot(
            self._generate(prompt),
            area=area,
            id_prefix="custom",
            extra_tags=["Web検索", "追加スポット"],
        )
        logger.info("spot lookup '{}' area={} found={}", name, area, spot is not None)
        return spot
