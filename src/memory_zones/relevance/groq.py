"""
Relevance filter backed by an OpenAI-compatible chat-completions API (Groq by default).

Rate limiting (HTTP 429) walks down the configured model list; when every
model is limited the filter switches itself off for a cooldown period. Any
other failure is logged and reported as "no answer" (None).
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable
from typing import Any

import httpx

from .base import ZoneDescription
from .http import HttpClientFactory, transient_retry
from .state import ModelRotation

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")

SCORE_SYSTEM_PROMPT = """You are an intelligent filter for a knowledge graph search.
Your task is to analyze search results and rate how useful each entity is for the user's information needs.
Rate each entity from 0 (useless) to 100 (exactly what is needed).
Return ONLY a JSON object mapping entity names to scores. Format: {"entityName": score}"""

ZONES_SYSTEM_PROMPT = """You are an intelligent zone classifier for a knowledge graph system.
Your task is to analyze memory zones and determine how useful each zone is to the user's current needs.
Rate each zone on a scale from 0-2:
0: not useful
1: a little useful
2: very useful

Return ONLY a JSON object mapping zone names to usefulness scores. Format: {"zoneName": usefulness}"""

DESCRIBE_SYSTEM_PROMPT = """You are a knowledge organization assistant.
Your task is to describe what a memory zone of a knowledge graph contains, based on a sample of its entities.
Return ONLY a JSON object of the form {"description": "...", "shortDescription": "..."}.
The description is a short paragraph; the shortDescription is at most one sentence."""


def parse_json_reply(content: str) -> Any:
    """Decode a model reply that should be JSON, tolerating markdown code fences."""
    text = _CODE_FENCE.sub("", content.strip()).strip()
    parsed = json.loads(text)
    # some models wrap the payload in a JSON string
    if isinstance(parsed, str):
        parsed = json.loads(parsed)
    return parsed


class ChatRelevanceFilter:
    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.groq.com/openai/v1",
        models: list[str] | None = None,
        cooldown_seconds: float = 300.0,
        timeout_seconds: float = 60.0,
        client: httpx.Client | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_key = api_key
        self.rotation = ModelRotation(models or ["llama-3.3-70b-versatile"], cooldown_seconds, clock=clock)
        self.client = client or HttpClientFactory.client(
            base_url=base_url,
            headers={"Accept": "application/json"},
            read_timeout=timeout_seconds,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def close(self) -> None:
        self.client.close()

    @transient_retry()
    def _post(self, payload: dict[str, Any]) -> httpx.Response:
        return self.client.post(
            "/chat/completions",
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

    def chat(self, system: str, user: str) -> str | None:
        """Send one chat completion; None when disabled, exhausted or failing."""
        if not self.enabled:
            return None
        while True:
            model = self.rotation.current()
            if model is None:
                logger.warning("Relevance filter temporarily disabled, skipping")
                return None
            payload = {
                "model": model,
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            }
            try:
                response = self._post(payload)
            except httpx.HTTPError as e:
                logger.warning(f"Relevance filter request failed: {e}")
                return None
            if response.status_code == 429:
                if self.rotation.rate_limited():
                    continue
                return None
            if response.is_error:
                logger.warning(f"Relevance filter error {response.status_code} from model {model}")
                return None
            try:
                return response.json()["choices"][0]["message"]["content"]
            except (ValueError, KeyError, IndexError, TypeError) as e:
                logger.warning(f"Unexpected chat completion payload: {e}")
                return None

    def _ask_json(self, system: str, user: str) -> Any:
        content = self.chat(system, user)
        if content is None:
            return None
        try:
            return parse_json_reply(content)
        except ValueError:
            logger.warning(f"Relevance filter returned non-JSON reply: {content[:200]!r}")
            return None

    def score(
        self, candidates: list[dict[str, Any]], need: str, reason: str | None = None
    ) -> dict[str, int] | None:
        if not candidates or not need:
            return None
        prompt = f"Why am I searching: {need}"
        if reason:
            prompt += f"\nReason for search: {reason}"
        prompt += (
            "\n\nHere are the search results to rate:\n"
            f"{json.dumps(candidates, indent=2, default=str)}\n\n"
            "Return a JSON object mapping each entity name to its usefulness (0-100)."
        )
        parsed = self._ask_json(SCORE_SYSTEM_PROMPT, prompt)
        if not isinstance(parsed, dict):
            if parsed is not None:
                logger.warning("Unexpected relevance reply shape, ignoring")
            return None
        scores: dict[str, int] = {}
        for name, value in parsed.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            scores[str(name)] = max(0, min(100, int(value)))
        return scores

    def classify_zones(self, zones: list[dict[str, Any]], reason: str) -> dict[str, int] | None:
        if not zones or not reason:
            return None
        zone_data = [{"name": z["name"], "description": z.get("description") or ""} for z in zones]
        prompt = (
            f"Reason for listing zones: {reason}\n\n"
            f"Here are the zones to classify:\n{json.dumps(zone_data, indent=2)}\n\n"
            "Return a JSON object mapping each zone name to its usefulness score (0-2):\n"
            "0: not useful for my reason\n"
            "1: a little useful for my reason\n"
            "2: very useful for my reason"
        )
        parsed = self._ask_json(ZONES_SYSTEM_PROMPT, prompt)
        if not isinstance(parsed, dict):
            return None
        classified: dict[str, int] = {}
        for name, value in parsed.items():
            valid = isinstance(value, (int, float)) and not isinstance(value, bool) and 0 <= value <= 2
            classified[str(name)] = int(value) if valid else 2
        return classified

    def describe_zone(
        self,
        zone: str,
        current_description: str | None,
        sample_entities: list[dict[str, Any]],
        user_hint: str | None = None,
    ) -> ZoneDescription | None:
        prompt = f"Zone name: {zone}\nCurrent description: {current_description or '(none)'}"
        if user_hint:
            prompt += f"\nWhat the user says this zone is about: {user_hint}"
        prompt += f"\n\nSample entities:\n{json.dumps(sample_entities, indent=2, default=str)}"
        parsed = self._ask_json(DESCRIBE_SYSTEM_PROMPT, prompt)
        if not isinstance(parsed, dict) or not parsed.get("description"):
            return None
        description = str(parsed["description"]).strip()
        short = str(parsed.get("shortDescription") or description.split(".")[0]).strip()
        return ZoneDescription(description=description, short_description=short)
