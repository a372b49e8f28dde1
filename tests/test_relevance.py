"""Tests for the chat-completions relevance filter and its model rotation."""

from __future__ import annotations

import json

import httpx
import pytest

from memory_zones.relevance.groq import ChatRelevanceFilter, parse_json_reply
from memory_zones.relevance.state import ModelRotation, RotationState


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def completion(content) -> httpx.Response:
    if not isinstance(content, str):
        content = json.dumps(content)
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


def build_filter(handler, models=("m1", "m2"), clock=None, api_key="secret") -> ChatRelevanceFilter:
    client = httpx.Client(base_url="https://llm.test/v1", transport=httpx.MockTransport(handler))
    return ChatRelevanceFilter(
        api_key=api_key,
        models=list(models),
        cooldown_seconds=300,
        client=client,
        clock=clock or FakeClock(),
    )


class TestModelRotation:
    def test_requires_models(self):
        with pytest.raises(ValueError):
            ModelRotation([])

    def test_degrade_then_upgrade(self):
        clock = FakeClock()
        rotation = ModelRotation(["m1", "m2", "m3"], cooldown_seconds=300, clock=clock)
        assert rotation.state is RotationState.HEALTHY

        assert rotation.rate_limited() is True
        assert rotation.current() == "m2"
        assert rotation.state is RotationState.DEGRADED

        clock.now += 300
        assert rotation.current() == "m1"
        assert rotation.state is RotationState.HEALTHY

    def test_disable_then_recover(self):
        clock = FakeClock()
        rotation = ModelRotation(["m1", "m2"], cooldown_seconds=300, clock=clock)
        assert rotation.rate_limited() is True
        assert rotation.rate_limited() is False
        assert rotation.state is RotationState.DISABLED
        assert rotation.current() is None

        clock.now += 299
        assert rotation.current() is None
        clock.now += 1
        assert rotation.current() == "m1"


class TestParseReply:
    def test_plain_json(self):
        assert parse_json_reply('{"a": 1}') == {"a": 1}

    def test_code_fence(self):
        assert parse_json_reply('```json\n{"a": 1}\n```') == {"a": 1}

    def test_json_in_string(self):
        assert parse_json_reply(json.dumps('{"a": 1}')) == {"a": 1}

    def test_garbage(self):
        with pytest.raises(ValueError):
            parse_json_reply("sure, here you go")


class TestChatRelevanceFilter:
    def test_score(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return completion({"A": 90, "B": 150, "C": "high"})

        relevance = build_filter(handler)
        scores = relevance.score([{"name": "A"}, {"name": "B"}, {"name": "C"}], "find A", reason="testing")
        assert scores == {"A": 90, "B": 100}

        request = seen[0]
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer secret"
        body = json.loads(request.content)
        assert body["model"] == "m1"
        assert "find A" in body["messages"][1]["content"]
        assert "testing" in body["messages"][1]["content"]

    def test_rate_limit_falls_back_to_next_model(self):
        models = []

        def handler(request: httpx.Request) -> httpx.Response:
            model = json.loads(request.content)["model"]
            models.append(model)
            if model == "m1":
                return httpx.Response(429, json={"error": "rate limited"})
            return completion({"A": 50})

        relevance = build_filter(handler)
        assert relevance.score([{"name": "A"}], "need") == {"A": 50}
        assert models == ["m1", "m2"]
        assert relevance.rotation.state is RotationState.DEGRADED

    def test_all_models_limited_disables(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(429)

        clock = FakeClock()
        relevance = build_filter(handler, clock=clock)
        assert relevance.score([{"name": "A"}], "need") is None
        assert len(calls) == 2
        assert relevance.rotation.state is RotationState.DISABLED

        assert relevance.score([{"name": "A"}], "need") is None
        assert len(calls) == 2

        # after the cooldown both models are tried again
        clock.now += 300
        relevance.score([{"name": "A"}], "need")
        assert len(calls) == 4

    def test_server_error_is_no_answer(self):
        relevance = build_filter(lambda request: httpx.Response(500))
        assert relevance.score([{"name": "A"}], "need") is None

    def test_non_json_reply_is_no_answer(self):
        relevance = build_filter(lambda request: completion("I cannot help with that"))
        assert relevance.score([{"name": "A"}], "need") is None

    def test_without_api_key(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return completion({})

        relevance = build_filter(handler, api_key=None)
        assert relevance.enabled is False
        assert relevance.score([{"name": "A"}], "need") is None
        assert calls == []

    def test_classify_zones_normalizes_scores(self):
        relevance = build_filter(lambda request: completion({"work": 0, "home": 1, "misc": 7, "old": "x"}))
        zones = [{"name": n, "description": None} for n in ("work", "home", "misc", "old")]
        assert relevance.classify_zones(zones, "planning") == {"work": 0, "home": 1, "misc": 2, "old": 2}

    def test_describe_zone(self):
        reply = {"description": "Cities and countries. Mostly Europe.", "shortDescription": "Geography"}
        relevance = build_filter(lambda request: completion(reply))
        described = relevance.describe_zone("geo", None, [{"name": "Paris"}], user_hint="places")
        assert described.description == "Cities and countries. Mostly Europe."
        assert described.short_description == "Geography"

    def test_describe_zone_without_description(self):
        relevance = build_filter(lambda request: completion({"shortDescription": "x"}))
        assert relevance.describe_zone("geo", None, []) is None
