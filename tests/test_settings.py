from __future__ import annotations

import pytest

from memory_zones.errors import InvalidArgumentError
from memory_zones.graph.client import build_knowledge_graph
from memory_zones.relevance.groq import ChatRelevanceFilter
from memory_zones.settings import MemoryZonesSettings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("GROQ_API_KEY", "MEMORY_ZONES_AI_API_KEY", "MEMORY_ZONES_AI_MODELS", "MEMORY_ZONES_DOCUMENT_STORE"):
        monkeypatch.delenv(var, raising=False)


def test_defaults():
    cfg = MemoryZonesSettings()
    assert cfg.default_zone == "default"
    assert cfg.document_store == "elasticsearch"
    assert cfg.relevance_threshold == 10
    assert cfg.model_list[0] == "llama-3.3-70b-versatile"


def test_env_prefix(monkeypatch):
    monkeypatch.setenv("MEMORY_ZONES_INDEX_PREFIX", "kg")
    monkeypatch.setenv("MEMORY_ZONES_BIND_PORT", "9000")
    cfg = MemoryZonesSettings()
    assert cfg.index_prefix == "kg"
    assert cfg.bind_port == 9000


def test_groq_key_alias(monkeypatch):
    monkeypatch.setenv("GROQ_API_KEY", "gsk_test")
    assert MemoryZonesSettings().ai_api_key == "gsk_test"


def test_model_list_parsing(monkeypatch):
    monkeypatch.setenv("MEMORY_ZONES_AI_MODELS", " a , b,,c ")
    assert MemoryZonesSettings().model_list == ["a", "b", "c"]


class TestBuildKnowledgeGraph:
    def test_memory_backend_without_relevance(self, monkeypatch):
        monkeypatch.setenv("MEMORY_ZONES_DOCUMENT_STORE", "memory")
        graph = build_knowledge_graph(MemoryZonesSettings())
        assert graph.relevance is None
        graph.initialize()
        assert [z["name"] for z in graph.list_zones()] == ["default"]

    def test_relevance_filter_with_key(self, monkeypatch):
        monkeypatch.setenv("MEMORY_ZONES_DOCUMENT_STORE", "memory")
        monkeypatch.setenv("GROQ_API_KEY", "gsk_test")
        graph = build_knowledge_graph(MemoryZonesSettings())
        try:
            assert isinstance(graph.relevance, ChatRelevanceFilter)
            assert graph.relevance.enabled is True
        finally:
            graph.close()

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("MEMORY_ZONES_DOCUMENT_STORE", "sqlite")
        with pytest.raises(InvalidArgumentError):
            build_knowledge_graph(MemoryZonesSettings())
