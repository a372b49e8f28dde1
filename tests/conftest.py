from __future__ import annotations

from typing import Any

import pytest

from memory_zones.docstore.memory import InMemoryDocumentStore
from memory_zones.graph.client import KnowledgeGraph
from memory_zones.relevance.base import ZoneDescription


class FakeRelevance:
    """Scripted relevance filter that records what it was asked."""

    def __init__(
        self,
        scores: dict[str, int] | None = None,
        zones: dict[str, int] | None = None,
        description: ZoneDescription | None = None,
        error: Exception | None = None,
        enabled: bool = True,
    ):
        self.scores = scores
        self.zones = zones
        self.description = description
        self.error = error
        self._enabled = enabled
        self.calls: list[tuple[str, Any]] = []

    @property
    def enabled(self) -> bool:
        return self._enabled

    def score(self, candidates, need, reason=None):
        self.calls.append(("score", [c["name"] for c in candidates]))
        if self.error:
            raise self.error
        return self.scores

    def describe_zone(self, zone, current_description, sample_entities, user_hint=None):
        self.calls.append(("describe_zone", zone))
        if self.error:
            raise self.error
        return self.description

    def classify_zones(self, zones, reason):
        self.calls.append(("classify_zones", [z["name"] for z in zones]))
        if self.error:
            raise self.error
        return self.zones


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def graph(store: InMemoryDocumentStore) -> KnowledgeGraph:
    g = KnowledgeGraph(store)
    g.initialize()
    return g


def make_graph(relevance=None, threshold: int = 10) -> KnowledgeGraph:
    g = KnowledgeGraph(InMemoryDocumentStore(), relevance=relevance, relevance_threshold=threshold)
    g.initialize()
    return g


@pytest.fixture
def graph_with_filter():
    """Factory: a fresh graph wired to a `FakeRelevance` built from the keyword arguments."""

    def build(threshold: int = 10, **kwargs) -> tuple[KnowledgeGraph, FakeRelevance]:
        fake = FakeRelevance(**kwargs)
        return make_graph(fake, threshold), fake

    return build


@pytest.fixture
def fresh_graph() -> KnowledgeGraph:
    """A second, independent graph (its own store)."""
    return make_graph()
