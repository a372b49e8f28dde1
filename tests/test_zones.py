"""Tests for the zone registry."""

from __future__ import annotations

import pytest

from memory_zones.docstore.base import NamespaceKind
from memory_zones.errors import InvalidArgumentError
from memory_zones.graph.client import KnowledgeGraph
from memory_zones.graph.models import Entity
from memory_zones.graph.zones import validate_zone_name


class TestZoneNames:
    @pytest.mark.parametrize("name", ["default", "work", "project-x", "a.b_c", "2024"])
    def test_valid(self, name: str):
        assert validate_zone_name(name) == name

    @pytest.mark.parametrize("name", ["", "  ", "Work", "has space", "-lead", "a/b", "x" * 101])
    def test_invalid(self, name: str):
        with pytest.raises(InvalidArgumentError):
            validate_zone_name(name)


class TestRegistry:
    def test_default_zone_exists(self, graph: KnowledgeGraph):
        meta = graph.zones.get("default")
        assert meta is not None
        assert meta.description == "Default knowledge zone"

    def test_add_default_rejected(self, graph: KnowledgeGraph):
        with pytest.raises(InvalidArgumentError):
            graph.zones.add("default")

    def test_add_and_list(self, graph: KnowledgeGraph):
        graph.zones.add("work", description="Work notes")
        graph.zones.add("home")
        names = [z.name for z in graph.zones.list()]
        assert names == ["default", "home", "work"]
        assert graph.zones.get("work").description == "Work notes"

    def test_implicit_creation_on_write(self, graph: KnowledgeGraph, store):
        graph.entities.save(Entity(name="A"), "notes")
        assert graph.zones.get("notes") is not None
        assert store.namespace_exists(graph.namespaces.entities("notes"))

    def test_detects_unregistered_namespace(self, graph: KnowledgeGraph, store):
        store.ensure_namespace("knowledge-graph@legacy", NamespaceKind.ENTITIES)
        names = [z.name for z in graph.zones.list()]
        assert "legacy" in names
        assert graph.zones.get("legacy") is not None

    def test_update_description_keeps_created_at(self, graph: KnowledgeGraph):
        created = graph.zones.add("work")
        updated = graph.zones.update_description("work", "Work notes", "Work")
        assert updated.description == "Work notes"
        assert updated.short_description == "Work"
        assert updated.created_at == created.created_at


class TestDelete:
    def test_default_cannot_be_deleted(self, graph: KnowledgeGraph):
        with pytest.raises(InvalidArgumentError):
            graph.zones.delete("default")

    def test_delete_cascades(self, graph: KnowledgeGraph, store):
        graph.relations.save("A", "B", "knows", "default", "work")
        graph.relations.save("B", "C", "knows", "work", "work")
        graph.relations.save("A", "D", "knows", "default", "default")

        assert graph.zones.delete("work") is True
        assert graph.zones.get("work") is None
        assert not store.namespace_exists(graph.namespaces.entities("work"))
        assert store.count(graph.namespaces.relations) == 1
        assert "work" not in [z.name for z in graph.zones.list()]

    def test_delete_unknown_zone(self, graph: KnowledgeGraph):
        assert graph.zones.delete("ghost") is False

    def test_zone_can_be_recreated(self, graph: KnowledgeGraph):
        graph.entities.save(Entity(name="A"), "work")
        graph.zones.delete("work")
        graph.entities.save(Entity(name="B"), "work")
        assert [e.name for e in graph.entities.iter_zone("work")] == ["B"]
        assert graph.zones.get("work") is not None


class TestStats:
    def test_counts(self, graph: KnowledgeGraph):
        graph.entities.save(Entity(name="Paris", entity_type="city"), "geo")
        graph.entities.save(Entity(name="Lyon", entity_type="city"), "geo")
        graph.entities.save(Entity(name="France", entity_type="country"), "geo")
        graph.relations.save("Paris", "France", "in", "geo", "geo")
        graph.relations.save("Paris", "Europe", "in", "geo", "default")

        stats = graph.zones.stats("geo")
        assert stats.entity_count == 3
        assert stats.relation_count == 2
        assert stats.entity_types == {"city": 2, "country": 1}
        assert stats.relation_types == {"in": 2}


class TestReset:
    def test_drops_every_graph_namespace(self, graph: KnowledgeGraph, store):
        graph.relations.save("A", "B", "knows", "default", "work")
        store.ensure_namespace("other-app", NamespaceKind.ENTITIES)

        dropped = graph.zones.reset()
        assert sorted(dropped) == sorted(
            [
                graph.namespaces.entities("default"),
                graph.namespaces.entities("work"),
                graph.namespaces.relations,
                graph.namespaces.metadata,
            ]
        )
        assert store.list_namespaces(graph.namespaces.entity_prefix) == []
        assert not store.namespace_exists(graph.namespaces.relations)
        assert store.namespace_exists("other-app")

    def test_graph_is_usable_after_reset(self, graph: KnowledgeGraph):
        graph.entities.save(Entity(name="A"), "default")
        graph.zones.add("work")
        graph.reset()

        assert [z.name for z in graph.zones.list()] == ["default"]
        assert list(graph.entities.iter_zone("default")) == []
        graph.entities.save(Entity(name="B"), "work")
        assert graph.zones.get("work") is not None
