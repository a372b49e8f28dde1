"""Tests for copy / move / merge between zones."""

from __future__ import annotations

import pytest

from memory_zones.errors import InvalidArgumentError, UpstreamUnavailableError
from memory_zones.graph.client import KnowledgeGraph
from memory_zones.graph.models import Entity


@pytest.fixture
def src(graph: KnowledgeGraph) -> KnowledgeGraph:
    graph.entities.save(Entity(name="A", entity_type="person", observations=["a1"], relevance_score=5.0), "src")
    graph.entities.save(Entity(name="B", entity_type="person", observations=["b1"]), "src")
    graph.relations.save("A", "B", "knows", "src", "src")
    return graph


class TestCopy:
    def test_copies_entities_and_relations(self, src: KnowledgeGraph):
        result = src.operations.copy(["A", "B"], "src", "dst")
        assert result.copied == ["A", "B"]
        assert result.skipped == []
        assert result.relations_copied == 1

        a = src.entities.get_untracked("A", "dst")
        assert a.entity_type == "person"
        assert a.observations == ["a1"]
        assert a.relevance_score == 5.0
        assert a.read_count == 0
        assert src.relations.get("A", "B", "knows", "dst", "dst") is not None
        assert src.entities.get_untracked("A", "src") is not None

    def test_relation_dropped_when_endpoint_missing(self, src: KnowledgeGraph):
        result = src.operations.copy(["A"], "src", "dst")
        assert result.copied == ["A"]
        assert result.relations_copied == 0
        assert src.entities.get_untracked("B", "dst") is None

    def test_relation_kept_when_endpoint_already_in_target(self, src: KnowledgeGraph):
        src.entities.save(Entity(name="B"), "dst")
        result = src.operations.copy(["A"], "src", "dst")
        assert result.relations_copied == 1

    def test_foreign_endpoint_is_kept(self, src: KnowledgeGraph):
        src.relations.save("A", "Acme", "works_at", "src", "companies")
        result = src.operations.copy(["A"], "src", "dst")
        assert result.relations_copied == 1
        assert src.relations.get("A", "Acme", "works_at", "dst", "companies") is not None

    def test_skips(self, src: KnowledgeGraph):
        src.entities.save(Entity(name="A", observations=["existing"]), "dst")
        result = src.operations.copy(["A", "Ghost"], "src", "dst")
        assert result.copied == []
        assert [s.name for s in result.skipped] == ["A", "Ghost"]
        assert src.entities.get_untracked("A", "dst").observations == ["existing"]

    def test_overwrite(self, src: KnowledgeGraph):
        src.entities.save(Entity(name="A", observations=["existing"]), "dst")
        result = src.operations.copy(["A"], "src", "dst", overwrite=True)
        assert result.copied == ["A"]
        assert src.entities.get_untracked("A", "dst").observations == ["a1"]

    def test_without_relations(self, src: KnowledgeGraph):
        result = src.operations.copy(["A", "B"], "src", "dst", copy_relations=False)
        assert result.relations_copied == 0
        assert src.relations.list_for_entities(["A"], "dst") == []

    @pytest.mark.parametrize(
        "names,source,target",
        [([], "src", "dst"), (["A"], "src", "src"), (["A"], "src", "Bad Zone"), (["", " "], "src", "dst")],
    )
    def test_validation(self, src: KnowledgeGraph, names, source, target):
        with pytest.raises(InvalidArgumentError):
            src.operations.copy(names, source, target)


class TestMove:
    def test_move_invariant(self, src: KnowledgeGraph):
        result = src.operations.move(["A", "B"], "src", "dst")
        assert result.moved == ["A", "B"]
        assert result.relations_moved == 1
        assert src.entities.get_untracked("A", "src") is None

        a = src.entities.get_untracked("A", "dst")
        assert a.entity_type == "person"
        assert a.observations == ["a1"]
        assert src.relations.list_for_entities(["A", "B"], "src") == []
        assert src.relations.get("A", "B", "knows", "dst", "dst") is not None

    def test_skipped_names_stay(self, src: KnowledgeGraph):
        src.entities.save(Entity(name="B"), "dst")
        result = src.operations.move(["A", "B"], "src", "dst")
        assert result.moved == ["A"]
        assert [s.name for s in result.skipped] == ["B"]
        assert src.entities.get_untracked("B", "src") is not None

    def test_failed_source_deletion_is_reported(self, src: KnowledgeGraph, monkeypatch):
        delete = src.entities.delete

        def flaky_delete(name, zone, cascade_relations=True):
            if name == "A":
                raise UpstreamUnavailableError("store down")
            if name == "B":
                return False
            return delete(name, zone, cascade_relations=cascade_relations)

        monkeypatch.setattr(src.entities, "delete", flaky_delete)
        result = src.operations.move(["A", "B"], "src", "dst")
        assert result.moved == ["A", "B"]
        assert [s.name for s in result.skipped] == ["A", "B"]
        assert "store down" in result.skipped[0].reason
        assert src.entities.get_untracked("A", "dst") is not None
        assert src.entities.get_untracked("A", "src") is not None


class TestMerge:
    def test_rename_keeps_both(self, graph: KnowledgeGraph):
        graph.entities.save(Entity(name="Common", observations=["from a"]), "a")
        graph.entities.save(Entity(name="Common", observations=["from b"]), "b")

        result = graph.operations.merge(["a", "b"], "m", overwrite_conflicts="rename")
        assert result.merged_zones == ["a", "b"]
        assert result.entities_copied == 2
        assert graph.entities.get_untracked("Common", "m").observations == ["from a"]
        assert graph.entities.get_untracked("Common_from_b", "m").observations == ["from b"]

    def test_rename_recreates_relations(self, graph: KnowledgeGraph):
        graph.relations.save("X", "Y", "knows", "a", "a")
        result = graph.operations.merge(["a"], "m", overwrite_conflicts="rename")
        assert result.relations_copied == 1
        assert graph.relations.get("X", "Y", "knows", "m", "m") is not None

    def test_skip_counts(self, graph: KnowledgeGraph):
        graph.entities.save(Entity(name="Common"), "a")
        graph.entities.save(Entity(name="Common"), "b")
        graph.entities.save(Entity(name="Only"), "b")

        result = graph.operations.merge(["a", "b"], "m")
        assert result.entities_copied == 2
        assert result.entities_skipped == 1

    def test_empty_and_self_zones_fail(self, graph: KnowledgeGraph):
        graph.zones.add("empty")
        graph.entities.save(Entity(name="A"), "m")
        result = graph.operations.merge(["empty", "m"], "m")
        assert result.merged_zones == []
        assert [(f.zone, f.reason) for f in result.failed_zones][0] == ("empty", "no entities")
        assert result.failed_zones[1].zone == "m"

    def test_delete_source_zones(self, graph: KnowledgeGraph):
        graph.entities.save(Entity(name="A"), "a")
        graph.entities.save(Entity(name="B"), "b")
        result = graph.operations.merge(["a", "b"], "m", delete_source_zones=True)
        assert result.merged_zones == ["a", "b"]
        assert graph.zones.get("a") is None
        assert graph.zones.get("b") is None
        assert sorted(graph.entities.names("m")) == ["A", "B"]

    def test_validation(self, graph: KnowledgeGraph):
        with pytest.raises(InvalidArgumentError):
            graph.operations.merge([], "m")
        with pytest.raises(InvalidArgumentError):
            graph.operations.merge(["a"], "m", overwrite_conflicts="replace")

    def test_deleted_sources_stay_deleted_when_a_later_zone_fails(self, graph: KnowledgeGraph, monkeypatch):
        graph.entities.save(Entity(name="A"), "a")
        graph.entities.save(Entity(name="B"), "b")
        names = graph.entities.names

        def failing_names(zone):
            if zone == "b":
                raise UpstreamUnavailableError("store down")
            return names(zone)

        monkeypatch.setattr(graph.entities, "names", failing_names)
        result = graph.operations.merge(["a", "b"], "m", delete_source_zones=True)
        assert result.merged_zones == ["a"]
        assert [(f.zone, f.reason) for f in result.failed_zones] == [("b", "store down")]
        assert graph.zones.get("a") is None
        assert graph.zones.get("b") is not None
        assert graph.entities.names("m") == ["A"]

    def test_rename_attaches_relations_to_the_original_name(self, graph: KnowledgeGraph):
        graph.entities.save(Entity(name="X", observations=["already in m"]), "m")
        graph.entities.save(Entity(name="X", observations=["from a"]), "a")
        graph.relations.save("X", "Y", "knows", "a", "a")

        result = graph.operations.merge(["a"], "m", overwrite_conflicts="rename")
        assert result.entities_copied == 2
        assert graph.entities.get_untracked("X_from_a", "m").observations == ["from a"]
        assert graph.relations.get("X", "Y", "knows", "m", "m") is not None
        assert graph.relations.list_for_entities(["X_from_a"], "m") == []
