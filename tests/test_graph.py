"""Tests for the Graph Builder and the dependency graph view."""

import pytest

from plangraph.core.errors import DuplicateNodeError
from plangraph.core.graph import (
    EdgeLayer,
    Relation,
    build_dependency_graph,
    build_graph,
)
from plangraph.core.store import Entity, NodeType, ProjectSnapshot


@pytest.fixture
def project():
    """Small project touching every relation kind."""
    return [
        {"id": "obj-1", "type": "objective", "title": "Launch"},
        {"id": "del-1", "type": "deliverable", "title": "API", "objective_id": "obj-1"},
        {"id": "uc-1", "type": "use-case", "title": "Login", "objective_id": "obj-1"},
        {
            "id": "w-1",
            "type": "work-item",
            "title": "Design",
            "parent_id": "del-1",
            "usecase_id": "uc-1",
        },
        {
            "id": "w-2",
            "type": "work-item",
            "title": "Build",
            "parent_id": "del-1",
            "dependencies": ["w-1"],
            "deliverable_ids": ["del-1"],
        },
        {"id": "w-3", "type": "work-item", "title": "Lonely"},
        {"id": "risk-1", "type": "risk", "title": "Vendor", "objective_id": "obj-1"},
    ]


def edge_set(graph):
    return {(e.source, e.target, e.layer, e.relation) for e in graph.edges}


def test_builds_structural_and_reference_edges(project):
    graph = build_graph(project)

    edges = edge_set(graph)
    assert ("del-1", "w-1", EdgeLayer.STRUCTURAL, Relation.PARENT) in edges
    assert ("del-1", "w-2", EdgeLayer.STRUCTURAL, Relation.PARENT) in edges
    assert ("w-2", "w-1", EdgeLayer.REFERENCE, Relation.DEPENDS_ON) in edges
    assert ("del-1", "obj-1", EdgeLayer.REFERENCE, Relation.FULFILLS) in edges
    assert ("uc-1", "obj-1", EdgeLayer.REFERENCE, Relation.CONTRIBUTES) in edges
    assert ("w-1", "uc-1", EdgeLayer.REFERENCE, Relation.IMPLEMENTS) in edges
    assert ("w-2", "del-1", EdgeLayer.REFERENCE, Relation.PRODUCES) in edges
    assert len(edges) == 7


def test_supporting_records_are_not_nodes(project):
    graph = build_graph(project)

    assert "risk-1" not in graph.nodes
    assert set(graph.nodes) == {"obj-1", "del-1", "uc-1", "w-1", "w-2", "w-3"}


def test_duplicate_ids_raise(project):
    project.append({"id": "w-1", "type": "work-item", "title": "Again"})

    with pytest.raises(DuplicateNodeError) as exc_info:
        build_graph(project)
    assert exc_info.value.node_id == "w-1"


def test_dangling_references_become_warnings():
    """Dangling parent and dependency ids never abort construction."""
    graph = build_graph(
        [
            {"id": "a", "type": "work-item", "parent_id": "missing-parent"},
            {"id": "b", "type": "work-item", "dependencies": ["missing-dep", "a"]},
        ]
    )

    assert set(graph.nodes) == {"a", "b"}
    assert len(graph.edges) == 1
    assert any("missing-parent" in w for w in graph.warnings)
    assert any("missing-dep" in w for w in graph.warnings)


def test_accepts_snapshot_and_entities(project):
    entities = [Entity.from_dict(r) for r in project]
    from_snapshot = build_graph(ProjectSnapshot.of(entities))
    from_list = build_graph(entities)

    assert edge_set(from_snapshot) == edge_set(from_list)


def test_progress_clamped_on_nodes():
    graph = build_graph(
        [
            {"id": "a", "type": "task", "progress": 150},
            {"id": "b", "type": "task", "progress": -5},
            {"id": "c", "type": "task", "progress": "half"},
        ]
    )

    assert graph.nodes["a"].progress == 100
    assert graph.nodes["b"].progress == 0
    assert graph.nodes["c"].progress == 0
    assert graph.nodes["a"].type == NodeType.WORK_ITEM


def test_structural_and_dependency_cycles_are_separate():
    """A parent loop is not a dependency cycle and vice versa."""
    graph = build_graph(
        [
            {"id": "p1", "type": "work-item", "parent_id": "p2"},
            {"id": "p2", "type": "work-item", "parent_id": "p1"},
            {"id": "d1", "type": "work-item", "dependencies": ["d2"]},
            {"id": "d2", "type": "work-item", "dependencies": ["d1"]},
        ]
    )

    structural = graph.structural_cycles()
    dependency = graph.dependency_cycles()
    assert [set(c) for c in structural.cycles] == [{"p1", "p2"}]
    assert [set(c) for c in dependency.cycles] == [{"d1", "d2"}]


class TestDependencyGraph:
    """Legacy single-layer dependency view."""

    def test_isolated_counts_every_edge_layer(self, project):
        """Only nodes without structural or reference edges are isolated."""
        graph = build_dependency_graph(project)

        assert graph.isolated == ["w-3"]
        assert graph.stats.isolated_count == 1

    def test_edges_are_depends_on_only(self, project):
        graph = build_dependency_graph(project)

        assert [(e.source, e.target) for e in graph.edges] == [("w-2", "w-1")]
        assert graph.nodes["w-2"].dependencies == ["w-1"]
        assert graph.nodes["w-1"].dependents == ["w-2"]
        assert graph.stats.with_dependencies == 2

    def test_depth_measured_from_roots(self):
        graph = build_dependency_graph(
            [
                {"id": "a", "type": "work-item"},
                {"id": "b", "type": "work-item", "dependencies": ["a"]},
                {"id": "c", "type": "work-item", "dependencies": ["b"]},
                {"id": "d", "type": "work-item", "dependencies": ["a"]},
            ]
        )

        assert graph.nodes["c"].depth == 0
        assert graph.nodes["b"].depth == 1
        assert graph.nodes["a"].depth == 2
        assert graph.stats.max_depth == 2

    def test_cycles_reported_not_raised(self):
        graph = build_dependency_graph(
            [
                {"id": "a", "type": "work-item", "dependencies": ["c"]},
                {"id": "b", "type": "work-item", "dependencies": ["a"]},
                {"id": "c", "type": "work-item", "dependencies": ["b"]},
            ]
        )

        assert graph.stats.cycle_count == 1
        assert set(graph.cycles[0]) == {"a", "b", "c"}

    def test_downstream_and_upstream(self):
        graph = build_dependency_graph(
            [
                {"id": "a", "type": "work-item"},
                {"id": "b", "type": "work-item", "dependencies": ["a"]},
                {"id": "c", "type": "work-item", "dependencies": ["b"]},
                {"id": "x", "type": "work-item"},
            ]
        )

        assert graph.downstream("a") == ["b", "c"]
        assert graph.upstream("c") == ["a", "b"]
        assert graph.downstream("x") == []
        assert graph.downstream("unknown") == []

    def test_empty_input_has_list_outputs(self):
        data = build_dependency_graph([]).to_dict()

        assert data["nodes"] == []
        assert data["edges"] == []
        assert data["cycles"] == []
        assert data["isolated"] == []
        assert data["warnings"] == []


def test_malformed_reference_fields_do_not_abort_construction():
    """Scalar or oddly shaped id lists are coerced instead of raising."""
    graph = build_graph(
        [
            {"id": "a", "type": "work-item", "dependencies": 5},
            {"id": "b", "type": "work-item", "deliverable_ids": 7},
            {"id": "c", "type": "work-item", "dependencies": {"a": True}},
            {"id": "d", "type": "work-item", "dependencies": ["a", {"x": 1}, None, 3]},
            {"id": "e", "type": "work-item", "metadata": ["not", "a", "mapping"]},
        ]
    )

    assert set(graph.nodes) == {"a", "b", "c", "d", "e"}
    assert graph.nodes["a"].entity.dependencies == ["5"]
    assert graph.nodes["c"].entity.dependencies == []
    assert graph.nodes["d"].entity.dependencies == ["a", "3"]
    assert graph.nodes["e"].entity.metadata == {}
    assert [(e.source, e.target) for e in graph.edges] == [("d", "a")]
    assert any("5" in w for w in graph.warnings)
