"""Tests for unified graph filtering and bounded focus traversal."""

import pytest

from plangraph.core.graph import EdgeLayer, Relation
from plangraph.core.store import NodeType
from plangraph.core.unified_graph import (
    DEFAULT_FOCUS_DEPTH,
    GraphFilter,
    build_unified_graph,
)


@pytest.fixture
def entities():
    return [
        {"id": "obj-1", "type": "objective", "title": "Grow", "status": "active"},
        {"id": "obj-2", "type": "objective", "title": "Old goal", "status": "deprecated"},
        {"id": "del-1", "type": "deliverable", "objective_id": "obj-1", "status": "active"},
        {"id": "del-2", "type": "deliverable", "objective_id": "obj-1", "status": "draft"},
        {"id": "w-1", "type": "work-item", "parent_id": "del-1", "status": "completed"},
        {
            "id": "w-2",
            "type": "work-item",
            "parent_id": "del-1",
            "dependencies": ["w-1"],
            "status": "in_progress",
        },
        {"id": "w-3", "type": "work-item", "parent_id": "w-2", "status": "pending"},
        {"id": "w-4", "type": "work-item", "status": "pending"},
    ]


def ids(graph):
    return set(graph.nodes)


def test_no_filter_keeps_everything(entities):
    graph = build_unified_graph(entities)

    assert ids(graph) == {e["id"] for e in entities}
    assert graph.stats.total_nodes == 8
    assert graph.stats.edges_by_layer == {"structural": 3, "reference": 3}
    assert graph.stats.nodes_by_type["work-item"] == 4
    assert graph.stats.total_work_items == 4
    assert graph.stats.completed_work_items == 1
    assert graph.isolated == ["obj-2", "w-4"]


def test_structural_depth_and_neighbours(entities):
    graph = build_unified_graph(entities)

    assert graph.nodes["w-3"].structural_depth == 2
    assert graph.nodes["w-3"].structural_parents == ["w-2"]
    assert graph.nodes["del-1"].structural_children == ["w-1", "w-2"]
    assert graph.stats.max_structural_depth == 2


def test_hide_completed_drops_completed_and_deprecated(entities):
    graph = build_unified_graph(entities, GraphFilter(hide_completed=True))

    assert "w-1" not in ids(graph)
    assert "obj-2" not in ids(graph)
    # Edges touching removed nodes are gone too
    assert all(e.target != "w-1" and e.source != "w-1" for e in graph.edges)


def test_hide_draft(entities):
    graph = build_unified_graph(entities, GraphFilter(hide_draft=True))

    assert "del-2" not in ids(graph)
    assert "del-1" in ids(graph)


def test_include_types(entities):
    graph = build_unified_graph(
        entities, GraphFilter(include_types=[NodeType.OBJECTIVE, NodeType.DELIVERABLE])
    )

    assert ids(graph) == {"obj-1", "obj-2", "del-1", "del-2"}
    assert {e.relation for e in graph.edges} == {Relation.FULFILLS}


def test_include_layers(entities):
    graph = build_unified_graph(entities, GraphFilter(include_layers=[EdgeLayer.STRUCTURAL]))

    assert {e.layer for e in graph.edges} == {EdgeLayer.STRUCTURAL}
    # Nodes are not dropped by an edge filter
    assert graph.stats.total_nodes == 8


def test_include_relations(entities):
    graph = build_unified_graph(
        entities, GraphFilter(include_relations=[Relation.DEPENDS_ON])
    )

    assert [(e.source, e.target) for e in graph.edges] == [("w-2", "w-1")]


def test_focus_traversal_is_bidirectional_and_bounded(entities):
    """With depth 1 only direct neighbours of the focus survive."""
    graph = build_unified_graph(entities, GraphFilter(focus_id="w-2", depth=1))

    # Parent, dependency target and child of w-2
    assert ids(graph) == {"w-2", "del-1", "w-1", "w-3"}


def test_focus_depth_two_reaches_further(entities):
    graph = build_unified_graph(entities, GraphFilter(focus_id="w-3", depth=2))

    assert ids(graph) == {"w-3", "w-2", "del-1", "w-1"}


def test_focus_runs_after_node_filters(entities):
    """Hidden nodes cannot act as bridges for the focus traversal."""
    graph = build_unified_graph(
        entities, GraphFilter(focus_id="w-3", depth=3, include_layers=[EdgeLayer.REFERENCE])
    )

    assert ids(graph) == {"w-3"}


def test_missing_focus_yields_empty_graph_with_warning(entities):
    graph = build_unified_graph(entities, GraphFilter(focus_id="nope"))

    assert graph.nodes == {}
    assert graph.edges == []
    assert any("nope" in w for w in graph.warnings)


def test_reference_and_structural_cycles_reported_separately():
    graph = build_unified_graph(
        [
            {"id": "a", "type": "work-item", "dependencies": ["b"]},
            {"id": "b", "type": "work-item", "dependencies": ["a"]},
            {"id": "p", "type": "work-item", "parent_id": "q"},
            {"id": "q", "type": "work-item", "parent_id": "p"},
        ]
    )

    assert [set(c) for c in graph.cycles] == [{"a", "b"}]
    assert [set(c) for c in graph.structural_cycles] == [{"p", "q"}]
    assert graph.stats.cycle_count == 1
    assert graph.stats.structural_cycle_count == 1


class TestGraphFilterFromQuery:
    """Comma separated query values."""

    def test_parses_lists(self):
        f = GraphFilter.from_query(
            focus="w-1",
            depth=2,
            types="work_item, objective",
            layers="structural",
            relations="depends-on,parent",
            hide_completed=True,
        )

        assert f.focus_id == "w-1"
        assert f.depth == 2
        assert f.include_types == [NodeType.WORK_ITEM, NodeType.OBJECTIVE]
        assert f.include_layers == [EdgeLayer.STRUCTURAL]
        assert f.include_relations == [Relation.DEPENDS_ON, Relation.PARENT]
        assert f.hide_completed is True
        assert f.hide_draft is False

    def test_unknown_values_are_skipped(self):
        f = GraphFilter.from_query(types="objective,spaceship", layers="bogus")

        assert f.include_types == [NodeType.OBJECTIVE]
        assert f.include_layers == []

    def test_defaults(self):
        f = GraphFilter.from_query(depth=0)

        assert f.focus_id is None
        assert f.depth == DEFAULT_FOCUS_DEPTH
        assert f.include_types == []
