"""Tests for the WBS Builder."""

import pytest

from plangraph.core.errors import StructuralCycleError
from plangraph.core.wbs import build_wbs


@pytest.fixture
def hierarchy():
    """Two roots; the first has children declared out of order."""
    return [
        {"id": "root-a", "type": "objective", "title": "A", "wbs_code": "1"},
        {"id": "a-10", "type": "work-item", "parent_id": "root-a", "wbs_code": "1.10", "progress": 100, "status": "completed"},
        {"id": "a-2", "type": "work-item", "parent_id": "root-a", "wbs_code": "1.2", "progress": 50},
        {"id": "a-x", "type": "work-item", "parent_id": "root-a", "progress": 25},
        {"id": "a-2-1", "type": "work-item", "parent_id": "a-2", "progress": 30},
        {"id": "a-2-2", "type": "work-item", "parent_id": "a-2", "progress": 41},
        {"id": "root-b", "type": "objective", "title": "B", "wbs_code": "2", "progress": 10},
    ]


def test_siblings_sorted_by_declared_code_then_input_order(hierarchy):
    tree = build_wbs(hierarchy)

    root_a = tree.roots[0]
    assert [c.id for c in root_a.children] == ["a-2", "a-10", "a-x"]
    assert [c.wbs_code for c in root_a.children] == ["1.1", "1.2", "1.3"]
    assert [r.id for r in tree.roots] == ["root-a", "root-b"]


def test_declared_code_is_kept_separately(hierarchy):
    tree = build_wbs(hierarchy)

    node = tree.find("a-10")
    assert node.wbs_code == "1.2"
    assert node.declared_wbs_code == "1.10"


def test_codes_unique_and_extend_parent_code(hierarchy):
    tree = build_wbs(hierarchy)

    codes = [n.wbs_code for n in tree.walk()]
    assert len(codes) == len(set(codes)), "WBS codes must be unique"
    for node in tree.walk():
        for child in node.children:
            assert child.wbs_code.startswith(node.wbs_code + "."), \
                f"{child.wbs_code} does not extend {node.wbs_code}"
            assert child.wbs_code.count(".") == node.wbs_code.count(".") + 1


def test_aggregate_progress_is_floor_mean_of_direct_children(hierarchy):
    tree = build_wbs(hierarchy)

    # (30 + 41) // 2
    assert tree.find("a-2").aggregate_progress == 35
    # Mean of the direct children's own progress: (50 + 100 + 25) // 3
    assert tree.find("root-a").aggregate_progress == 58
    # Leaves keep their own progress
    assert tree.find("a-2-1").aggregate_progress == 30


def test_stats(hierarchy):
    tree = build_wbs(hierarchy)

    assert tree.stats.total_nodes == 7
    assert tree.stats.root_count == 2
    assert tree.stats.leaf_count == 5
    assert tree.stats.max_depth == 2
    assert tree.max_depth == 2
    # (0 + 100 + 50 + 25 + 30 + 41 + 10) // 7
    assert tree.stats.avg_progress == 36
    # 1 of 7 completed
    assert tree.stats.completed_pct == 14


def test_dangling_parent_becomes_root_with_warning():
    tree = build_wbs(
        [
            {"id": "a", "type": "work-item", "wbs_code": "1"},
            {"id": "b", "type": "work-item", "parent_id": "gone"},
        ]
    )

    assert [r.id for r in tree.roots] == ["a", "b"]
    assert tree.warnings == ["dangling parent reference: b -> gone"]


def test_parent_cycle_raises_with_cycle_ids():
    entities = [
        {"id": "ok", "type": "work-item"},
        {"id": "a", "type": "work-item", "parent_id": "c"},
        {"id": "b", "type": "work-item", "parent_id": "a"},
        {"id": "c", "type": "work-item", "parent_id": "b"},
    ]

    with pytest.raises(StructuralCycleError) as exc_info:
        build_wbs(entities)

    assert set(exc_info.value.cycle) == {"a", "b", "c"}
    assert "parent cycle" in str(exc_info.value)


def test_dependency_cycle_does_not_block_wbs():
    """Only parent chains matter for the hierarchy."""
    tree = build_wbs(
        [
            {"id": "a", "type": "work-item", "dependencies": ["b"]},
            {"id": "b", "type": "work-item", "dependencies": ["a"]},
        ]
    )

    assert tree.stats.total_nodes == 2


def test_empty_input():
    data = build_wbs([]).to_dict()

    assert data["roots"] == []
    assert data["max_depth"] == 0
    assert data["stats"]["avg_progress"] == 0
