"""Tests for the Affinity Calculator."""

import itertools

import pytest

from plangraph.core.affinity import (
    AffinityOptions,
    AffinityWeights,
    calculate_affinity,
    derive_weights,
)
from plangraph.core.store import ProjectSnapshot, as_entities


@pytest.fixture
def project():
    return [
        {"id": "obj-1", "type": "objective", "title": "Payments"},
        {"id": "del-1", "type": "deliverable", "title": "Checkout", "parent_id": "obj-1",
         "objective_id": "obj-1", "wbs_code": "1.1", "category": "web"},
        {"id": "del-2", "type": "deliverable", "title": "Refunds", "parent_id": "obj-1",
         "wbs_code": "1.2", "category": "web"},
        {"id": "w-1", "type": "work-item", "parent_id": "del-1", "dependencies": ["w-2"]},
        {"id": "w-2", "type": "work-item", "parent_id": "del-1"},
        {"id": "risk-1", "type": "risk", "title": "PCI audit", "objective_id": "obj-1"},
        {"id": "q-1", "type": "quality", "title": "Latency", "deliverable_id": "del-2"},
        {"id": "lone", "type": "work-item"},
    ]


def wide_parent(children=10):
    records = [{"id": "hub", "type": "deliverable", "title": "Hub"}]
    records += [
        {"id": f"c{i}", "type": "work-item", "parent_id": "hub"} for i in range(children)
    ]
    return records


def test_scores_sum_signal_weights(project):
    result = calculate_affinity(project)
    w = result.weights

    # Siblings that are also WBS adjacent and share a category
    assert result.score_between("del-1", "del-2") == pytest.approx(
        w.sibling + w.wbs_adjacent + w.category
    )
    # Parent-child plus the fulfills reference
    assert result.score_between("obj-1", "del-1") == pytest.approx(w.parent_child + w.reference)
    # Siblings with a dependency between them
    assert result.score_between("w-1", "w-2") == pytest.approx(w.sibling + w.reference)
    # Supporting record attachments count as references
    assert result.score_between("risk-1", "obj-1") == pytest.approx(w.reference)
    assert result.score_between("q-1", "del-2") == pytest.approx(w.reference)


def test_score_is_symmetric(project):
    result = calculate_affinity(project)
    ids = [n.id for n in result.nodes]

    for a, b in itertools.combinations(ids, 2):
        assert result.score_between(a, b) == result.score_between(b, a), \
            f"score({a},{b}) != score({b},{a})"


def test_unrelated_pairs_have_no_edge(project):
    result = calculate_affinity(project)

    assert result.score_between("lone", "obj-1") == 0.0
    assert all("lone" not in (e.source, e.target) for e in result.edges)


def test_hub_mode_replaces_sibling_pairs():
    """10 children with max_siblings=3: no child-to-child edges at all."""
    result = calculate_affinity(wide_parent(10), AffinityOptions(max_siblings=3))
    children = {f"c{i}" for i in range(10)}

    for edge in result.edges:
        assert not (edge.source in children and edge.target in children), \
            f"Unexpected sibling edge {edge.source} - {edge.target}"
    for child in children:
        assert result.score_between(child, "hub") > 0

    assert result.stats.used_hub_mode is True
    assert result.stats.hub_ids == ["hub"]
    hub_node = next(n for n in result.nodes if n.id == "hub")
    assert hub_node.is_hub is True
    assert len(result.edges) == 10


def test_hub_mode_skips_wbs_adjacency_between_hub_children():
    records = wide_parent(5)
    for i, record in enumerate(records[1:], start=1):
        record["wbs_code"] = f"1.{i}"
    result = calculate_affinity(records, AffinityOptions(max_siblings=2))

    assert len(result.edges) == 5


def test_below_threshold_keeps_sibling_pairs():
    result = calculate_affinity(wide_parent(4), AffinityOptions(max_siblings=20))

    assert result.stats.used_hub_mode is False
    # 4 parent-child edges + 6 sibling pairs
    assert len(result.edges) == 10


def test_min_score_drops_weak_edges(project):
    result = calculate_affinity(project, AffinityOptions(min_score=1.0))

    assert all(e.score >= 1.0 for e in result.edges)
    assert result.stats.filtered_edges > 0


def test_max_edges_keeps_highest_scores(project):
    full = calculate_affinity(project)
    top = calculate_affinity(project, AffinityOptions(max_edges=2))

    assert len(top.edges) == 2
    expected = sorted((e.score for e in full.edges), reverse=True)[:2]
    assert [e.score for e in top.edges] == expected
    assert top.stats.filtered_edges == len(full.edges) - 2


def test_clusters_are_connected_components(project):
    result = calculate_affinity(project)

    assert len(result.clusters) == 1
    cluster = result.clusters[0]
    assert cluster.id == "cluster-obj-1"
    assert cluster.name == "Payments"
    assert set(cluster.members) == {"obj-1", "del-1", "del-2", "w-1", "w-2", "risk-1", "q-1"}


def test_hub_leads_its_cluster():
    records = wide_parent(5) + [{"id": "obj", "type": "objective", "title": "Goal"}]
    records[0]["objective_id"] = "obj"
    result = calculate_affinity(records, AffinityOptions(max_siblings=2))

    assert result.clusters[0].members[0] == "hub"


def test_custom_weights_are_used_and_returned():
    weights = AffinityWeights(parent_child=2.0)
    result = calculate_affinity(wide_parent(1), AffinityOptions(weights=weights))

    assert result.score_between("hub", "c0") == 2.0
    assert result.to_dict()["weights"]["parent_child"] == 2.0


def test_invalid_options_fall_back():
    options = AffinityOptions(max_siblings=0, max_edges=0)

    assert options.max_siblings == 20
    assert options.max_edges is None


def test_options_from_config_section():
    options = AffinityOptions.from_dict(
        {"max_siblings": 5, "min_score": 0.5, "max_edges": 100, "weights": {"sibling": 0.9}}
    )

    assert options.max_siblings == 5
    assert options.min_score == 0.5
    assert options.max_edges == 100
    assert options.weights.sibling == 0.9
    assert options.weights.parent_child == 1.0


def test_empty_input():
    data = calculate_affinity([]).to_dict()

    assert data["nodes"] == []
    assert data["edges"] == []
    assert data["clusters"] == []
    assert data["stats"]["avg_connections"] == 0.0


class TestDerivedWeights:
    """Weights follow the project shape unless set explicitly."""

    def test_crowded_objectives_weaken_sibling_weight(self):
        def project(deliverables):
            records = [{"id": "obj", "type": "objective"}]
            records += [
                {"id": f"d{i}", "type": "deliverable", "objective_id": "obj"}
                for i in range(deliverables)
            ]
            return records

        sparse = calculate_affinity(project(1)).weights
        crowded = calculate_affinity(project(6)).weights

        assert sparse.sibling == pytest.approx(0.65)
        # 0.7 - 0.05 * 6 is clamped to the 0.5 floor
        assert crowded.sibling == pytest.approx(0.5)

    def test_risk_and_quality_share_strengthens_reference_weight(self):
        plain = [{"id": "obj", "type": "objective"}, {"id": "w", "type": "work-item"}]
        one_risk = plain + [{"id": "r", "type": "risk", "objective_id": "obj"}]
        many = one_risk + [
            {"id": "r2", "type": "risk"},
            {"id": "q", "type": "quality"},
        ]

        assert derive_weights(ProjectSnapshot.of(as_entities(plain))).reference == \
            pytest.approx(0.4)
        assert calculate_affinity(one_risk).weights.reference == pytest.approx(0.55)
        # 0.4 + 0.3 * 3 / 2 is capped at 0.7
        assert calculate_affinity(many).to_dict()["weights"]["reference"] == \
            pytest.approx(0.7)

    def test_reported_weights_are_the_ones_scored(self):
        records = [
            {"id": "obj", "type": "objective"},
            {"id": "r", "type": "risk", "objective_id": "obj"},
        ]
        result = calculate_affinity(records)

        assert result.score_between("r", "obj") == result.weights.reference == 0.7

    def test_explicit_weights_win(self):
        records = [
            {"id": "obj", "type": "objective"},
            {"id": "r", "type": "risk", "objective_id": "obj"},
        ]
        result = calculate_affinity(records, AffinityOptions(weights=AffinityWeights()))

        assert result.weights.reference == 0.5
        assert result.score_between("r", "obj") == 0.5

    def test_empty_project_uses_defaults(self):
        assert calculate_affinity([]).weights == AffinityWeights()

    def test_config_without_weights_derives_them(self):
        assert AffinityOptions.from_dict({"max_siblings": 5}).weights is None
