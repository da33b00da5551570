"""Tests for the FastAPI backend."""

import json

import pytest
from fastapi.testclient import TestClient

from backend import api
from plangraph.core.loader import EntityStore


def write(directory, file_name, data):
    (directory / file_name).write_text(json.dumps(data))


@pytest.fixture
def client(tmp_path, monkeypatch):
    """Client backed by a small project in a temporary data directory."""
    write(tmp_path, "objectives.json", [{"id": "obj-1", "title": "Launch"}])
    write(tmp_path, "deliverables.json", [{"id": "del-1", "title": "API", "objective_id": "obj-1"}])
    write(
        tmp_path,
        "work_items.json",
        [
            {"id": "w-1", "title": "Design", "parent_id": "del-1",
             "start_date": "2026-01-01", "due_date": "2026-01-03"},
            {"id": "w-2", "title": "Build", "parent_id": "del-1", "dependencies": ["w-1"],
             "start_date": "2026-01-03", "due_date": "2026-01-06"},
        ],
    )
    monkeypatch.setattr(api, "store", EntityStore(tmp_path))
    return TestClient(api.app)


@pytest.fixture
def cyclic_client(tmp_path, monkeypatch):
    write(
        tmp_path,
        "work_items.json",
        [
            {"id": "a", "parent_id": "b", "start_date": "2026-01-01", "dependencies": ["b"]},
            {"id": "b", "parent_id": "a", "start_date": "2026-01-02", "dependencies": ["a"]},
        ],
    )
    monkeypatch.setattr(api, "store", EntityStore(tmp_path))
    return TestClient(api.app)


def test_root_and_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert "/api/wbs" in client.get("/").json()["endpoints"]


class TestGraphEndpoints:
    def test_graph_json(self, client):
        response = client.get("/api/graph")

        assert response.status_code == 200
        data = response.json()
        assert {n["id"] for n in data["nodes"]} == {"obj-1", "del-1", "w-1", "w-2"}
        assert [(e["source"], e["target"]) for e in data["edges"]] == [("w-2", "w-1")]

    @pytest.mark.parametrize(
        "fmt, marker",
        [("text", "Dependency Graph"), ("dot", "digraph"), ("mermaid", "graph TD")],
    )
    def test_graph_renderings(self, client, fmt, marker):
        response = client.get(f"/api/graph?format={fmt}")

        assert response.status_code == 200
        assert response.text.startswith(marker)

    def test_unknown_format_is_rejected(self, client):
        assert client.get("/api/graph?format=svg").status_code == 422

    def test_unified_graph_filters(self, client):
        response = client.get(
            "/api/unified-graph?types=work-item&layers=reference&hide-completed=true"
        )

        data = response.json()
        assert {n["id"] for n in data["nodes"]} == {"w-1", "w-2"}
        assert all(e["layer"] == "reference" for e in data["edges"])

    def test_unified_graph_focus(self, client):
        data = client.get("/api/unified-graph?focus=obj-1&depth=1").json()

        assert {n["id"] for n in data["nodes"]} == {"obj-1", "del-1"}

    def test_downstream(self, client):
        data = client.get("/api/downstream?id=w-1").json()

        assert data == {"id": "w-1", "downstream": ["w-2"], "upstream": []}

    def test_downstream_unknown_node(self, client):
        assert client.get("/api/downstream?id=nope").status_code == 404


class TestAnalysisEndpoints:
    def test_wbs(self, client):
        data = client.get("/api/wbs").json()

        assert [r["id"] for r in data["roots"]] == ["obj-1", "del-1"]
        assert [c["wbs_code"] for c in data["roots"][1]["children"]] == ["2.1", "2.2"]

    def test_wbs_text(self, client):
        response = client.get("/api/wbs?format=text")

        assert "Work Breakdown Structure" in response.text

    def test_timeline(self, client):
        data = client.get("/api/timeline?today=2026-01-04").json()

        assert data["critical_path"] == ["w-1", "w-2"]
        assert data["stats"]["overdue_tasks"] == 1

    def test_affinity_overrides(self, client):
        data = client.get("/api/affinity?max_edges=1").json()

        assert len(data["edges"]) == 1
        assert data["stats"]["filtered_edges"] > 0

    def test_coverage(self, client):
        data = client.get("/api/coverage").json()

        assert data["coverage_score"] == 100

    def test_stale_and_bottlenecks(self, client):
        assert client.get("/api/stale").status_code == 200
        assert "summary" in client.get("/api/bottlenecks").json()

    def test_overview(self, client):
        data = client.get("/api/overview").json()

        assert set(data) == {
            "graph", "wbs", "timeline", "affinity", "coverage", "staleness", "bottlenecks"
        }


class TestStructuralFaults:
    def test_parent_cycle_is_409(self, cyclic_client):
        response = cyclic_client.get("/api/wbs")

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["error"] == "parent cycle"
        assert set(detail["cycle"]) == {"a", "b"}

    def test_scheduling_cycle_is_409(self, cyclic_client):
        response = cyclic_client.get("/api/timeline")

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "scheduling cycle"

    def test_other_views_still_work(self, cyclic_client):
        assert cyclic_client.get("/api/graph").status_code == 200
        data = cyclic_client.get("/api/overview").json()
        assert data["wbs"]["error"] == "parent cycle"

    def test_duplicate_ids_are_422(self, tmp_path, monkeypatch):
        write(tmp_path, "work_items.json", [{"id": "x"}, {"id": "x"}])
        monkeypatch.setattr(api, "store", EntityStore(tmp_path))

        response = TestClient(api.app).get("/api/coverage")
        assert response.status_code == 422
        assert "x" in response.json()["detail"]
