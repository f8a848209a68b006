"""Tests for the HTTP API."""

import time

import pytest
from fastapi.testclient import TestClient

from reconflow.config import get_testing_config
from reconflow.factory import create_app


@pytest.fixture
def client():
    """Client of a fresh application backed by an in-memory database."""
    with TestClient(create_app(get_testing_config())) as test_client:
        yield test_client


def wait_node(node_id, **config):
    return {"id": node_id, "type": "wait", "category": "utility", "config": {"duration": 0, **config}}


def create_workflow(client, nodes, connections=(), workflow_id="wf-api"):
    response = client.post("/api/v1/workflows", json={
        "id": workflow_id,
        "name": "API Workflow",
        "nodes": nodes,
        "connections": list(connections)
    })
    assert response.status_code == 201, response.text
    return response.json()


def poll_execution(client, execution_id, predicate, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        response = client.get(f"/api/v1/executions/{execution_id}")
        if predicate(response):
            return response
        time.sleep(0.02)
    pytest.fail(f"Execution {execution_id} did not reach the expected state")


class TestNodeTypes:
    """Node catalog endpoints."""

    def test_list_all(self, client):
        response = client.get("/api/v1/node-types")

        assert response.status_code == 200
        assert len(response.json()) == 13

    def test_filter_by_category(self, client):
        response = client.get("/api/v1/node-types", params={"category": "logic"})

        assert sorted(d["type"] for d in response.json()) == ["conditional", "filter", "merge", "split"]

    def test_get_definition(self, client):
        definition = client.get("/api/v1/node-types/nuclei").json()

        assert definition["category"] == "analysis"
        assert "severity" in definition["config_schema"]

    def test_unknown_type(self, client):
        response = client.get("/api/v1/node-types/teleport")

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "NodeTypeNotFound"

    def test_validate_config(self, client):
        response = client.post("/api/v1/node-types/subfinder/validate", json={"domain": "example.com", "threads": 500})

        assert response.status_code == 200
        assert response.json()["is_valid"] is False
        assert response.json()["errors"] == ["Threads must be at most 100"]


class TestWorkflows:
    """Workflow storage endpoints."""

    def test_create_and_get(self, client):
        created = create_workflow(client, [wait_node("a"), wait_node("b")], [{"source": "a", "target": "b"}])

        assert created["workflow_id"] == "wf-api"
        assert created["validation_warnings"] == []

        graph = client.get("/api/v1/workflows/wf-api").json()
        assert [node["id"] for node in graph["nodes"]] == ["a", "b"]
        assert graph["connections"][0]["id"] == "a~b"
        assert graph["status"] == "idle"

    def test_invalid_node_config_is_reported(self, client):
        created = create_workflow(client, [
            {"id": "enum", "type": "subfinder", "config": {"domain": "example.com", "threads": 500}}
        ])

        assert created["validation_warnings"] == ["Node 'enum': Threads must be at most 100"]

    def test_cyclic_workflow_is_rejected(self, client):
        response = client.post("/api/v1/workflows", json={
            "id": "wf-loop",
            "name": "Loop",
            "nodes": [wait_node("a"), wait_node("b")],
            "connections": [{"source": "a", "target": "b"}, {"source": "b", "target": "a"}]
        })

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "GraphCycleError"
        assert client.get("/api/v1/workflows").json() == []

    def test_dangling_connection_is_rejected(self, client):
        response = client.post("/api/v1/workflows", json={
            "name": "Broken",
            "nodes": [wait_node("a")],
            "connections": [{"source": "a", "target": "ghost"}]
        })

        assert response.status_code == 400

    def test_duplicate_id(self, client):
        create_workflow(client, [wait_node("a")])
        response = client.post("/api/v1/workflows", json={"id": "wf-api", "name": "Again", "nodes": []})

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "GraphValidationError"

    def test_list_and_delete(self, client):
        create_workflow(client, [wait_node("a")])

        summaries = client.get("/api/v1/workflows").json()
        assert [(s["id"], s["node_count"]) for s in summaries] == [("wf-api", 1)]

        assert client.delete("/api/v1/workflows/wf-api").status_code == 204
        assert client.get("/api/v1/workflows").json() == []

    def test_missing_workflow(self, client):
        response = client.get("/api/v1/workflows/nope")

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "WorkflowNotFoundError"

    def test_export_and_import(self, client):
        create_workflow(client, [wait_node("a"), wait_node("b")], [{"source": "a", "target": "b"}])

        document = client.get("/api/v1/workflows/wf-api/export").json()
        assert document["version"] == "1.0"
        assert document["metadata"]["node_count"] == 2

        document["id"] = "wf-copy"
        response = client.post("/api/v1/workflows/import", json=document)
        assert response.status_code == 201
        assert response.json()["workflow_id"] == "wf-copy"

    def test_import_rejects_cyclic_document(self, client):
        create_workflow(client, [wait_node("a"), wait_node("b")], [{"source": "a", "target": "b"}])
        document = client.get("/api/v1/workflows/wf-api/export").json()
        document["id"] = "wf-loop"
        document["connections"].append({"source": "b", "target": "a"})

        response = client.post("/api/v1/workflows/import", json=document)

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "GraphCycleError"
        assert client.get("/api/v1/workflows/wf-loop").status_code == 404

    def test_import_rejects_malformed_document(self, client):
        response = client.post("/api/v1/workflows/import", json={"name": "No id"})

        assert response.status_code == 400
        assert response.json()["detail"]["message"] == "Invalid workflow format"


class TestEditing:
    """Node and connection editing endpoints."""

    def test_add_nodes_and_connect(self, client):
        create_workflow(client, [])

        enum = client.post("/api/v1/workflows/wf-api/nodes", json={
            "type": "subfinder",
            "config": {"domain": "example.com"}
        })
        scan = client.post("/api/v1/workflows/wf-api/nodes", json={"type": "nuclei", "title": "Scan"})
        assert enum.status_code == 201
        assert enum.json()["id"] == "subfinder-1"
        assert scan.json()["title"] == "Scan"

        connection = client.post("/api/v1/workflows/wf-api/connections", json={
            "source": "subfinder-1",
            "target": "nuclei-1"
        })
        assert connection.status_code == 201

        plan = client.get("/api/v1/workflows/wf-api/plan").json()
        assert plan["phases"] == [["subfinder-1"], ["nuclei-1"]]
        assert plan["stats"]["total_nodes"] == 2

    def test_unknown_node_type(self, client):
        create_workflow(client, [])

        response = client.post("/api/v1/workflows/wf-api/nodes", json={"type": "teleport"})

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "UnknownNodeTypeError"

    def test_cycle_is_rejected(self, client):
        create_workflow(client, [wait_node("a"), wait_node("b")], [{"source": "a", "target": "b"}])

        response = client.post("/api/v1/workflows/wf-api/connections", json={"source": "b", "target": "a"})

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "GraphCycleError"
        assert len(client.get("/api/v1/workflows/wf-api").json()["connections"]) == 1

    def test_update_config_and_validate(self, client):
        create_workflow(client, [wait_node("a"), wait_node("b")])

        result = client.patch("/api/v1/workflows/wf-api/nodes/a/config", json={"duration": -1}).json()
        assert result["is_valid"] is False

        validation = client.get("/api/v1/workflows/wf-api/validate").json()
        assert validation["errors"] == ["Node 'a': Duration (seconds) must be at least 0"]
        assert validation["warnings"] == ["Isolated nodes detected: a, b"]

    def test_remove_node_and_connection(self, client):
        create_workflow(
            client,
            [wait_node("a"), wait_node("b"), wait_node("c")],
            [{"source": "a", "target": "b"}, {"source": "b", "target": "c"}]
        )

        assert client.delete("/api/v1/workflows/wf-api/connections/a~b").status_code == 204
        assert client.delete("/api/v1/workflows/wf-api/connections/a~b").status_code == 404
        assert client.delete("/api/v1/workflows/wf-api/nodes/c").status_code == 204

        graph = client.get("/api/v1/workflows/wf-api").json()
        assert [node["id"] for node in graph["nodes"]] == ["a", "b"]
        assert graph["connections"] == []


class TestExecutions:
    """Background runs and execution control."""

    def test_run_to_completion(self, client):
        create_workflow(client, [wait_node("a"), wait_node("b")], [{"source": "a", "target": "b"}])

        response = client.post("/api/v1/workflows/wf-api/run")
        assert response.status_code == 202
        execution_id = response.json()["execution_id"]
        assert response.json()["status"] == "running"

        finished = poll_execution(client, execution_id, lambda r: r.json()["status"] == "completed")
        snapshot = finished.json()
        assert snapshot["completed_nodes"] == ["a", "b"]
        assert snapshot["nodes"]["b"]["status"] == "completed"
        assert snapshot["logs"][0]["message"] == "Starting workflow execution: API Workflow"

        listed = client.get("/api/v1/executions").json()
        assert [entry["execution_id"] for entry in listed] == [execution_id]

    def test_cancel_discards_the_execution(self, client):
        create_workflow(client, [wait_node("slow", duration=30)])
        execution_id = client.post("/api/v1/workflows/wf-api/run", json={"variables": {}}).json()["execution_id"]

        response = client.post(f"/api/v1/executions/{execution_id}/cancel")
        assert response.status_code == 200
        assert response.json()["message"] == "Execution cancelled"

        poll_execution(client, execution_id, lambda r: r.status_code == 404)

    def test_control_of_unknown_execution(self, client):
        response = client.post("/api/v1/executions/exec-0-missing/pause")

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "ExecutionNotFound"

    def test_resume_of_running_execution_conflicts(self, client):
        create_workflow(client, [wait_node("slow", duration=30)])
        execution_id = client.post("/api/v1/workflows/wf-api/run").json()["execution_id"]

        response = client.post(f"/api/v1/executions/{execution_id}/resume")

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "InvalidExecutionState"
        client.post(f"/api/v1/executions/{execution_id}/cancel")

    def test_run_missing_workflow(self, client):
        assert client.post("/api/v1/workflows/nope/run").status_code == 404


class TestHealth:

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"
        assert client.get("/").json()["message"] == "ReconFlow is running"

    def test_detailed_health(self, client):
        response = client.get("/health/detailed")

        assert response.status_code == 200
        body = response.json()
        assert body["overall_status"] == "healthy"
        assert body["checks"]["node_registry"]["registered_types"] == 13
