"""Tests for in-memory workflow editing."""

import pytest
from pydantic import ValidationError

from reconflow.core.exceptions import GraphCycleError, GraphValidationError, UnknownNodeTypeError
from reconflow.core.workflow_editor import WorkflowEditor
from reconflow.models.core import Connection, NodeCategory

from conftest import build_graph, wait_node


@pytest.fixture
def editor(node_registry, graph_resolver):
    return WorkflowEditor(build_graph([]), node_registry, graph_resolver)


class TestNodes:
    """Adding and removing nodes."""

    def test_add_node_uses_type_defaults(self, editor):
        node = editor.add_node("subfinder", config={"domain": "example.com"})

        assert node.id == "subfinder-1"
        assert node.title == "Subfinder"
        assert node.category == NodeCategory.DISCOVERY
        assert node.config["domain"] == "example.com"
        assert node.config["threads"] == 10
        assert editor.graph.nodes == [node]

    def test_generated_ids_skip_taken_ones(self, editor):
        editor.add_node("wait", node_id="wait-1")

        assert editor.add_node("wait").id == "wait-2"

    def test_branch_ports(self, editor):
        node = editor.add_node("conditional", position={"x": 10, "y": 20})

        assert node.outputs == ["true", "false"]
        assert (node.position.x, node.position.y) == (10, 20)

    def test_unknown_type(self, editor):
        with pytest.raises(UnknownNodeTypeError):
            editor.add_node("teleport")

    def test_duplicate_id(self, editor):
        editor.add_node("wait", node_id="pause")

        with pytest.raises(GraphValidationError):
            editor.add_node("wait", node_id="pause")

    def test_remove_node_drops_its_connections(self, editor):
        a = editor.add_node("wait")
        b = editor.add_node("wait")
        c = editor.add_node("wait")
        editor.add_connection(a.id, b.id)
        editor.add_connection(b.id, c.id)

        editor.remove_node(b.id)

        assert [node.id for node in editor.graph.nodes] == [a.id, c.id]
        assert editor.graph.connections == []

    def test_remove_missing_node(self, editor):
        with pytest.raises(GraphValidationError):
            editor.remove_node("ghost")


class TestConnections:
    """Connections stay acyclic and unique."""

    def test_add_connection(self, editor):
        check = editor.add_node("conditional")
        hit = editor.add_node("wait")

        connection = editor.add_connection(check.id, hit.id, source_handle="true")

        assert connection.id == "conditional-1~wait-1"
        assert connection.source_port == "true"
        assert connection.target_port == "main"

    def test_cycle_is_rejected(self, editor):
        a = editor.add_node("wait")
        b = editor.add_node("wait")
        c = editor.add_node("wait")
        editor.add_connection(a.id, b.id)
        editor.add_connection(b.id, c.id)

        with pytest.raises(GraphCycleError) as exc_info:
            editor.add_connection(c.id, a.id)

        assert exc_info.value.cycle_path == [a.id, c.id]
        assert len(editor.graph.connections) == 2

    def test_duplicate_and_self_loop(self, editor):
        a = editor.add_node("wait")
        b = editor.add_node("wait")
        editor.add_connection(a.id, b.id)

        with pytest.raises(GraphValidationError):
            editor.add_connection(a.id, b.id)
        with pytest.raises(GraphValidationError):
            editor.add_connection(a.id, a.id)

    def test_unknown_endpoint(self, editor):
        a = editor.add_node("wait")

        with pytest.raises(GraphValidationError):
            editor.add_connection(a.id, "ghost")

    def test_remove_connection(self, editor):
        a = editor.add_node("wait")
        b = editor.add_node("wait")
        connection = editor.add_connection(a.id, b.id)

        assert editor.remove_connection(connection.id)
        assert not editor.remove_connection(connection.id)

    def test_hyphenated_node_ids_get_distinct_connection_ids(self, node_registry, graph_resolver):
        graph = build_graph([wait_node(i) for i in ("a", "b", "a-b", "b-c", "c")])
        editor = WorkflowEditor(graph, node_registry, graph_resolver)
        first = editor.add_connection("a-b", "c")
        second = editor.add_connection("a", "b-c")

        assert first.id != second.id
        assert editor.remove_connection(first.id)
        assert [(c.source, c.target) for c in editor.graph.connections] == [("a", "b-c")]

    def test_connection_id_in_use_is_rejected(self, node_registry, graph_resolver):
        graph = build_graph(
            [wait_node("a"), wait_node("b"), wait_node("c")],
            [Connection(id="a~b", source="a", target="c")]
        )
        editor = WorkflowEditor(graph, node_registry, graph_resolver)

        with pytest.raises(GraphValidationError):
            editor.add_connection("a", "b")

    def test_graph_rejects_duplicate_connection_ids(self):
        with pytest.raises(ValidationError):
            build_graph(
                [wait_node("a"), wait_node("b"), wait_node("c")],
                [Connection(id="edge", source="a", target="b"), Connection(id="edge", source="b", target="c")]
            )


class TestConfigAndValidation:

    def test_update_node_config(self, editor):
        node = editor.add_node("subfinder", config={"domain": "example.com"})

        result = editor.update_node_config(node.id, {"threads": 500})

        assert not result.is_valid
        assert result.errors == ["Threads must be at most 100"]
        assert node.config["domain"] == "example.com"

    def test_validate_reports_errors_and_warnings(self, editor):
        editor.add_node("wait")
        editor.add_node("wait")
        node = editor.add_node("subfinder", config={"domain": "example.com", "threads": 0})

        result = editor.validate()

        assert not result.is_valid
        assert result.errors == [f"Node '{node.id}': Threads must be at least 1"]
        assert result.warnings == ["Isolated nodes detected: wait-1, wait-2, subfinder-1"]

    def test_empty_workflow_warns(self, editor):
        result = editor.validate()

        assert result.is_valid
        assert result.warnings == ["Workflow has no nodes"]
