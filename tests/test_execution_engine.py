"""Tests for phased workflow execution."""

import asyncio

import pytest

from reconflow.core.execution_engine import ExecutionEngine
from reconflow.models.core import Connection, LogLevel, NodeStatus, WorkflowNode, WorkflowStatus

from conftest import FakeTaskBackend, build_graph, wait_node


def recon_graph():
    """Subdomain enumeration feeding a vulnerability scan."""
    return build_graph(
        [
            WorkflowNode(id="enum", type="subfinder", title="Enumerate", config={"domain": "example.com"}),
            WorkflowNode(id="scan", type="nuclei", title="Scan"),
        ],
        [Connection(source="enum", target="scan")]
    )


async def wait_until_finished(engine, execution_id, timeout=5.0):
    async def poll():
        while engine.is_execution_active(execution_id):
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=timeout)


def statuses(graph):
    return {node.id: node.status for node in graph.nodes}


class TestEndToEnd:
    """Runs against the fake task backend."""

    @pytest.mark.asyncio
    async def test_enumeration_then_scan(self, engine, fake_backend):
        graph = recon_graph()

        context = await engine.execute_workflow(graph)

        assert graph.status == WorkflowStatus.COMPLETED
        assert statuses(graph) == {"enum": NodeStatus.COMPLETED, "scan": NodeStatus.COMPLETED}
        assert context.failed_nodes == set()
        assert context.completed_nodes == {"enum", "scan"}
        assert "-u api.example.com,www.example.com" in fake_backend.command_for("nuclei")
        assert graph.get_node("scan").data["count"] == 2
        assert context.node_outputs["enum"].data["subdomains"] == ["api.example.com", "www.example.com"]

    @pytest.mark.asyncio
    async def test_run_variables_reach_the_backend(self, engine, fake_backend):
        await engine.execute_workflow(recon_graph(), {"auth_token": "run-token"})

        assert fake_backend.requests
        assert all(r.headers["Authorization"] == "Bearer run-token" for r in fake_backend.requests)

    @pytest.mark.asyncio
    async def test_log_records_the_run(self, engine):
        context = await engine.execute_workflow(recon_graph())
        messages = [entry.message for entry in context.logs]

        assert messages[0] == "Starting workflow execution: Test Workflow"
        assert "Executing node: Enumerate" in messages
        assert "Node Scan completed" in messages
        assert context.logs[-1].level == LogLevel.SUCCESS
        assert context.end_time is not None

    @pytest.mark.asyncio
    async def test_previous_run_state_is_reset(self, engine):
        graph = recon_graph()
        graph.get_node("scan").status = NodeStatus.FAILED
        graph.get_node("scan").error = "old failure"

        await engine.execute_workflow(graph)

        assert graph.get_node("scan").status == NodeStatus.COMPLETED
        assert graph.get_node("scan").error is None


class TestConditionalRouting:
    """Only the taken branch runs."""

    def branching_graph(self, condition):
        nodes = [
            WorkflowNode(id="enum", type="subfinder", config={"domain": "example.com"}),
            WorkflowNode(id="check", type="conditional", config={"condition": condition}),
            wait_node("on-true"),
            wait_node("on-false"),
            wait_node("after-false"),
        ]
        connections = [
            Connection(source="enum", target="check"),
            Connection(source="check", target="on-true", source_handle="true"),
            Connection(source="check", target="on-false", source_handle="false"),
            Connection(source="on-false", target="after-false"),
        ]
        return build_graph(nodes, connections)

    @pytest.mark.asyncio
    async def test_true_branch(self, engine):
        graph = self.branching_graph("count > 0")

        await engine.execute_workflow(graph)

        assert graph.status == WorkflowStatus.COMPLETED
        assert graph.get_node("check").data["passed_condition"] is True
        assert graph.get_node("on-true").status == NodeStatus.COMPLETED
        assert graph.get_node("on-false").status == NodeStatus.SKIPPED
        assert graph.get_node("after-false").status == NodeStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_false_branch(self, engine):
        graph = self.branching_graph("count > 10")

        await engine.execute_workflow(graph)

        assert graph.get_node("on-true").status == NodeStatus.SKIPPED
        assert graph.get_node("on-false").status == NodeStatus.COMPLETED
        assert graph.get_node("after-false").status == NodeStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_taken_branch_receives_passthrough_data(self, engine):
        graph = self.branching_graph("count > 0")

        await engine.execute_workflow(graph)

        assert graph.get_node("on-true").data["subdomains"] == ["api.example.com", "www.example.com"]


class TestPortPayloads:
    """Split outputs are delivered per port."""

    @pytest.mark.asyncio
    async def test_split_routes_partitions(self, engine):
        nodes = [
            WorkflowNode(id="scan", type="nuclei", config={"target": "https://example.com"}),
            WorkflowNode(id="split", type="split", config={"split_by": "severity", "split_value": "high"}),
            WorkflowNode(id="urgent", type="transform", config={"transform_type": "extract", "fields": "target"}),
            WorkflowNode(id="rest", type="transform", config={"transform_type": "aggregate"}),
        ]
        connections = [
            Connection(source="scan", target="split"),
            Connection(source="split", target="urgent", source_handle="true"),
            Connection(source="split", target="rest", source_handle="false"),
        ]
        graph = build_graph(nodes, connections)

        await engine.execute_workflow(graph)

        assert graph.status == WorkflowStatus.COMPLETED
        assert graph.get_node("urgent").data["items"] == [{"target": "https://api.example.com/admin"}]
        assert graph.get_node("rest").data["count"] == 1

    @pytest.mark.asyncio
    async def test_merge_collects_several_ports(self, engine):
        nodes = [
            WorkflowNode(id="enum", type="subfinder", config={"domain": "example.com"}),
            WorkflowNode(id="extra", type="iterator", config={
                "source_type": "static",
                "static_items": '["www.example.com", "dev.example.com"]'
            }),
            WorkflowNode(id="hosts", type="transform", config={"transform_type": "map", "expression": "{{item.item}}"}),
            WorkflowNode(id="merge", type="merge", config={"preserve_structure": False}),
        ]
        connections = [
            Connection(source="extra", target="hosts"),
            Connection(source="enum", target="merge"),
            Connection(source="hosts", target="merge", target_handle="input1"),
        ]
        graph = build_graph(nodes, connections)

        await engine.execute_workflow(graph)

        merged = graph.get_node("merge").data["items"]
        assert merged == ["api.example.com", "www.example.com", "dev.example.com"]


class TestFailureHandling:
    """Failed nodes, invalid graphs and unknown types."""

    def failing_graph(self, stop_on_error):
        nodes = [
            WorkflowNode(id="enum", type="subfinder", config={"domain": "example.com", "stop_on_error": stop_on_error}),
            wait_node("side"),
            wait_node("after"),
        ]
        return build_graph(nodes, [Connection(source="enum", target="after")])

    @pytest.mark.asyncio
    async def test_failure_stops_run_by_default(self, node_registry, graph_resolver, test_config):
        backend = FakeTaskBackend(outputs={"subfinder": "rate limited"}, final_status="failed")
        engine = ExecutionEngine(node_registry, graph_resolver, test_config, transport=backend.transport)
        graph = self.failing_graph(stop_on_error=True)

        context = await engine.execute_workflow(graph)

        assert graph.status == WorkflowStatus.FAILED
        assert graph.get_node("enum").status == NodeStatus.FAILED
        assert graph.get_node("enum").error == "Subfinder failed: Task failed: rate limited"
        assert graph.get_node("side").status == NodeStatus.COMPLETED
        assert graph.get_node("after").status == NodeStatus.SKIPPED
        assert context.failed_nodes == {"enum"}

    @pytest.mark.asyncio
    async def test_stop_on_error_false_continues(self, node_registry, graph_resolver, test_config):
        backend = FakeTaskBackend(final_status="failed")
        engine = ExecutionEngine(node_registry, graph_resolver, test_config, transport=backend.transport)
        graph = self.failing_graph(stop_on_error=False)

        context = await engine.execute_workflow(graph)

        assert graph.status == WorkflowStatus.COMPLETED
        assert graph.get_node("enum").status == NodeStatus.FAILED
        assert graph.get_node("after").status == NodeStatus.COMPLETED
        assert context.failed_nodes == {"enum"}

    @pytest.mark.asyncio
    async def test_invalid_config_fails_node_before_dispatch(self, engine, fake_backend):
        graph = build_graph([WorkflowNode(id="enum", type="subfinder", config={"threads": 500})])

        await engine.execute_workflow(graph)

        assert graph.status == WorkflowStatus.FAILED
        assert graph.get_node("enum").error == "Configuration validation failed: Threads must be at most 100"
        assert fake_backend.requests == []

    @pytest.mark.asyncio
    async def test_cycle_fails_without_running_anything(self, engine):
        graph = build_graph(
            [wait_node("a"), wait_node("b")],
            [Connection(source="a", target="b"), Connection(source="b", target="a")]
        )

        context = await engine.execute_workflow(graph)

        assert graph.status == WorkflowStatus.FAILED
        assert set(statuses(graph).values()) == {NodeStatus.SKIPPED}
        assert any(entry.message == "Workflow contains cycles, cannot execute" for entry in context.logs)

    @pytest.mark.asyncio
    async def test_unknown_node_type(self, engine):
        graph = build_graph([WorkflowNode(id="x", type="teleport"), wait_node("y")])

        await engine.execute_workflow(graph)

        assert graph.status == WorkflowStatus.FAILED
        assert graph.get_node("x").status == NodeStatus.FAILED
        assert graph.get_node("x").error == "Unknown node type: teleport"
        assert graph.get_node("y").status == NodeStatus.SKIPPED


class TestProgressAndControl:
    """Progress callbacks, pause, resume and cancellation."""

    @pytest.mark.asyncio
    async def test_progress_after_every_phase_and_at_the_end(self, engine):
        seen = []

        async def on_progress(context, workflow):
            seen.append((workflow.status, len(context.completed_nodes)))

        await engine.execute_workflow(recon_graph(), on_progress=on_progress)

        assert seen == [
            (WorkflowStatus.RUNNING, 1),
            (WorkflowStatus.RUNNING, 2),
            (WorkflowStatus.COMPLETED, 2),
        ]

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_the_run(self, engine):
        def on_progress(context, workflow):
            raise RuntimeError("observer down")

        graph = recon_graph()
        await engine.execute_workflow(graph, on_progress=on_progress)

        assert graph.status == WorkflowStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, engine):
        graph = build_graph([wait_node("a"), wait_node("b")], [Connection(source="a", target="b")])

        execution_id = engine.start_workflow(graph)
        assert engine.pause_workflow(execution_id)
        assert graph.status == WorkflowStatus.PAUSED
        assert not engine.pause_workflow(execution_id)

        await asyncio.sleep(0.05)
        assert graph.get_node("a").status == NodeStatus.IDLE

        assert engine.resume_workflow(execution_id)
        await wait_until_finished(engine, execution_id)

        assert graph.status == WorkflowStatus.COMPLETED
        snapshot = engine.get_snapshot(execution_id)
        assert snapshot.status == WorkflowStatus.COMPLETED
        assert snapshot.completed_nodes == ["a", "b"]

    @pytest.mark.asyncio
    async def test_cancel_running_workflow(self, engine):
        graph = build_graph([wait_node("slow", duration=30), wait_node("next")],
                            [Connection(source="slow", target="next")])

        execution_id = engine.start_workflow(graph)
        await asyncio.sleep(0.05)
        assert graph.get_node("slow").status == NodeStatus.RUNNING

        assert engine.cancel_workflow(execution_id)
        await wait_until_finished(engine, execution_id)

        assert graph.status == WorkflowStatus.FAILED
        assert graph.get_node("slow").status == NodeStatus.FAILED
        assert graph.get_node("slow").error == "Wait cancelled"
        assert graph.get_node("next").status == NodeStatus.SKIPPED
        assert engine.get_execution_context(execution_id) is None
        assert not engine.cancel_workflow(execution_id)

    @pytest.mark.asyncio
    async def test_list_executions(self, engine):
        await engine.execute_workflow(recon_graph())
        await engine.execute_workflow(recon_graph())

        executions = engine.list_executions()

        assert len(executions) == 2
        assert all(snapshot.logs == [] for snapshot in executions)

    @pytest.mark.asyncio
    async def test_shutdown_cancels_active_runs(self, engine):
        graph = build_graph([wait_node("slow", duration=30)])
        execution_id = engine.start_workflow(graph)
        await asyncio.sleep(0.05)

        await engine.shutdown()

        assert not engine.is_execution_active(execution_id)
        assert graph.status == WorkflowStatus.FAILED
