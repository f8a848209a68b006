"""Pytest configuration and fixtures."""

import json
from typing import Dict, List, Optional

import httpx
import pytest

from reconflow.config import get_testing_config
from reconflow.core.context import ExecutionContext
from reconflow.core.execution_engine import ExecutionEngine
from reconflow.core.graph_resolver import GraphResolver
from reconflow.core.node_registry import NodeRegistry
from reconflow.core.task_backend import TaskBackendClient
from reconflow.models.core import Connection, NodeCategory, WorkflowGraph, WorkflowNode


SUBFINDER_OUTPUT = "api.example.com\nwww.example.com\n"

NUCLEI_OUTPUT = "\n".join([
    json.dumps({
        "template-id": "exposed-panel",
        "info": {"name": "Exposed Admin Panel", "severity": "high", "tags": ["panel"]},
        "matched-at": "https://api.example.com/admin"
    }),
    json.dumps({
        "template-id": "tech-detect",
        "info": {"name": "Technology Detection", "severity": "low"},
        "matched-at": "https://www.example.com"
    }),
])


class FakeTaskBackend:
    """In-memory stand-in for the task backend, served through ``httpx.MockTransport``.

    Tasks report ``running`` for ``pending_polls`` polls (forever when None)
    and then ``final_status`` with the output registered for the first
    matching command prefix.
    """

    def __init__(
        self,
        outputs: Optional[Dict[str, str]] = None,
        pending_polls: Optional[int] = 0,
        final_status: str = "completed",
        unavailable_requests: int = 0
    ):
        self.outputs = outputs or {}
        self.pending_polls = pending_polls
        self.final_status = final_status
        self.unavailable_requests = unavailable_requests
        self.requests: List[httpx.Request] = []
        self.commands: Dict[str, str] = {}
        self._polls: Dict[str, int] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unavailable_requests > 0:
            self.unavailable_requests -= 1
            return httpx.Response(503, json={"error": "unavailable"})

        path = request.url.path
        if request.method == "POST" and path == "/tasks":
            command = json.loads(request.content)["command"]
            task_id = f"task-{len(self.commands) + 1}"
            self.commands[task_id] = command
            return httpx.Response(200, json={"task_id": task_id})

        if path.startswith("/tasks/"):
            task_id = path.rsplit("/", 1)[1]
            if task_id not in self.commands:
                return httpx.Response(404, json={"error": "unknown task"})
            if request.method == "DELETE":
                return httpx.Response(204)

            polls = self._polls.get(task_id, 0) + 1
            self._polls[task_id] = polls
            if self.pending_polls is None or polls <= self.pending_polls:
                return httpx.Response(200, json={"status": "running"})

            command = self.commands.get(task_id, "")
            output = next(
                (text for prefix, text in self.outputs.items() if command.startswith(prefix)),
                ""
            )
            return httpx.Response(200, json={"status": self.final_status, "output": output})

        return httpx.Response(404, json={"error": "not found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def requests_with(self, method: str) -> List[httpx.Request]:
        return [request for request in self.requests if request.method == method]

    def command_for(self, tool: str) -> str:
        return next(command for command in self.commands.values() if command.startswith(tool))


def build_graph(nodes: List[WorkflowNode], connections: Optional[List[Connection]] = None,
                name: str = "Test Workflow") -> WorkflowGraph:
    return WorkflowGraph(id="wf-test", name=name, nodes=nodes, connections=connections or [])


def wait_node(node_id: str, **config) -> WorkflowNode:
    """A wait node that finishes immediately unless configured otherwise."""
    return WorkflowNode(id=node_id, type="wait", config={"duration": 0, **config})


@pytest.fixture
def test_config():
    """Application configuration with short timeouts and a fake backend address."""
    return get_testing_config()


@pytest.fixture
def fake_backend():
    """Backend that knows subfinder and nuclei output."""
    return FakeTaskBackend(outputs={"subfinder": SUBFINDER_OUTPUT, "nuclei": NUCLEI_OUTPUT})


@pytest.fixture
def node_registry():
    return NodeRegistry()


@pytest.fixture
def graph_resolver():
    return GraphResolver()


@pytest.fixture
def engine(node_registry, graph_resolver, test_config, fake_backend):
    """Execution engine wired to the fake backend."""
    return ExecutionEngine(
        node_registry=node_registry,
        graph_resolver=graph_resolver,
        config=test_config,
        transport=fake_backend.transport
    )


@pytest.fixture
def make_context(test_config):
    """Factory for execution contexts, optionally backed by a fake backend."""

    def factory(backend: Optional[FakeTaskBackend] = None, variables=None,
                http_transport: Optional[httpx.AsyncBaseTransport] = None) -> ExecutionContext:
        client = None
        if backend is not None:
            client = TaskBackendClient.from_config(test_config, transport=backend.transport)
        return ExecutionContext(
            "wf-test",
            variables=variables,
            task_timeouts={
                NodeCategory.DISCOVERY: test_config.discovery_task_timeout,
                NodeCategory.ANALYSIS: test_config.analysis_task_timeout,
            },
            backend=client,
            http_transport=http_transport
        )

    return factory
