"""Execution Engine: phased, concurrent execution of workflow graphs."""

import asyncio
import inspect
from collections import OrderedDict
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import httpx

from ..config import AppConfig, get_config
from ..models.core import (
    DEFAULT_PORT,
    ExecutionSnapshot,
    LogLevel,
    NodeCategory,
    NodeExecutionResult,
    NodeInput,
    NodeState,
    NodeStatus,
    WorkflowGraph,
    WorkflowNode,
    WorkflowStatus,
)
from .context import ExecutionContext, generate_execution_id
from .exceptions import GraphValidationError, SchedulingError, WorkflowEngineError
from .graph_resolver import GraphResolver
from .logging import get_logger, logging_context
from .node_registry import NodeRegistry, get_node_registry
from .task_backend import TaskBackendClient

logger = get_logger(__name__)

ProgressCallback = Callable[[ExecutionContext, WorkflowGraph], Union[None, Awaitable[None]]]

CONDITIONAL_NODE_TYPE = "conditional"


class ExecutionEngine:
    """
    Runs workflow graphs phase by phase.

    All nodes of a phase are started together on the running event loop and
    the next phase only starts once every one of them has finished. Nodes
    return results; the engine alone records outputs, statuses and errors.
    """

    def __init__(
        self,
        node_registry: Optional[NodeRegistry] = None,
        graph_resolver: Optional[GraphResolver] = None,
        config: Optional[AppConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """Initialize the execution engine.

        Args:
            node_registry: Node types available to workflows
            graph_resolver: Resolver used to plan phases
            config: Application configuration, defaults to the global one
            transport: Optional httpx transport shared by the backend client
                and HTTP request nodes
        """
        self.node_registry = node_registry or get_node_registry()
        self.graph_resolver = graph_resolver or GraphResolver()
        self.config = config or get_config()
        self.transport = transport

        self._contexts: "OrderedDict[str, ExecutionContext]" = OrderedDict()
        self._workflows: Dict[str, WorkflowGraph] = {}
        self._active: Set[str] = set()
        self._tasks: Dict[str, asyncio.Task] = {}

        logger.info(
            f"ExecutionEngine initialized with {len(self.node_registry.get_available_types())} node types"
        )

    # Run lifecycle

    def _prepare(
        self,
        workflow: WorkflowGraph,
        variables: Optional[Dict[str, Any]],
        execution_id: Optional[str] = None
    ) -> ExecutionContext:
        for node in workflow.nodes:
            node.reset()
        workflow.status = WorkflowStatus.RUNNING

        merged = {
            "api_base_url": self.config.backend_base_url,
            "auth_token": self.config.backend_auth_token,
            **(variables or {})
        }
        backend = TaskBackendClient.from_config(
            self.config,
            base_url=merged.get("api_base_url"),
            auth_token=merged.get("auth_token"),
            transport=self.transport
        )
        context = ExecutionContext(
            workflow.id,
            variables=merged,
            execution_id=execution_id,
            task_timeouts={
                NodeCategory.DISCOVERY: self.config.discovery_task_timeout,
                NodeCategory.ANALYSIS: self.config.analysis_task_timeout,
            },
            backend=backend,
            http_transport=self.transport
        )

        self._contexts[context.execution_id] = context
        self._workflows[context.execution_id] = workflow
        self._active.add(context.execution_id)
        return context

    async def execute_workflow(
        self,
        workflow: WorkflowGraph,
        variables: Optional[Dict[str, Any]] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> ExecutionContext:
        """
        Execute a workflow to completion.

        The graph is updated in place: its status and every node's status,
        output and error reflect the run. Failures never raise out of this
        method; they are reported through those statuses and the context log.

        Args:
            workflow: Graph to execute
            variables: Run variables (``api_base_url``, ``auth_token``, ...)
            on_progress: Observer called after every phase and once at the end

        Returns:
            The execution context of the finished run
        """
        context = self._prepare(workflow, variables)
        await self._execute(workflow, context, on_progress)
        return context

    def start_workflow(
        self,
        workflow: WorkflowGraph,
        variables: Optional[Dict[str, Any]] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> str:
        """Schedule a run on the running event loop and return its execution id."""
        context = self._prepare(workflow, variables, execution_id=generate_execution_id())
        task = asyncio.create_task(self._execute(workflow, context, on_progress))
        self._tasks[context.execution_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(context.execution_id, None))
        logger.info(f"Started workflow execution: execution_id={context.execution_id}, workflow_id={workflow.id}")
        return context.execution_id

    async def _execute(
        self,
        workflow: WorkflowGraph,
        context: ExecutionContext,
        on_progress: Optional[ProgressCallback]
    ) -> None:
        with logging_context(execution_id=context.execution_id, workflow_id=workflow.id):
            try:
                await self._run_phases(workflow, context, on_progress)
            except Exception as e:
                logger.exception(f"Workflow execution {context.execution_id} failed unexpectedly")
                context.log(LogLevel.ERROR, f"Workflow execution failed: {e}")
                self._skip_remaining(workflow)
                workflow.status = WorkflowStatus.FAILED
            finally:
                context.current_nodes.clear()
                context.end_time = datetime.utcnow()
                if context.backend is not None:
                    await context.backend.aclose()
                await self._notify(on_progress, context, workflow)
                self._finish(context)

    async def _run_phases(
        self,
        workflow: WorkflowGraph,
        context: ExecutionContext,
        on_progress: Optional[ProgressCallback]
    ) -> None:
        context.log(LogLevel.INFO, f"Starting workflow execution: {workflow.name}")

        try:
            phases = self.graph_resolver.resolve_execution_order(workflow)
        except (GraphValidationError, SchedulingError) as e:
            context.log(LogLevel.ERROR, e.message, data=e.details or None)
            self._skip_remaining(workflow)
            workflow.status = WorkflowStatus.FAILED
            return

        unknown = [node for node in workflow.nodes if not self.node_registry.is_registered(node.type)]
        if unknown:
            for node in unknown:
                self._fail_node(context, node, f"Unknown node type: {node.type}")
            self._skip_remaining(workflow)
            workflow.status = WorkflowStatus.FAILED
            return

        context.log(LogLevel.INFO, f"Execution plan: {len(phases)} phases", data={"phases": phases})

        aborted = False
        for index, phase in enumerate(phases, start=1):
            await context.wait_if_paused()
            if context.cancelled:
                break

            failed = await self._run_phase(workflow, context, phase, index)

            self._apply_conditional_routing(workflow, context)
            await self._notify(on_progress, context, workflow)

            blocking = [node.id for node in failed if node.config.get("stop_on_error", True) is not False]
            if blocking:
                context.log(LogLevel.ERROR, f"Stopping workflow after failure of: {', '.join(blocking)}")
                aborted = True
                break

        if context.cancelled:
            self._skip_remaining(workflow)
            workflow.status = WorkflowStatus.FAILED
            context.log(LogLevel.WARNING, "Workflow execution cancelled")
        elif aborted:
            self._skip_remaining(workflow)
            workflow.status = WorkflowStatus.FAILED
            context.log(LogLevel.ERROR, "Workflow execution failed")
        else:
            workflow.status = WorkflowStatus.COMPLETED
            context.log(
                LogLevel.SUCCESS,
                f"Workflow execution completed in {context.elapsed():.2f}s",
                data={
                    "completed": len(context.completed_nodes),
                    "failed": len(context.failed_nodes)
                }
            )

    async def _run_phase(
        self,
        workflow: WorkflowGraph,
        context: ExecutionContext,
        phase: List[str],
        index: int
    ) -> List[WorkflowNode]:
        """Run one phase and commit its results; returns the nodes that failed."""
        failed: List[WorkflowNode] = []
        runnable: List[WorkflowNode] = []

        for node_id in phase:
            node = workflow.get_node(node_id)
            if node.status == NodeStatus.SKIPPED:
                continue
            validation = self.node_registry.validate_node_config(node)
            if not validation.is_valid:
                self._fail_node(context, node, f"Configuration validation failed: {'; '.join(validation.errors)}")
                failed.append(node)
                continue
            runnable.append(node)

        if runnable:
            context.log(
                LogLevel.DEBUG,
                f"Phase {index}: running {', '.join(node.id for node in runnable)}"
            )

        tasks = []
        for node in runnable:
            node.status = NodeStatus.RUNNING
            context.current_nodes.add(node.id)
            inputs = self._collect_inputs(workflow, context, node)
            tasks.append(asyncio.create_task(self._run_node(node, inputs, context)))

        results = await asyncio.gather(*tasks, return_exceptions=True)

        for node, result in zip(runnable, results):
            if isinstance(result, BaseException):
                message = result.message if isinstance(result, WorkflowEngineError) else str(result)
                if not isinstance(result, WorkflowEngineError):
                    logger.error(f"Node {node.id} raised {type(result).__name__}: {message}")
                self._fail_node(context, node, message or type(result).__name__)
                failed.append(node)
            elif result.success and result.output is not None:
                self._complete_node(context, node, result)
            else:
                self._fail_node(context, node, result.error or "Node execution failed")
                failed.append(node)

        context.current_nodes.clear()
        return failed

    async def _run_node(
        self,
        node: WorkflowNode,
        inputs: Dict[str, NodeInput],
        context: ExecutionContext
    ) -> NodeExecutionResult:
        with logging_context(node_id=node.id):
            implementation = self.node_registry.create_node(node, context)
            context.log(LogLevel.INFO, f"Executing node: {node.title}", node_id=node.id)
            return await implementation.execute(inputs)

    # Result commits

    def _complete_node(self, context: ExecutionContext, node: WorkflowNode, result: NodeExecutionResult) -> None:
        node.status = NodeStatus.COMPLETED
        node.data = result.output.data
        node.error = None
        context.node_outputs[node.id] = result.output
        context.completed_nodes.add(node.id)
        context.log(LogLevel.SUCCESS, f"Node {node.title} completed", node_id=node.id)

    def _fail_node(self, context: ExecutionContext, node: WorkflowNode, error: str) -> None:
        node.status = NodeStatus.FAILED
        node.error = error
        context.failed_nodes.add(node.id)
        context.log(LogLevel.ERROR, f"Node {node.title} failed: {error}", node_id=node.id)

    @staticmethod
    def _skip_remaining(workflow: WorkflowGraph) -> None:
        for node in workflow.nodes:
            if node.status in (NodeStatus.IDLE, NodeStatus.RUNNING):
                node.status = NodeStatus.SKIPPED

    # Data flow

    def _routes_by_port(self, node: Optional[WorkflowNode]) -> bool:
        if node is None or not self.node_registry.is_registered(node.type):
            return False
        return self.node_registry.get_node_class(node.type).port_payloads

    def _collect_inputs(
        self,
        workflow: WorkflowGraph,
        context: ExecutionContext,
        node: WorkflowNode
    ) -> Dict[str, NodeInput]:
        """
        Assemble the payloads delivered to ``node``'s input ports.

        A connection delivers the recorded output of its source under its
        target port. A second connection into an occupied port is keyed by
        its source node id instead. Sources without an output deliver nothing.
        """
        inputs: Dict[str, NodeInput] = {}
        for connection in workflow.incoming(node.id):
            output = context.node_outputs.get(connection.source)
            if output is None:
                continue

            data = output.data
            if (connection.source_port != DEFAULT_PORT
                    and isinstance(data, dict)
                    and connection.source_port in data
                    and self._routes_by_port(workflow.get_node(connection.source))):
                data = data[connection.source_port]

            port = connection.target_port
            if port in inputs:
                port = connection.source
            inputs[port] = NodeInput(data=data, metadata=dict(output.metadata))
        return inputs

    def _apply_conditional_routing(self, workflow: WorkflowGraph, context: ExecutionContext) -> None:
        """Skip what hangs off the untaken branch of every evaluated conditional."""
        for node in workflow.nodes:
            if node.type != CONDITIONAL_NODE_TYPE or node.status != NodeStatus.COMPLETED:
                continue
            if not isinstance(node.data, dict) or "passed_condition" not in node.data:
                continue

            untaken = "false" if node.data["passed_condition"] else "true"
            outgoing = workflow.outgoing(node.id)
            for target_id in {connection.target for connection in outgoing}:
                handles = {connection.source_handle for connection in outgoing if connection.target == target_id}
                target = workflow.get_node(target_id)
                if handles == {untaken} and target.status == NodeStatus.IDLE:
                    target.status = NodeStatus.SKIPPED
                    context.log(LogLevel.INFO, f"Skipping node {target.title}: branch '{untaken}' not taken",
                                node_id=target.id)

        changed = True
        while changed:
            changed = False
            for node in workflow.nodes:
                if node.status != NodeStatus.IDLE:
                    continue
                upstream = [workflow.get_node(c.source) for c in workflow.incoming(node.id)]
                upstream = [source for source in upstream if source is not None]
                if upstream and all(source.status == NodeStatus.SKIPPED for source in upstream):
                    node.status = NodeStatus.SKIPPED
                    context.log(LogLevel.INFO, f"Skipping node {node.title}: all upstream nodes skipped",
                                node_id=node.id)
                    changed = True

    async def _notify(
        self,
        on_progress: Optional[ProgressCallback],
        context: ExecutionContext,
        workflow: WorkflowGraph
    ) -> None:
        if on_progress is None:
            return
        try:
            outcome = on_progress(context, workflow)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"Progress callback failed for execution {context.execution_id}: {e}")

    def _finish(self, context: ExecutionContext) -> None:
        execution_id = context.execution_id
        self._active.discard(execution_id)

        if context.cancelled:
            self._contexts.pop(execution_id, None)
            self._workflows.pop(execution_id, None)
            logger.info(f"Discarded cancelled execution {execution_id}")
            return

        finished = [eid for eid in self._contexts if eid not in self._active]
        for stale in finished[:max(len(finished) - self.config.max_retained_executions, 0)]:
            self._contexts.pop(stale, None)
            self._workflows.pop(stale, None)

    # Execution control

    def pause_workflow(self, execution_id: str) -> bool:
        """Hold the run before its next phase. Returns False if it is not running."""
        workflow = self._workflows.get(execution_id)
        if execution_id not in self._active or workflow is None or workflow.status != WorkflowStatus.RUNNING:
            return False
        context = self._contexts[execution_id]
        context.pause()
        workflow.status = WorkflowStatus.PAUSED
        context.log(LogLevel.INFO, "Workflow execution paused")
        return True

    def resume_workflow(self, execution_id: str) -> bool:
        workflow = self._workflows.get(execution_id)
        if execution_id not in self._active or workflow is None or workflow.status != WorkflowStatus.PAUSED:
            return False
        context = self._contexts[execution_id]
        workflow.status = WorkflowStatus.RUNNING
        context.resume()
        context.log(LogLevel.INFO, "Workflow execution resumed")
        return True

    def cancel_workflow(self, execution_id: str) -> bool:
        """Signal cancellation. Returns False if the run is not active."""
        if execution_id not in self._active:
            logger.warning(f"Attempted to cancel non-active execution: {execution_id}")
            return False
        context = self._contexts[execution_id]
        context.cancel()
        context.log(LogLevel.WARNING, "Workflow execution cancellation requested")
        return True

    def get_execution_context(self, execution_id: str) -> Optional[ExecutionContext]:
        return self._contexts.get(execution_id)

    def is_execution_active(self, execution_id: str) -> bool:
        return execution_id in self._active

    def get_snapshot(self, execution_id: str, include_logs: bool = True) -> Optional[ExecutionSnapshot]:
        """Return a serializable view of a tracked run."""
        context = self._contexts.get(execution_id)
        workflow = self._workflows.get(execution_id)
        if context is None or workflow is None:
            return None

        def ordered(ids: Set[str]) -> List[str]:
            return [node.id for node in workflow.nodes if node.id in ids]

        return ExecutionSnapshot(
            execution_id=execution_id,
            workflow_id=workflow.id,
            status=workflow.status,
            started_at=context.start_time,
            nodes={node.id: NodeState(status=node.status, error=node.error) for node in workflow.nodes},
            current_nodes=ordered(context.current_nodes),
            completed_nodes=ordered(context.completed_nodes),
            failed_nodes=ordered(context.failed_nodes),
            logs=list(context.logs) if include_logs else []
        )

    def list_executions(self) -> List[ExecutionSnapshot]:
        return [self.get_snapshot(execution_id, include_logs=False) for execution_id in list(self._contexts)]

    async def shutdown(self) -> None:
        """Cancel every active run and wait for them to wind down."""
        for execution_id in list(self._active):
            self.cancel_workflow(execution_id)

        pending = list(self._tasks.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        logger.info("ExecutionEngine shutdown completed")
