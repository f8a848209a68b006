"""FastAPI REST endpoints: node catalog, workflow editing and execution control."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from ..core.exceptions import WorkflowEngineError, create_error_response
from ..core.execution_engine import ExecutionEngine
from ..core.graph_resolver import GraphResolver
from ..core.logging import get_logger
from ..core.middleware import get_status_code_for_error
from ..core.node_registry import NodeRegistry
from ..core.workflow_editor import WorkflowEditor
from ..core.workflow_io import export_workflow, load_workflow
from ..core.workflow_manager import WorkflowManager
from ..models.core import (
    Connection,
    ExecutionSnapshot,
    ExecutionStats,
    NodeCategory,
    NodeDefinition,
    ValidationResult,
    WorkflowGraph,
    WorkflowNode,
    WorkflowStatus,
    WorkflowSummary,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["workflow"])

# Global instances (initialized by the application factory)
_node_registry: Optional[NodeRegistry] = None
_graph_resolver: Optional[GraphResolver] = None
_workflow_manager: Optional[WorkflowManager] = None
_execution_engine: Optional[ExecutionEngine] = None


def init_dependencies(
    node_registry: NodeRegistry,
    graph_resolver: GraphResolver,
    workflow_manager: WorkflowManager,
    execution_engine: ExecutionEngine
):
    """Initialize the global dependencies."""
    global _node_registry, _graph_resolver, _workflow_manager, _execution_engine
    _node_registry = node_registry
    _graph_resolver = graph_resolver
    _workflow_manager = workflow_manager
    _execution_engine = execution_engine


def _not_initialized(component: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"{component} not initialized"
    )


def get_node_registry() -> NodeRegistry:
    """Dependency to get the node registry."""
    if _node_registry is None:
        raise _not_initialized("Node registry")
    return _node_registry


def get_graph_resolver() -> GraphResolver:
    if _graph_resolver is None:
        raise _not_initialized("Graph resolver")
    return _graph_resolver


def get_workflow_manager() -> WorkflowManager:
    """Dependency to get the workflow manager."""
    if _workflow_manager is None:
        raise _not_initialized("Workflow manager")
    return _workflow_manager


def get_execution_engine() -> ExecutionEngine:
    """Dependency to get the execution engine."""
    if _execution_engine is None:
        raise _not_initialized("Execution engine")
    return _execution_engine


def _http_error(error: WorkflowEngineError) -> HTTPException:
    logger.warning(f"Request failed with {error.error_code}: {error.message}")
    return HTTPException(
        status_code=get_status_code_for_error(error),
        detail=create_error_response(error)
    )


def _not_found(kind: str, identifier: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={
            "error": f"{kind}NotFound",
            "message": f"{kind} '{identifier}' not found",
            "details": {"id": identifier}
        }
    )


# Request/Response models

class CreateWorkflowRequest(BaseModel):
    """Request model for creating a workflow."""
    id: Optional[str] = Field(None, description="Workflow ID, generated when omitted")
    name: str = Field(..., description="Name of the workflow")
    description: str = Field("", description="Description of the workflow")
    nodes: List[WorkflowNode] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)


class CreateWorkflowResponse(BaseModel):
    """Response model for workflow creation."""
    workflow_id: str = Field(..., description="Identifier of the stored workflow")
    message: str = Field(..., description="Success message")
    validation_warnings: List[str] = Field(default_factory=list, description="Validation warnings")


class AddNodeRequest(BaseModel):
    type: str = Field(..., description="Registered node type")
    title: Optional[str] = None
    position: Optional[Dict[str, float]] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    node_id: Optional[str] = Field(None, description="Node ID, generated when omitted")


class AddConnectionRequest(BaseModel):
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None


class ExecutionPlanResponse(BaseModel):
    phases: List[List[str]]
    stats: ExecutionStats


class RunWorkflowRequest(BaseModel):
    """Request model for running a workflow."""
    variables: Dict[str, Any] = Field(default_factory=dict, description="Run variables such as api_base_url")


class ExecutionControlResponse(BaseModel):
    execution_id: str
    status: WorkflowStatus
    message: str


# Node catalog

@router.get("/node-types", response_model=List[NodeDefinition], summary="List node type definitions")
async def list_node_types(
    category: Optional[NodeCategory] = None,
    registry: NodeRegistry = Depends(get_node_registry)
) -> List[NodeDefinition]:
    if category is not None:
        return registry.get_definitions_by_category(category)
    return registry.get_all_definitions()


@router.get("/node-types/{node_type}", response_model=NodeDefinition, summary="Get a node type definition")
async def get_node_type(
    node_type: str,
    registry: NodeRegistry = Depends(get_node_registry)
) -> NodeDefinition:
    definition = registry.get_definition(node_type)
    if definition is None:
        raise _not_found("NodeType", node_type)
    return definition


@router.post(
    "/node-types/{node_type}/validate",
    response_model=ValidationResult,
    summary="Validate a configuration against a node type's schema"
)
async def validate_node_config(
    node_type: str,
    config: Dict[str, Any] = Body(...),
    registry: NodeRegistry = Depends(get_node_registry)
) -> ValidationResult:
    candidate = WorkflowNode(id="candidate", type=node_type, config=config)
    return registry.validate_node_config(candidate)


# Workflows

def _store_new(graph: WorkflowGraph, manager: WorkflowManager, registry: NodeRegistry,
               resolver: GraphResolver) -> CreateWorkflowResponse:
    resolver.detect_cycles(graph)
    validation = WorkflowEditor(graph, registry, resolver).validate()
    summary = manager.create_workflow(graph)
    return CreateWorkflowResponse(
        workflow_id=summary.id,
        message=f"Workflow '{graph.name}' created successfully",
        validation_warnings=validation.warnings + validation.errors
    )


@router.post(
    "/workflows",
    response_model=CreateWorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow"
)
async def create_workflow(
    request: CreateWorkflowRequest,
    manager: WorkflowManager = Depends(get_workflow_manager),
    registry: NodeRegistry = Depends(get_node_registry),
    resolver: GraphResolver = Depends(get_graph_resolver)
) -> CreateWorkflowResponse:
    """
    Create a workflow.

    Invalid node configurations do not block creation; they are reported in
    ``validation_warnings`` and fail the node when the workflow runs.
    A workflow that contains a cycle is rejected with 409.
    """
    try:
        fields = request.model_dump(exclude_none=True)
        graph = WorkflowGraph(**fields)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        return _store_new(graph, manager, registry, resolver)
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.post(
    "/workflows/import",
    response_model=CreateWorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Import a workflow document"
)
async def import_workflow(
    document: Dict[str, Any] = Body(...),
    manager: WorkflowManager = Depends(get_workflow_manager),
    registry: NodeRegistry = Depends(get_node_registry),
    resolver: GraphResolver = Depends(get_graph_resolver)
) -> CreateWorkflowResponse:
    try:
        graph = load_workflow(document)
        return _store_new(graph, manager, registry, resolver)
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.get("/workflows", response_model=List[WorkflowSummary], summary="List workflows")
async def list_workflows(manager: WorkflowManager = Depends(get_workflow_manager)) -> List[WorkflowSummary]:
    try:
        return manager.list_workflows()
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.get("/workflows/{workflow_id}", response_model=WorkflowGraph, summary="Get a workflow")
async def get_workflow(
    workflow_id: str,
    manager: WorkflowManager = Depends(get_workflow_manager)
) -> WorkflowGraph:
    try:
        return manager.get_workflow(workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.get("/workflows/{workflow_id}/export", summary="Export a workflow document")
async def export_workflow_document(
    workflow_id: str,
    manager: WorkflowManager = Depends(get_workflow_manager)
) -> Dict[str, Any]:
    try:
        return export_workflow(manager.get_workflow(workflow_id))
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.delete("/workflows/{workflow_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a workflow")
async def delete_workflow(
    workflow_id: str,
    manager: WorkflowManager = Depends(get_workflow_manager)
) -> Response:
    try:
        manager.delete_workflow(workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Editing

@router.post(
    "/workflows/{workflow_id}/nodes",
    response_model=WorkflowNode,
    status_code=status.HTTP_201_CREATED,
    summary="Add a node"
)
async def add_node(
    workflow_id: str,
    request: AddNodeRequest,
    manager: WorkflowManager = Depends(get_workflow_manager),
    registry: NodeRegistry = Depends(get_node_registry),
    resolver: GraphResolver = Depends(get_graph_resolver)
) -> WorkflowNode:
    try:
        graph = manager.get_workflow(workflow_id)
        node = WorkflowEditor(graph, registry, resolver).add_node(
            request.type,
            title=request.title,
            position=request.position,
            config=request.config,
            node_id=request.node_id
        )
        manager.save_workflow(graph)
        return node
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.delete(
    "/workflows/{workflow_id}/nodes/{node_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a node and its connections"
)
async def remove_node(
    workflow_id: str,
    node_id: str,
    manager: WorkflowManager = Depends(get_workflow_manager),
    registry: NodeRegistry = Depends(get_node_registry),
    resolver: GraphResolver = Depends(get_graph_resolver)
) -> Response:
    try:
        graph = manager.get_workflow(workflow_id)
        WorkflowEditor(graph, registry, resolver).remove_node(node_id)
        manager.save_workflow(graph)
    except WorkflowEngineError as e:
        raise _http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch(
    "/workflows/{workflow_id}/nodes/{node_id}/config",
    response_model=ValidationResult,
    summary="Update a node's configuration"
)
async def update_node_config(
    workflow_id: str,
    node_id: str,
    updates: Dict[str, Any] = Body(...),
    manager: WorkflowManager = Depends(get_workflow_manager),
    registry: NodeRegistry = Depends(get_node_registry),
    resolver: GraphResolver = Depends(get_graph_resolver)
) -> ValidationResult:
    try:
        graph = manager.get_workflow(workflow_id)
        result = WorkflowEditor(graph, registry, resolver).update_node_config(node_id, updates)
        manager.save_workflow(graph)
        return result
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.post(
    "/workflows/{workflow_id}/connections",
    response_model=Connection,
    status_code=status.HTTP_201_CREATED,
    summary="Connect two nodes"
)
async def add_connection(
    workflow_id: str,
    request: AddConnectionRequest,
    manager: WorkflowManager = Depends(get_workflow_manager),
    registry: NodeRegistry = Depends(get_node_registry),
    resolver: GraphResolver = Depends(get_graph_resolver)
) -> Connection:
    """Add a connection. A connection that would close a cycle is rejected with 409."""
    try:
        graph = manager.get_workflow(workflow_id)
        connection = WorkflowEditor(graph, registry, resolver).add_connection(
            request.source,
            request.target,
            source_handle=request.source_handle,
            target_handle=request.target_handle
        )
        manager.save_workflow(graph)
        return connection
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.delete(
    "/workflows/{workflow_id}/connections/{connection_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a connection"
)
async def remove_connection(
    workflow_id: str,
    connection_id: str,
    manager: WorkflowManager = Depends(get_workflow_manager),
    registry: NodeRegistry = Depends(get_node_registry),
    resolver: GraphResolver = Depends(get_graph_resolver)
) -> Response:
    try:
        graph = manager.get_workflow(workflow_id)
        if not WorkflowEditor(graph, registry, resolver).remove_connection(connection_id):
            raise _not_found("Connection", connection_id)
        manager.save_workflow(graph)
    except WorkflowEngineError as e:
        raise _http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/workflows/{workflow_id}/validate", response_model=ValidationResult, summary="Validate a workflow")
async def validate_workflow(
    workflow_id: str,
    manager: WorkflowManager = Depends(get_workflow_manager),
    registry: NodeRegistry = Depends(get_node_registry),
    resolver: GraphResolver = Depends(get_graph_resolver)
) -> ValidationResult:
    try:
        graph = manager.get_workflow(workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e)
    return WorkflowEditor(graph, registry, resolver).validate()


@router.get(
    "/workflows/{workflow_id}/plan",
    response_model=ExecutionPlanResponse,
    summary="Show the execution phases of a workflow"
)
async def plan_workflow(
    workflow_id: str,
    manager: WorkflowManager = Depends(get_workflow_manager),
    resolver: GraphResolver = Depends(get_graph_resolver)
) -> ExecutionPlanResponse:
    try:
        graph = manager.get_workflow(workflow_id)
        return ExecutionPlanResponse(
            phases=resolver.resolve_execution_order(graph),
            stats=resolver.get_execution_stats(graph)
        )
    except WorkflowEngineError as e:
        raise _http_error(e)


# Executions

@router.post(
    "/workflows/{workflow_id}/run",
    response_model=ExecutionControlResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Execute a workflow"
)
async def run_workflow(
    workflow_id: str,
    request: Optional[RunWorkflowRequest] = None,
    manager: WorkflowManager = Depends(get_workflow_manager),
    engine: ExecutionEngine = Depends(get_execution_engine)
) -> ExecutionControlResponse:
    """Start a run in the background; poll ``/executions/{id}`` for progress."""
    try:
        graph = manager.get_workflow(workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e)

    variables = request.variables if request is not None else {}
    execution_id = engine.start_workflow(graph, variables)
    logger.info(f"Started workflow execution: execution_id={execution_id}")
    return ExecutionControlResponse(
        execution_id=execution_id,
        status=graph.status,
        message="Workflow execution started"
    )


@router.get("/executions", response_model=List[ExecutionSnapshot], summary="List tracked executions")
async def list_executions(engine: ExecutionEngine = Depends(get_execution_engine)) -> List[ExecutionSnapshot]:
    return engine.list_executions()


@router.get("/executions/{execution_id}", response_model=ExecutionSnapshot, summary="Get execution state")
async def get_execution(
    execution_id: str,
    engine: ExecutionEngine = Depends(get_execution_engine)
) -> ExecutionSnapshot:
    snapshot = engine.get_snapshot(execution_id)
    if snapshot is None:
        raise _not_found("Execution", execution_id)
    return snapshot


def _control(engine: ExecutionEngine, execution_id: str, accepted: bool, action: str) -> ExecutionControlResponse:
    if not accepted:
        if engine.get_execution_context(execution_id) is None:
            raise _not_found("Execution", execution_id)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "InvalidExecutionState",
                "message": f"Execution '{execution_id}' cannot be {action} in its current state",
                "details": {"execution_id": execution_id}
            }
        )
    snapshot = engine.get_snapshot(execution_id)
    return ExecutionControlResponse(
        execution_id=execution_id,
        status=snapshot.status if snapshot else WorkflowStatus.FAILED,
        message=f"Execution {action}"
    )


@router.post("/executions/{execution_id}/pause", response_model=ExecutionControlResponse, summary="Pause a run")
async def pause_execution(
    execution_id: str,
    engine: ExecutionEngine = Depends(get_execution_engine)
) -> ExecutionControlResponse:
    return _control(engine, execution_id, engine.pause_workflow(execution_id), "paused")


@router.post("/executions/{execution_id}/resume", response_model=ExecutionControlResponse, summary="Resume a run")
async def resume_execution(
    execution_id: str,
    engine: ExecutionEngine = Depends(get_execution_engine)
) -> ExecutionControlResponse:
    return _control(engine, execution_id, engine.resume_workflow(execution_id), "resumed")


@router.post("/executions/{execution_id}/cancel", response_model=ExecutionControlResponse, summary="Cancel a run")
async def cancel_execution(
    execution_id: str,
    engine: ExecutionEngine = Depends(get_execution_engine)
) -> ExecutionControlResponse:
    return _control(engine, execution_id, engine.cancel_workflow(execution_id), "cancelled")
