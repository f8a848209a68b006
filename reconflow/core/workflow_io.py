"""Export and import of workflow documents."""

import json
from datetime import datetime
from typing import Any, Dict

from pydantic import ValidationError

from ..models.core import (
    CONNECTION_ID_SEPARATOR, DEFAULT_PORT, NodeCategory, NodeStatus, WorkflowGraph, WorkflowStatus
)
from .exceptions import GraphValidationError
from .logging import get_logger

logger = get_logger(__name__)

DOCUMENT_VERSION = "1.0"


def export_workflow(graph: WorkflowGraph) -> Dict[str, Any]:
    """
    Serialize a workflow graph into a portable document.

    Node runtime state (status, data, error) is included as-is.
    """
    document = graph.model_dump(mode="json")
    document["version"] = DOCUMENT_VERSION
    document["exported_at"] = datetime.utcnow().isoformat()
    document["metadata"] = {
        "node_count": len(graph.nodes),
        "connection_count": len(graph.connections),
        "categories": sorted({node.category.value for node in graph.nodes})
    }
    return document


def load_workflow(document: Dict[str, Any]) -> WorkflowGraph:
    """
    Build a workflow graph from a document, filling in defaults.

    Statuses always come back idle. Prior node output (``data``) is kept.

    Raises:
        GraphValidationError: If the document is not a workflow document or
            describes an invalid graph
    """
    if (not isinstance(document, dict)
            or not document.get("id")
            or not document.get("name")
            or not isinstance(document.get("nodes"), list)
            or not isinstance(document.get("connections"), list)):
        raise GraphValidationError("Invalid workflow format")

    nodes = []
    for raw in document["nodes"]:
        if not isinstance(raw, dict):
            raise GraphValidationError("Invalid workflow format")
        node = {
            **raw,
            "category": raw.get("category") or NodeCategory.DISCOVERY.value,
            "position": raw.get("position") or {"x": 100, "y": 100},
            "config": raw.get("config") or {},
            "inputs": raw.get("inputs") or [DEFAULT_PORT],
            "outputs": raw.get("outputs") or [DEFAULT_PORT],
            "status": NodeStatus.IDLE.value,
            "error": None
        }
        nodes.append(node)

    connections = []
    for raw in document["connections"]:
        if not isinstance(raw, dict):
            raise GraphValidationError("Invalid workflow format")
        connection = dict(raw)
        connection["id"] = raw.get("id") or f"{raw.get('source')}{CONNECTION_ID_SEPARATOR}{raw.get('target')}"
        connections.append(connection)

    try:
        graph = WorkflowGraph(
            id=document["id"],
            name=document["name"],
            description=document.get("description") or "",
            nodes=nodes,
            connections=connections,
            status=WorkflowStatus.IDLE
        )
    except ValidationError as e:
        errors = [f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise GraphValidationError(
            "Invalid workflow format",
            validation_errors=errors,
            workflow_id=str(document.get("id"))
        )

    logger.debug(f"Loaded workflow '{graph.id}' with {len(graph.nodes)} nodes")
    return graph


def dumps_workflow(graph: WorkflowGraph, indent: int = 2) -> str:
    return json.dumps(export_workflow(graph), indent=indent)


def loads_workflow(text: str) -> WorkflowGraph:
    try:
        document = json.loads(text)
    except ValueError as e:
        raise GraphValidationError(f"Invalid workflow format: {e}")
    return load_workflow(document)
