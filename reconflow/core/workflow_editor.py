"""In-memory editing operations on a workflow graph."""

from typing import Any, Dict, List, Optional

from ..models.core import Connection, Position, ValidationResult, WorkflowGraph, WorkflowNode
from .exceptions import GraphCycleError, GraphValidationError
from .graph_resolver import GraphResolver
from .logging import get_logger
from .node_registry import NodeRegistry, get_node_registry

logger = get_logger(__name__)


class WorkflowEditor:
    """Applies editing operations to a graph, keeping it executable."""

    def __init__(
        self,
        graph: WorkflowGraph,
        registry: Optional[NodeRegistry] = None,
        resolver: Optional[GraphResolver] = None
    ):
        self.graph = graph
        self.registry = registry or get_node_registry()
        self.resolver = resolver or GraphResolver()

    def _require_node(self, node_id: str) -> WorkflowNode:
        node = self.graph.get_node(node_id)
        if node is None:
            raise GraphValidationError(f"Node '{node_id}' not found", workflow_id=self.graph.id)
        return node

    def _generate_node_id(self, node_type: str) -> str:
        taken = {node.id for node in self.graph.nodes}
        index = 1
        while f"{node_type}-{index}" in taken:
            index += 1
        return f"{node_type}-{index}"

    def add_node(
        self,
        node_type: str,
        title: Optional[str] = None,
        position: Optional[Dict[str, float]] = None,
        config: Optional[Dict[str, Any]] = None,
        node_id: Optional[str] = None
    ) -> WorkflowNode:
        """Add a node of a registered type.

        The type's definition supplies default configuration, ports and
        category; ``config`` is laid over the defaults.

        Raises:
            UnknownNodeTypeError: If the type is not registered
            GraphValidationError: If ``node_id`` is already taken
        """
        definition = self.registry.get_node_class(node_type).get_definition()

        if node_id and self.graph.get_node(node_id) is not None:
            raise GraphValidationError(f"Node '{node_id}' already exists", workflow_id=self.graph.id)

        node = WorkflowNode(
            id=node_id or self._generate_node_id(node_type),
            type=node_type,
            title=title or definition.name,
            category=definition.category,
            position=Position(**position) if position else Position(),
            config={**definition.default_config, **(config or {})},
            inputs=[port.name for port in definition.inputs],
            outputs=[port.name for port in definition.outputs]
        )
        self.graph.nodes.append(node)
        logger.debug(f"Added node '{node.id}' ({node_type}) to workflow '{self.graph.id}'")
        return node

    def remove_node(self, node_id: str) -> WorkflowNode:
        """Remove a node together with every connection attached to it."""
        node = self._require_node(node_id)
        self.graph.nodes = [n for n in self.graph.nodes if n.id != node_id]
        self.graph.connections = [
            c for c in self.graph.connections if c.source != node_id and c.target != node_id
        ]
        return node

    def add_connection(
        self,
        source: str,
        target: str,
        source_handle: Optional[str] = None,
        target_handle: Optional[str] = None
    ) -> Connection:
        """Connect two nodes.

        Raises:
            GraphValidationError: For unknown endpoints, self-loops and
                duplicate connections
            GraphCycleError: If the connection would close a cycle
        """
        self._require_node(source)
        self._require_node(target)

        if source == target:
            raise GraphValidationError("A node cannot be connected to itself", workflow_id=self.graph.id)
        if any(c.source == source and c.target == target for c in self.graph.connections):
            raise GraphValidationError(
                f"Connection from '{source}' to '{target}' already exists",
                workflow_id=self.graph.id
            )

        connection = Connection(
            source=source,
            target=target,
            source_handle=source_handle,
            target_handle=target_handle
        )
        if any(c.id == connection.id for c in self.graph.connections):
            raise GraphValidationError(
                f"Connection id '{connection.id}' is already in use",
                workflow_id=self.graph.id
            )
        if self.resolver.would_create_cycle(self.graph, connection):
            raise GraphCycleError(
                f"Connecting '{source}' to '{target}' would create a cycle",
                cycle_path=[target, source],
                workflow_id=self.graph.id
            )

        self.graph.connections.append(connection)
        return connection

    def remove_connection(self, connection_id: str) -> bool:
        remaining = [c for c in self.graph.connections if c.id != connection_id]
        removed = len(remaining) != len(self.graph.connections)
        self.graph.connections = remaining
        return removed

    def update_node_config(self, node_id: str, updates: Dict[str, Any]) -> ValidationResult:
        """Shallow-merge ``updates`` into a node's configuration and validate the result."""
        node = self._require_node(node_id)
        node.config = {**node.config, **updates}
        return self.registry.validate_node_config(node)

    def validate(self) -> ValidationResult:
        """Check the structure, every node's configuration and the absence of cycles."""
        errors: List[str] = []
        warnings: List[str] = []

        if not self.graph.nodes:
            warnings.append("Workflow has no nodes")

        for node in self.graph.nodes:
            result = self.registry.validate_node_config(node)
            errors.extend(f"Node '{node.id}': {error}" for error in result.errors)

        node_ids = {node.id for node in self.graph.nodes}
        for connection in self.graph.connections:
            for endpoint in (connection.source, connection.target):
                if endpoint not in node_ids:
                    errors.append(f"Connection '{connection.id}' references unknown node '{endpoint}'")

        cycle = self.resolver.find_cycle(self.graph)
        if cycle:
            errors.append(f"Workflow contains cycles, cannot execute: {' -> '.join(cycle)}")

        if len(self.graph.nodes) > 1:
            connected = {c.source for c in self.graph.connections} | {c.target for c in self.graph.connections}
            isolated = [node.id for node in self.graph.nodes if node.id not in connected]
            if isolated:
                warnings.append(f"Isolated nodes detected: {', '.join(isolated)}")

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
