"""Node registry: the static table of node types the engine can dispatch."""

from typing import Dict, List, Optional, Type

from ..models.core import NodeCategory, NodeDefinition, ValidationResult, WorkflowNode
from ..nodes import (
    AmassNode,
    ArjunNode,
    BaseNode,
    ConditionalNode,
    FfufNode,
    FilterNode,
    HttpRequestNode,
    IteratorNode,
    MergeNode,
    NucleiNode,
    SplitNode,
    SubfinderNode,
    TransformNode,
    WaitNode,
)
from ..nodes.schema import model_violations, validate_config
from .context import ExecutionContext
from .exceptions import UnknownNodeTypeError
from .logging import get_logger

logger = get_logger(__name__)


NODE_TYPES: Dict[str, Type[BaseNode]] = {
    node_class.node_type: node_class
    for node_class in (
        SubfinderNode,
        AmassNode,
        NucleiNode,
        FfufNode,
        ArjunNode,
        ConditionalNode,
        FilterNode,
        MergeNode,
        SplitNode,
        TransformNode,
        IteratorNode,
        WaitNode,
        HttpRequestNode,
    )
}


class NodeRegistry:
    """Maps node type names to implementations and their definitions."""

    def __init__(self, node_types: Optional[Dict[str, Type[BaseNode]]] = None):
        """Initialize the registry.

        Args:
            node_types: Table to register, defaults to ``NODE_TYPES``
        """
        self._classes: Dict[str, Type[BaseNode]] = {}
        self._definitions: Dict[str, NodeDefinition] = {}

        for node_type, node_class in (NODE_TYPES if node_types is None else node_types).items():
            self.register(node_type, node_class)

        logger.info(f"Node registry initialized with {len(self._classes)} node types")

    def register(self, node_type: str, node_class: Type[BaseNode]) -> bool:
        """Register a node implementation.

        The definition is derived from the class. A class whose definition
        cannot be derived is skipped with a warning.

        Returns:
            True if the type was registered
        """
        try:
            definition = node_class.get_definition()
        except Exception as e:
            logger.warning(f"Failed to register node type '{node_type}': {e}")
            return False

        if node_type in self._classes:
            logger.warning(f"Replacing registered node type '{node_type}'")

        self._classes[node_type] = node_class
        self._definitions[node_type] = definition
        logger.debug(f"Registered node type '{node_type}' ({definition.category.value})")
        return True

    def unregister(self, node_type: str) -> bool:
        if node_type not in self._classes:
            return False
        del self._classes[node_type]
        del self._definitions[node_type]
        return True

    def is_registered(self, node_type: str) -> bool:
        return node_type in self._classes

    def get_node_class(self, node_type: str) -> Type[BaseNode]:
        try:
            return self._classes[node_type]
        except KeyError:
            raise UnknownNodeTypeError(node_type)

    def create_node(self, node: WorkflowNode, context: ExecutionContext) -> BaseNode:
        """Instantiate the implementation for ``node``.

        Raises:
            UnknownNodeTypeError: If the node type is not registered
            NodeConfigurationError: If the configuration cannot be parsed
        """
        return self.get_node_class(node.type)(node, context)

    def get_available_types(self) -> List[str]:
        return list(self._classes)

    def get_definition(self, node_type: str) -> Optional[NodeDefinition]:
        return self._definitions.get(node_type)

    def get_all_definitions(self) -> List[NodeDefinition]:
        return list(self._definitions.values())

    def get_definitions_by_category(self, category: NodeCategory) -> List[NodeDefinition]:
        return [definition for definition in self._definitions.values() if definition.category == category]

    def validate_node_config(self, node: WorkflowNode) -> ValidationResult:
        """
        Validate a node's configuration, with type defaults applied.

        The schema check runs first; a configuration it accepts is also parsed
        into the node's config model, so a valid result means the node can be built.
        """
        definition = self._definitions.get(node.type)
        if definition is None:
            return ValidationResult(is_valid=False, errors=[f"Unknown node type: {node.type}"])

        config = {**definition.default_config, **node.config}
        errors = validate_config(definition.config_schema, config)
        if not errors:
            errors = model_violations(self._classes[node.type].config_model, config)
        return ValidationResult(is_valid=not errors, errors=errors)


_default_registry: Optional[NodeRegistry] = None


def get_node_registry() -> NodeRegistry:
    """Return the process-wide default registry."""
    global _default_registry
    if _default_registry is None:
        _default_registry = NodeRegistry()
    return _default_registry
