"""Node contract and the helpers every node implementation shares."""

import asyncio
import json
import re
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, ClassVar, Dict, List, Optional, Type

from pydantic import ValidationError

from ..core.context import ExecutionContext
from ..core.exceptions import NodeConfigurationError
from ..models.core import (
    DEFAULT_PORT,
    LogLevel,
    NodeCategory,
    NodeDefinition,
    NodeExecutionResult,
    NodeInput,
    NodeOutput,
    PortDefinition,
    WorkflowNode,
)
from .schema import NodeConfig, build_config_schema, format_violations, validate_config


_PLACEHOLDER = re.compile(r"\{\{\s*([\w.-]+)\s*\}\}")


def get_path_value(data: Any, path: str) -> Any:
    """
    Resolve a dotted path such as ``findings.0.severity`` inside ``data``.

    Numeric segments index lists and ``length`` gives the size of a string,
    list or mapping. Missing segments resolve to ``None``.
    """
    current = data
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            if part in current:
                current = current[part]
            elif part == "length":
                current = len(current)
            else:
                return None
        elif isinstance(current, (list, tuple)):
            if part == "length":
                current = len(current)
            elif part.lstrip("-").isdigit() and -len(current) <= int(part) < len(current):
                current = current[int(part)]
            else:
                return None
        elif isinstance(current, str) and part == "length":
            current = len(current)
        else:
            return None
    return current


def stringify(value: Any) -> str:
    """Render a value for insertion into a command or template."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


class BaseNode(ABC):
    """
    Abstract base of every node type.

    Subclasses declare their metadata as class attributes and a pydantic
    ``config_model``; the node definition is derived from those without
    instantiating the class. ``execute`` returns a ``NodeExecutionResult`` and
    must not touch other nodes or the context's output/status bookkeeping.
    """

    node_type: ClassVar[str] = ""
    category: ClassVar[NodeCategory] = NodeCategory.UTILITY
    display_name: ClassVar[str] = ""
    description: ClassVar[str] = ""
    icon: ClassVar[str] = ""
    input_ports: ClassVar[List[PortDefinition]] = [
        PortDefinition(name=DEFAULT_PORT, label="Input")
    ]
    output_ports: ClassVar[List[PortDefinition]] = [
        PortDefinition(name=DEFAULT_PORT, label="Output")
    ]
    config_model: ClassVar[Type[NodeConfig]] = NodeConfig
    # output data is a mapping keyed by output port name
    port_payloads: ClassVar[bool] = False

    def __init__(self, node: WorkflowNode, context: ExecutionContext):
        self.node = node
        self.context = context
        self.raw_config: Dict[str, Any] = {**self.get_definition().default_config, **node.config}
        self._started = time.monotonic()

        try:
            self.settings = self.config_model.model_validate(self.raw_config)
        except ValidationError as e:
            violations = format_violations(e)
            raise NodeConfigurationError(
                f"Invalid configuration for node '{node.id}': {'; '.join(violations)}",
                node_id=node.id,
                violations=violations
            )

    @classmethod
    def get_definition(cls) -> NodeDefinition:
        """Return the declarative definition of this node type."""
        cached = cls.__dict__.get("_definition")
        if cached is not None:
            return cached

        if not cls.node_type:
            raise TypeError(f"{cls.__name__} does not declare a node_type")

        schema = build_config_schema(cls.config_model)
        definition = NodeDefinition(
            type=cls.node_type,
            category=cls.category,
            name=cls.display_name or cls.node_type.title(),
            description=cls.description,
            icon=cls.icon,
            inputs=list(cls.input_ports),
            outputs=list(cls.output_ports),
            config_schema=schema,
            default_config={name: field.default for name, field in schema.items() if field.default is not None}
        )
        cls._definition = definition
        return definition

    @abstractmethod
    async def execute(self, inputs: Dict[str, NodeInput]) -> NodeExecutionResult:
        """Run the node against the payloads delivered to its input ports."""

    # Shared helpers

    def validate_config(self) -> List[str]:
        """Validate the node's configuration against its schema."""
        return validate_config(self.get_definition().config_schema, self.raw_config)

    def validate_inputs(self, inputs: Dict[str, NodeInput]) -> List[str]:
        """Report required input ports that received nothing."""
        return [
            f"Required input '{port.label}' is missing"
            for port in self.input_ports
            if port.required and port.name not in inputs
        ]

    def log(self, level: LogLevel, message: str, data: Optional[Any] = None) -> None:
        self.context.log(level, message, node_id=self.node.id, data=data)

    def replace_variables(
        self,
        template: str,
        data: Optional[Dict[str, Any]] = None,
        quote: Optional[Callable[[str], str]] = None
    ) -> str:
        """
        Substitute ``{{name}}`` placeholders in ``template``.

        Names resolve against the context variables first, then against
        ``data`` (the node configuration by default). Unknown placeholders are
        left untouched.

        Args:
            template: Text containing placeholders
            data: Fallback values, defaults to the node configuration
            quote: Optional function applied to every substituted value

        Returns:
            The substituted text
        """
        fallback = self.raw_config if data is None else data

        def substitute(match: "re.Match[str]") -> str:
            name = match.group(1)
            value = get_path_value(self.context.variables, name)
            if value is None:
                value = get_path_value(fallback, name)
            if value is None:
                return match.group(0)
            text = stringify(value)
            return quote(text) if quote else text

        return _PLACEHOLDER.sub(substitute, template)

    @staticmethod
    def get_input_data(inputs: Dict[str, NodeInput], port: str = DEFAULT_PORT) -> Any:
        node_input = inputs.get(port)
        return node_input.data if node_input is not None else None

    @staticmethod
    def merge_inputs(inputs: Dict[str, NodeInput]) -> Dict[str, Any]:
        """
        Combine all input payloads into one mapping.

        Mapping payloads are shallow-merged, with list values under the same
        key concatenated. List and scalar payloads are stored under their
        port name.
        """
        merged: Dict[str, Any] = {}
        for name, node_input in inputs.items():
            payload = node_input.data
            if isinstance(payload, dict):
                for key, value in payload.items():
                    if isinstance(value, list) and isinstance(merged.get(key), list):
                        merged[key] = merged[key] + value
                    else:
                        merged[key] = value
            elif isinstance(payload, list):
                existing = merged.get(name)
                merged[name] = existing + payload if isinstance(existing, list) else payload
            elif payload is not None:
                merged[name] = payload
        return merged

    async def sleep(self, seconds: float) -> bool:
        """Wait for ``seconds`` unless the run is cancelled; returns False on cancellation."""
        if seconds <= 0:
            return not self.context.cancelled
        try:
            await asyncio.wait_for(self.context.cancel_event.wait(), timeout=seconds)
            return False
        except asyncio.TimeoutError:
            return True

    def create_output(self, data: Any, success: bool = True, error: Optional[str] = None) -> NodeOutput:
        return NodeOutput(
            data=data,
            success=success,
            error=error,
            metadata={
                "execution_time": round(time.monotonic() - self._started, 3),
                "timestamp": datetime.utcnow().isoformat(),
                "node_id": self.node.id
            }
        )

    def create_success_result(self, data: Any) -> NodeExecutionResult:
        return NodeExecutionResult(success=True, output=self.create_output(data), should_continue=True)

    def create_error_result(self, error: str) -> NodeExecutionResult:
        """Log ``error`` and wrap it in a failed result."""
        self.log(LogLevel.ERROR, error)
        return NodeExecutionResult(
            success=False,
            output=self.create_output(None, success=False, error=error),
            error=error,
            should_continue=False
        )
