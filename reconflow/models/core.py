"""Core Pydantic models for the workflow engine."""

import re
import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


DEFAULT_PORT = "main"
# Joins derived connection ids; node ids cannot contain it.
CONNECTION_ID_SEPARATOR = "~"


class WorkflowStatus(str, Enum):
    """Overall status of a workflow graph."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


class NodeStatus(str, Enum):
    """Status of a single node within a run."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class NodeCategory(str, Enum):
    """Capability groups of node types."""
    DISCOVERY = "discovery"
    ANALYSIS = "analysis"
    LOGIC = "logic"
    DATA = "data"
    UTILITY = "utility"


class LogLevel(str, Enum):
    """Levels of execution log entries."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class ConfigFieldType(str, Enum):
    """Widget types of node configuration fields."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    SELECT = "select"
    MULTISELECT = "multiselect"
    TEXTAREA = "textarea"


class ValidationResult(BaseModel):
    """Result of a validation pass."""
    is_valid: bool = Field(..., description="Whether the subject is valid")
    errors: List[str] = Field(default_factory=list, description="List of validation errors")
    warnings: List[str] = Field(default_factory=list, description="List of validation warnings")


class Position(BaseModel):
    """Canvas position of a node."""
    x: float = 100
    y: float = 100


class FieldOption(BaseModel):
    """One choice of a select or multiselect field."""
    label: str
    value: Any


class FieldValidation(BaseModel):
    """Numeric bounds and string pattern of a configuration field."""
    min: Optional[float] = None
    max: Optional[float] = None
    exclusive_min: bool = False
    exclusive_max: bool = False
    integer: bool = False
    pattern: Optional[str] = None


class ConfigField(BaseModel):
    """Schema of one configuration field."""
    type: ConfigFieldType
    label: str
    description: Optional[str] = None
    required: bool = False
    default: Any = None
    options: Optional[List[FieldOption]] = None
    validation: Optional[FieldValidation] = None


class PortDefinition(BaseModel):
    """Declared input or output port of a node type."""
    name: str
    label: str
    type: str = "any"
    required: bool = False


class NodeDefinition(BaseModel):
    """Declarative metadata of a node type."""
    model_config = ConfigDict(frozen=True)

    type: str = Field(..., description="Registry key of the node type")
    category: NodeCategory
    name: str
    description: str = ""
    icon: str = ""
    inputs: List[PortDefinition] = Field(default_factory=list)
    outputs: List[PortDefinition] = Field(default_factory=list)
    config_schema: Dict[str, ConfigField] = Field(default_factory=dict)
    default_config: Dict[str, Any] = Field(default_factory=dict)


class NodeInput(BaseModel):
    """Payload delivered to a node on one input port."""
    data: Any = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class NodeOutput(BaseModel):
    """Output produced by a node."""
    data: Any = None
    success: bool = True
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class NodeExecutionResult(BaseModel):
    """Tagged result returned by ``BaseNode.execute``."""
    success: bool
    output: Optional[NodeOutput] = None
    error: Optional[str] = None
    should_continue: bool = True


class ExecutionLog(BaseModel):
    """One timestamped entry of an execution log."""
    id: str = Field(default_factory=lambda: f"log-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    level: LogLevel = LogLevel.INFO
    node_id: Optional[str] = None
    message: str
    data: Optional[Any] = None


class WorkflowNode(BaseModel):
    """A node placed in a workflow graph."""
    id: str = Field(..., description="Unique identifier within the graph")
    type: str = Field(..., description="Registry key of the node type")
    title: str = ""
    category: NodeCategory = NodeCategory.DISCOVERY
    position: Position = Field(default_factory=Position)
    config: Dict[str, Any] = Field(default_factory=dict)
    status: NodeStatus = NodeStatus.IDLE
    inputs: List[str] = Field(default_factory=lambda: [DEFAULT_PORT])
    outputs: List[str] = Field(default_factory=lambda: [DEFAULT_PORT])
    data: Optional[Any] = None
    error: Optional[str] = None

    @field_validator('id')
    @classmethod
    def validate_id_format(cls, id_value):
        """Ensure node ID follows valid format."""
        if not id_value or not id_value.strip():
            raise ValueError("Node ID cannot be empty")

        if not re.match(r'^[a-zA-Z0-9_.:-]+$', id_value.strip()):
            raise ValueError("Node ID must contain only alphanumeric characters, '_', '-', '.' and ':'")

        return id_value.strip()

    @model_validator(mode='after')
    def default_title(self):
        if not self.title:
            self.title = self.type
        return self

    def reset(self) -> None:
        """Clear runtime state left by a previous run."""
        self.status = NodeStatus.IDLE
        self.error = None
        self.data = None


class Connection(BaseModel):
    """Directed edge from one node's output port to another's input port."""
    id: str = ""
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None

    @model_validator(mode='after')
    def validate_connection(self):
        """Reject self-loops and derive the id from its endpoints."""
        if self.source == self.target:
            raise ValueError(f"Self-referencing connection not allowed: {self.source}")
        if not self.id:
            self.id = f"{self.source}{CONNECTION_ID_SEPARATOR}{self.target}"
        return self

    @property
    def source_port(self) -> str:
        return self.source_handle or DEFAULT_PORT

    @property
    def target_port(self) -> str:
        return self.target_handle or DEFAULT_PORT


class WorkflowGraph(BaseModel):
    """A complete workflow: nodes, connections and overall status."""
    id: str = Field(default_factory=lambda: f"workflow-{uuid.uuid4().hex[:12]}")
    name: str = Field(..., description="Name of the workflow")
    description: str = ""
    nodes: List[WorkflowNode] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)
    status: WorkflowStatus = WorkflowStatus.IDLE

    @field_validator('name')
    @classmethod
    def validate_name_not_empty(cls, name):
        """Ensure workflow name is not empty."""
        if not name.strip():
            raise ValueError("Workflow name cannot be empty")
        return name.strip()

    @field_validator('nodes')
    @classmethod
    def validate_unique_node_ids(cls, nodes):
        """Ensure all node IDs are unique."""
        node_ids = [node.id for node in nodes]
        if len(node_ids) != len(set(node_ids)):
            raise ValueError("All node IDs must be unique")
        return nodes

    @field_validator('connections')
    @classmethod
    def validate_unique_connection_ids(cls, connections):
        """Ensure all connection IDs are unique."""
        connection_ids = [connection.id for connection in connections]
        if len(connection_ids) != len(set(connection_ids)):
            raise ValueError("All connection IDs must be unique")
        return connections

    @model_validator(mode='after')
    def validate_connection_references(self):
        """Ensure every connection references existing nodes."""
        node_ids = {node.id for node in self.nodes}
        for connection in self.connections:
            if connection.source not in node_ids:
                raise ValueError(f"Connection references non-existent source node: {connection.source}")
            if connection.target not in node_ids:
                raise ValueError(f"Connection references non-existent target node: {connection.target}")
        return self

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def incoming(self, node_id: str) -> List[Connection]:
        """Connections ending at ``node_id``."""
        return [c for c in self.connections if c.target == node_id]

    def outgoing(self, node_id: str) -> List[Connection]:
        """Connections starting at ``node_id``."""
        return [c for c in self.connections if c.source == node_id]


class ExecutionStats(BaseModel):
    """Diagnostics about a graph's phased execution order."""
    total_nodes: int
    phases: int
    max_parallelism: int
    avg_parallelism: float
    critical_path: List[str] = Field(default_factory=list)


class NodeState(BaseModel):
    """Runtime status of one node as seen from outside a run."""
    status: NodeStatus
    error: Optional[str] = None


class ExecutionSnapshot(BaseModel):
    """Point-in-time view of a run."""
    execution_id: str
    workflow_id: str
    status: WorkflowStatus
    started_at: datetime
    nodes: Dict[str, NodeState] = Field(default_factory=dict)
    current_nodes: List[str] = Field(default_factory=list)
    completed_nodes: List[str] = Field(default_factory=list)
    failed_nodes: List[str] = Field(default_factory=list)
    logs: List[ExecutionLog] = Field(default_factory=list)


class WorkflowSummary(BaseModel):
    """Summary information about a stored workflow."""
    id: str = Field(..., description="Workflow ID")
    name: str = Field(..., description="Workflow name")
    description: str = Field("", description="Workflow description")
    node_count: int = Field(..., description="Number of nodes in the workflow")
    connection_count: int = Field(..., description="Number of connections in the workflow")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")
