"""Data models for the workflow engine."""

from .core import (
    WorkflowStatus,
    NodeStatus,
    NodeCategory,
    LogLevel,
    ConfigFieldType,
    ValidationResult,
    Position,
    ConfigField,
    PortDefinition,
    NodeDefinition,
    NodeInput,
    NodeOutput,
    NodeExecutionResult,
    ExecutionLog,
    WorkflowNode,
    Connection,
    WorkflowGraph,
    ExecutionStats,
    ExecutionSnapshot,
    WorkflowSummary,
)

__all__ = [
    "WorkflowStatus",
    "NodeStatus",
    "NodeCategory",
    "LogLevel",
    "ConfigFieldType",
    "ValidationResult",
    "Position",
    "ConfigField",
    "PortDefinition",
    "NodeDefinition",
    "NodeInput",
    "NodeOutput",
    "NodeExecutionResult",
    "ExecutionLog",
    "WorkflowNode",
    "Connection",
    "WorkflowGraph",
    "ExecutionStats",
    "ExecutionSnapshot",
    "WorkflowSummary",
]
