"""Core workflow engine components."""

from .exceptions import (
    WorkflowEngineError,
    GraphValidationError,
    GraphCycleError,
    SchedulingError,
    UnknownNodeTypeError,
    NodeConfigurationError,
    NodeExecutionError,
    TaskBackendError,
    TaskFailedError,
    TaskTimeoutError,
    ExecutionEngineError,
    StorageError,
    WorkflowNotFoundError,
)
from .logging import setup_logging, get_logger

__all__ = [
    "WorkflowEngineError",
    "GraphValidationError",
    "GraphCycleError",
    "SchedulingError",
    "UnknownNodeTypeError",
    "NodeConfigurationError",
    "NodeExecutionError",
    "TaskBackendError",
    "TaskFailedError",
    "TaskTimeoutError",
    "ExecutionEngineError",
    "StorageError",
    "WorkflowNotFoundError",
    "setup_logging",
    "get_logger",
]
