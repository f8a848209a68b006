"""Custom exceptions for the workflow engine with detailed error information."""

import traceback
from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    STRUCTURE = "structure"
    EXECUTION = "execution"
    STORAGE = "storage"
    NETWORK = "network"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"


class WorkflowEngineError(Exception):
    """Base exception for all workflow engine errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.retry_after = retry_after
        self.context = context or {}
        self.timestamp = datetime.utcnow()
        self.traceback_info = traceback.format_stack()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "retry_after": self.retry_after,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class GraphValidationError(WorkflowEngineError):
    """Raised when a workflow graph or document is structurally invalid."""

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[str]] = None,
        workflow_id: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            **kwargs
        )
        self.validation_errors = validation_errors or []
        if workflow_id:
            self.add_context(workflow_id=workflow_id)
        if validation_errors:
            self.add_details(validation_errors=validation_errors)


class GraphCycleError(GraphValidationError):
    """Raised when the connections of a workflow form a cycle."""

    def __init__(self, message: str, cycle_path: Optional[List[str]] = None, **kwargs):
        super().__init__(message, category=ErrorCategory.STRUCTURE, **kwargs)
        self.cycle_path = cycle_path or []
        if cycle_path:
            self.add_details(cycle_path=cycle_path)


class SchedulingError(WorkflowEngineError):
    """Raised when the resolver cannot place every node into a phase."""

    def __init__(self, message: str, node_ids: Optional[List[str]] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.INTERNAL,
            **kwargs
        )
        self.node_ids = node_ids or []
        if node_ids:
            self.add_details(unscheduled_nodes=node_ids)


class UnknownNodeTypeError(WorkflowEngineError):
    """Raised when a node type has no registry entry."""

    def __init__(self, node_type: str, **kwargs):
        super().__init__(
            f"Unknown node type: {node_type}",
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.STRUCTURE,
            **kwargs
        )
        self.node_type = node_type
        self.add_context(node_type=node_type)


class NodeConfigurationError(WorkflowEngineError):
    """Raised when a node configuration violates its schema."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        violations: Optional[List[str]] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        self.violations = violations or []
        if node_id:
            self.add_context(node_id=node_id)
        if violations:
            self.add_details(violations=violations)


class NodeExecutionError(WorkflowEngineError):
    """Raised when node execution fails."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        if node_id:
            self.add_context(node_id=node_id)
        if execution_id:
            self.add_context(execution_id=execution_id)


class TaskBackendError(WorkflowEngineError):
    """Raised when the remote task backend cannot be used."""

    def __init__(
        self,
        message: str,
        task_id: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            **kwargs
        )
        self.task_id = task_id
        self.status_code = status_code
        if task_id:
            self.add_context(task_id=task_id)
        if status_code is not None:
            self.add_details(status_code=status_code)


class TaskFailedError(TaskBackendError):
    """Raised when the backend reports a task as failed."""


class TaskTimeoutError(TaskBackendError):
    """Raised when a task does not finish within its deadline."""

    def __init__(self, message: str, timeout: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        if timeout is not None:
            self.add_details(timeout=timeout)


class TransientError(WorkflowEngineError):
    """Raised for transient errors that should be retried."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.NETWORK)
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            recoverable=True,
            retry_after=5,
            **kwargs
        )


class ExecutionEngineError(WorkflowEngineError):
    """Raised when execution engine operations fail."""

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        if execution_id:
            self.add_context(execution_id=execution_id)
        if workflow_id:
            self.add_context(workflow_id=workflow_id)


class ExecutionCancelledError(ExecutionEngineError):
    """Raised when work is abandoned because its run was cancelled."""


class StorageError(WorkflowEngineError):
    """Raised when storage operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.STORAGE,
            recoverable=True,
            retry_after=3,
            **kwargs
        )
        if operation:
            self.add_context(operation=operation)


class WorkflowNotFoundError(StorageError):
    """Raised when a stored workflow does not exist."""

    def __init__(self, workflow_id: str, **kwargs):
        super().__init__(f"Workflow with ID '{workflow_id}' not found", **kwargs)
        self.recoverable = False
        self.retry_after = None
        self.add_context(workflow_id=workflow_id)


class ConfigurationError(WorkflowEngineError):
    """Raised when application configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


def create_error_response(error: WorkflowEngineError) -> Dict[str, Any]:
    """Create a standardized error response from a WorkflowEngineError."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "retry_after": error.retry_after,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }
