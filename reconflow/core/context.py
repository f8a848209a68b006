"""Execution context: the mutable record of a single workflow run."""

import asyncio
import logging
import random
import string
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, TYPE_CHECKING

from ..models.core import ExecutionLog, LogLevel, NodeCategory, NodeOutput
from .logging import get_logger, log_with_context

if TYPE_CHECKING:
    import httpx
    from .task_backend import TaskBackendClient


logger = get_logger(__name__)

DEFAULT_TASK_TIMEOUTS: Dict[NodeCategory, float] = {
    NodeCategory.DISCOVERY: 300.0,
    NodeCategory.ANALYSIS: 600.0,
}

_PY_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def generate_execution_id() -> str:
    """Return a fresh id of the form ``exec-<epoch ms>-<random>``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"exec-{int(time.time() * 1000)}-{suffix}"


class ExecutionContext:
    """
    State of one run of a workflow.

    Node implementations read from the context (variables, upstream outputs,
    timeouts, backend handle) and append log entries. Only the execution
    engine writes ``node_outputs`` and the node-id sets.
    """

    def __init__(
        self,
        workflow_id: str,
        variables: Optional[Dict[str, Any]] = None,
        execution_id: Optional[str] = None,
        task_timeouts: Optional[Dict[NodeCategory, float]] = None,
        backend: Optional["TaskBackendClient"] = None,
        http_transport: Optional["httpx.AsyncBaseTransport"] = None
    ):
        self.workflow_id = workflow_id
        self.execution_id = execution_id or generate_execution_id()
        self.variables: Dict[str, Any] = dict(variables or {})
        self.node_outputs: Dict[str, NodeOutput] = {}
        self.start_time = datetime.utcnow()
        self.end_time: Optional[datetime] = None
        self.current_nodes: Set[str] = set()
        self.completed_nodes: Set[str] = set()
        self.failed_nodes: Set[str] = set()
        self.logs: List[ExecutionLog] = []
        self.task_timeouts: Dict[NodeCategory, float] = {**DEFAULT_TASK_TIMEOUTS, **(task_timeouts or {})}
        self.backend = backend
        self.http_transport = http_transport

        self.cancel_event = asyncio.Event()
        self._resume_event = asyncio.Event()
        self._resume_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def paused(self) -> bool:
        return not self._resume_event.is_set()

    def cancel(self) -> None:
        """Signal cancellation and release a paused run so it can wind down."""
        self.cancel_event.set()
        self._resume_event.set()

    def pause(self) -> None:
        self._resume_event.clear()

    def resume(self) -> None:
        self._resume_event.set()

    async def wait_if_paused(self) -> None:
        """Block while the run is paused."""
        await self._resume_event.wait()

    def get_task_timeout(self, category: NodeCategory) -> float:
        return self.task_timeouts.get(category, DEFAULT_TASK_TIMEOUTS[NodeCategory.DISCOVERY])

    def log(
        self,
        level: LogLevel,
        message: str,
        node_id: Optional[str] = None,
        data: Optional[Any] = None
    ) -> ExecutionLog:
        """Append an entry to the execution log and mirror it to the module logger."""
        entry = ExecutionLog(level=level, message=message, node_id=node_id, data=data)
        self.logs.append(entry)
        log_with_context(
            logger,
            _PY_LEVELS[level],
            message,
            execution_id=self.execution_id,
            workflow_id=self.workflow_id,
            node_id=node_id
        )
        return entry

    def elapsed(self) -> float:
        """Seconds since the run started."""
        end = self.end_time or datetime.utcnow()
        return (end - self.start_time).total_seconds()
