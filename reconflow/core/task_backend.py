"""HTTP client for the remote task-execution backend."""

import asyncio
from enum import Enum
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from .error_recovery import RetryConfig, retry_async
from .exceptions import (
    ExecutionCancelledError,
    TaskBackendError,
    TaskFailedError,
    TaskTimeoutError,
    TransientError,
)
from .logging import get_logger


logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = {502, 503, 504}


class TaskStatus(str, Enum):
    """Task states reported by the backend."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskState(BaseModel):
    """Result of a status poll."""
    task_id: str
    status: str
    output: Optional[str] = None

    @property
    def is_finished(self) -> bool:
        return self.status in (TaskStatus.COMPLETED.value, TaskStatus.FAILED.value)


class TaskBackendClient:
    """
    Submits commands to the task backend and polls them to completion.

    The backend exposes ``POST /tasks`` (body ``{"command": ...}``, answer
    ``{"task_id": ...}``), ``GET /tasks/{id}`` (answer ``{"status", "output"}``)
    and ``DELETE /tasks/{id}``. Every call carries a bearer token when one is
    configured.
    """

    def __init__(
        self,
        base_url: str,
        auth_token: Optional[str] = None,
        poll_interval: float = 2.0,
        request_timeout: float = 30.0,
        verify_ssl: bool = True,
        cancel_abandoned_tasks: bool = True,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.cancel_abandoned_tasks = cancel_abandoned_tasks
        self.retry_config = retry_config or RetryConfig()

        headers = {"Content-Type": "application/json"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=request_timeout,
            verify=verify_ssl,
            transport=transport
        )

    @classmethod
    def from_config(
        cls,
        config,
        base_url: Optional[str] = None,
        auth_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "TaskBackendClient":
        """Build a client from an ``AppConfig``, optionally overriding address and credential."""
        return cls(
            base_url=base_url or config.backend_base_url,
            auth_token=auth_token if auth_token is not None else config.backend_auth_token,
            poll_interval=config.poll_interval,
            request_timeout=config.backend_request_timeout,
            verify_ssl=config.backend_verify_ssl,
            cancel_abandoned_tasks=config.cancel_abandoned_tasks,
            retry_config=RetryConfig(
                max_attempts=config.backend_max_retries,
                base_delay=config.backend_retry_base_delay
            ),
            transport=transport
        )

    async def __aenter__(self) -> "TaskBackendClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        async def send() -> httpx.Response:
            try:
                response = await self._client.request(method, path, **kwargs)
            except httpx.TransportError as e:
                raise TransientError(f"Task backend unreachable: {e}")

            if response.status_code in RETRYABLE_STATUS_CODES:
                raise TransientError(f"Task backend unavailable: HTTP {response.status_code}")
            if response.is_error:
                raise TaskBackendError(
                    f"Task backend returned HTTP {response.status_code}: {response.text[:200]}",
                    status_code=response.status_code
                )
            return response

        return await retry_async(send, self.retry_config, f"{method} {path}")

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            raise TaskBackendError("Task backend returned a non-JSON response",
                                   status_code=response.status_code)
        if not isinstance(body, dict):
            raise TaskBackendError("Task backend returned an unexpected payload",
                                   status_code=response.status_code)
        return body

    async def submit_task(self, command: str) -> str:
        """
        Submit a command as a new task.

        Args:
            command: Shell command for the backend to run

        Returns:
            The backend's task identifier

        Raises:
            TaskBackendError: If the backend rejects the task or answers badly
        """
        response = await self._request("POST", "/tasks", json={"command": command})
        body = self._json(response)
        task_id = body.get("task_id")
        if not task_id:
            raise TaskBackendError("Task backend did not return a task_id")
        logger.debug(f"Submitted task {task_id}: {command}")
        return str(task_id)

    async def get_task(self, task_id: str) -> TaskState:
        """Fetch the current status of a task."""
        response = await self._request("GET", f"/tasks/{task_id}")
        body = self._json(response)
        return TaskState(
            task_id=task_id,
            status=str(body.get("status", TaskStatus.PENDING.value)).lower(),
            output=body.get("output")
        )

    async def cancel_task(self, task_id: str) -> bool:
        """Ask the backend to stop a task. Failures are logged, never raised."""
        try:
            response = await self._client.delete(f"/tasks/{task_id}")
        except httpx.HTTPError as e:
            logger.warning(f"Could not cancel task {task_id}: {e}")
            return False
        if response.is_error:
            logger.warning(f"Backend refused to cancel task {task_id}: HTTP {response.status_code}")
            return False
        logger.info(f"Requested cancellation of task {task_id}")
        return True

    async def _poll_until_finished(self, task_id: str, cancel_event: Optional[asyncio.Event]) -> Optional[TaskState]:
        while True:
            state = await self.get_task(task_id)
            if state.status == TaskStatus.COMPLETED.value:
                return state
            if state.status == TaskStatus.FAILED.value:
                raise TaskFailedError(f"Task failed: {state.output or 'unknown error'}", task_id=task_id)

            if cancel_event is None:
                await asyncio.sleep(self.poll_interval)
                continue
            try:
                await asyncio.wait_for(cancel_event.wait(), timeout=self.poll_interval)
                return None
            except asyncio.TimeoutError:
                continue

    async def _abandon(self, task_id: str, reason: str) -> None:
        logger.warning(f"Abandoning task {task_id}: {reason}")
        if self.cancel_abandoned_tasks:
            await self.cancel_task(task_id)

    async def run_command(
        self,
        command: str,
        timeout: float,
        cancel_event: Optional[asyncio.Event] = None
    ) -> str:
        """
        Submit ``command`` and wait for its output.

        Args:
            command: Shell command for the backend to run
            timeout: Deadline in seconds for the task to finish
            cancel_event: Set to stop polling early

        Returns:
            The task's textual output (empty string when there is none)

        Raises:
            TaskFailedError: If the backend reports the task as failed
            TaskTimeoutError: If the deadline passes first
            ExecutionCancelledError: If ``cancel_event`` is set while polling
        """
        task_id = await self.submit_task(command)

        try:
            state = await asyncio.wait_for(
                self._poll_until_finished(task_id, cancel_event),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            await self._abandon(task_id, f"no result after {timeout}s")
            raise TaskTimeoutError("Task timeout", task_id=task_id, timeout=timeout)

        if state is None:
            await self._abandon(task_id, "execution cancelled")
            raise ExecutionCancelledError(f"Task {task_id} abandoned: execution cancelled")

        return state.output or ""

    async def ping(self) -> bool:
        """Return True when the backend answers at all."""
        try:
            await self._client.get("/")
        except httpx.HTTPError:
            return False
        return True
