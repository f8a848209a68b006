"""Retry helpers for transient failures when talking to remote services."""

import asyncio
import random
from typing import Any, Awaitable, Callable, List, Optional, Type

from .exceptions import WorkflowEngineError, TransientError
from .logging import get_logger, ErrorRecoveryLogger


logger = get_logger(__name__)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 10.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Optional[List[Type[Exception]]] = None
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions or [TransientError]

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        """Determine if an exception should be retried."""
        if attempt >= self.max_attempts:
            return False

        if isinstance(exception, WorkflowEngineError) and not exception.recoverable:
            return False

        return any(isinstance(exception, exc_type) for exc_type in self.retryable_exceptions)

    def get_delay(self, attempt: int) -> float:
        """Calculate delay before the next attempt."""
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay *= (0.5 + random.random() * 0.5)

        return delay


async def retry_async(
    operation: Callable[[], Awaitable[Any]],
    config: Optional[RetryConfig] = None,
    operation_name: str = "operation",
    component: str = "task_backend"
) -> Any:
    """
    Await ``operation`` until it succeeds or the retry budget is spent.

    Args:
        operation: Zero-argument coroutine factory
        config: Retry configuration, defaults to ``RetryConfig()``
        operation_name: Name used in recovery log messages
        component: Component name for the recovery logger

    Returns:
        Whatever ``operation`` returns

    Raises:
        The last exception raised by ``operation``
    """
    config = config or RetryConfig()
    recovery_logger = ErrorRecoveryLogger(component)
    attempt = 0

    while True:
        attempt += 1
        try:
            result = await operation()
            if attempt > 1:
                recovery_logger.log_recovery_success(operation_name, attempt)
            return result
        except Exception as e:
            if not config.should_retry(e, attempt):
                if attempt > 1:
                    recovery_logger.log_recovery_failure(operation_name, e, attempt)
                raise

            recovery_logger.log_recovery_attempt(operation_name, e, attempt, config.max_attempts)
            await asyncio.sleep(config.get_delay(attempt))

