"""Middleware for error handling and request logging."""

import time
import uuid
from datetime import datetime
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import (
    GraphCycleError,
    GraphValidationError,
    NodeConfigurationError,
    TransientError,
    UnknownNodeTypeError,
    WorkflowEngineError,
    WorkflowNotFoundError,
    create_error_response,
)
from .logging import get_logger, logging_context


logger = get_logger(__name__)


def get_status_code_for_error(error: WorkflowEngineError) -> int:
    """Map a workflow engine error to an HTTP status code."""
    if isinstance(error, GraphCycleError):
        return 409
    if isinstance(error, (GraphValidationError, NodeConfigurationError, UnknownNodeTypeError)):
        return 400
    if isinstance(error, WorkflowNotFoundError):
        return 404
    if isinstance(error, TransientError):
        return 503
    return 500


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turns errors escaping the routes into JSON responses and tags every response with a request ID."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        start_time = time.time()

        with logging_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown"
        ):
            try:
                response = await call_next(request)
                duration = time.time() - start_time
                logger.info(
                    f"Request completed: {request.method} {request.url.path} - "
                    f"Status: {response.status_code} - Duration: {duration:.3f}s"
                )
                response.headers["X-Request-ID"] = request_id
                return response

            except WorkflowEngineError as e:
                duration = time.time() - start_time
                logger.warning(
                    f"Workflow engine error: {request.method} {request.url.path} - "
                    f"Error: {e.error_code} - Duration: {duration:.3f}s"
                )
                return JSONResponse(
                    status_code=get_status_code_for_error(e),
                    content=create_error_response(e),
                    headers={"X-Request-ID": request_id}
                )

            except Exception as e:
                duration = time.time() - start_time
                logger.error(
                    f"Unexpected error: {request.method} {request.url.path} - "
                    f"Error: {str(e)} - Duration: {duration:.3f}s",
                    exc_info=True
                )
                return JSONResponse(
                    status_code=500,
                    content={
                        "error": "InternalServerError",
                        "message": "An unexpected error occurred",
                        "details": {
                            "error_type": type(e).__name__,
                            "timestamp": datetime.utcnow().isoformat()
                        },
                        "request_id": request_id
                    },
                    headers={"X-Request-ID": request_id}
                )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Debug-level logging of request and response details."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        logger.debug(
            f"Request details: {request.method} {request.url} - "
            f"Query params: {dict(request.query_params)}"
        )

        response = await call_next(request)

        duration = time.time() - start_time
        logger.debug(f"Response details: Status {response.status_code} - Duration: {duration:.3f}s")
        response.headers["X-Response-Time"] = f"{duration:.3f}s"
        return response
