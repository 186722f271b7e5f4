"""
Shared API Middleware
======================

Request context middleware and exception handlers for the FastAPI app.

Each request carries an ``X-Correlation-ID`` (taken from the caller or
generated) that is stamped on every log line written for it and echoed
back on the response.
"""

import time
import uuid
from typing import Callable
from datetime import datetime, timezone

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from orderflow.core import (
    ApplicationException,
    InvalidTransition,
    ResourceNotFoundException,
    SweepInProgress,
    TransitionRefused,
    ValidationException,
)
from orderflow.shared.infrastructure.logging import get_context_logger, get_logger

CORRELATION_HEADER = "X-Correlation-ID"

logger = get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds a correlation ID to the request and logs its outcome and latency."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        request.state.correlation_id = correlation_id
        log = get_context_logger(__name__, correlation_id=correlation_id)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            log.error("Request failed", extra={
                "method": request.method,
                "path": request.url.path,
                "error": str(e),
                "response_time_ms": _elapsed_ms(started),
            })
            raise

        log.info("Request handled", extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "response_time_ms": _elapsed_ms(started),
        })
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


_STATUS_BY_EXCEPTION = (
    (TransitionRefused, status.HTTP_409_CONFLICT),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (SweepInProgress, status.HTTP_409_CONFLICT),
    (ResourceNotFoundException, status.HTTP_404_NOT_FOUND),
    (ValidationException, status.HTTP_422_UNPROCESSABLE_ENTITY),
)


async def application_exception_handler(request: Request, exc: ApplicationException) -> JSONResponse:
    """Map application exceptions to HTTP responses."""
    status_code = status.HTTP_400_BAD_REQUEST
    for exc_type, code in _STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            status_code = code
            break

    logger.warning(
        "Request rejected",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", "unknown"),
            "path": request.url.path,
            "error_type": type(exc).__name__,
            "error_message": exc.message,
            "status_code": status_code,
        }
    )

    return JSONResponse(
        status_code=status_code,
        content={
            "detail": exc.message,
            "error_type": type(exc).__name__,
            "details": exc.details,
        }
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.

    Returns consistent error responses for all exceptions.
    """
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    logger.error(
        "Unhandled exception",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "error_message": str(exc)
        }
    )

    # Don't expose internal details in production
    is_dev = getattr(getattr(request.app.state, "settings", None), "environment", None) == "development"

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "correlation_id": correlation_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "debug_info": str(exc) if is_dev else None
        }
    )
