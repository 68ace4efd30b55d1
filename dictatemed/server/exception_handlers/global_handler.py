"""
Exception Handlers for FastAPI Application.

``AppError`` subclasses become ``{"error": ..., "code": ...}`` responses with
their own status code. Upstream failures become 502. Anything else is logged
with an error ID, request context and traceback and returned as a generic
500 so no internal detail leaks to clients.
"""

import traceback
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dictatemed.core.errors import AppError, ExternalServiceError
from dictatemed.core.logging_config import get_logger
from dictatemed.core.monitoring import log_error

logger = get_logger(__name__)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """
    Convert a domain error into its HTTP response.

    401 and 403 log at warning, 404 at info and 400 at warning.
    """
    context = {"method": request.method, "path": request.url.path, "code": exc.code}
    message = f"{exc.status_code} {request.method} {request.url.path}: {exc.message}"
    if exc.status_code == 404:
        logger.info(message, extra=context)
    elif exc.status_code < 500:
        logger.warning(message, extra=context)
    else:
        logger.error(message, extra=context)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def external_service_error_handler(request: Request, exc: ExternalServiceError) -> JSONResponse:
    logger.error(
        f"Upstream service {exc.service} failed in {request.method} {request.url.path}: {exc}",
        extra={"service": exc.service, "retryable": exc.retryable},
    )
    log_error("external_service", str(exc), {"service": exc.service, "path": request.url.path})
    return JSONResponse(
        status_code=502,
        content={"error": f"Upstream service unavailable: {exc.service}", "code": "EXTERNAL_SERVICE_ERROR"},
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler to log detailed error information.

    This handler is called for any unhandled exception in the application.
    It logs the full error context and returns a JSON response with an error ID
    that clients can use to reference the error when reporting issues.

    Args:
        request: The HTTP request that caused the exception
        exc: The exception that was raised

    Returns:
        JSONResponse with error details and error ID
    """
    error_id = str(uuid.uuid4())

    logger.error(
        f"Unhandled exception [{error_id}] in {request.method} {request.url.path}: {exc}",
        exc_info=True,
        extra={
            "error_id": error_id,
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
            "client": request.client.host if request.client else "unknown",
            "error_type": type(exc).__name__,
            "traceback": traceback.format_exc(),
        },
    )
    log_error(type(exc).__name__, str(exc), {"error_id": error_id, "path": request.url.path})

    return JSONResponse(
        status_code=500,
        content={
            "error": "An unexpected error occurred",
            "code": "INTERNAL_ERROR",
            "error_id": error_id,
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Register exception handlers with the FastAPI application.

    Args:
        app: The FastAPI application instance
    """
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(ExternalServiceError, external_service_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    logger.debug("Exception handlers registered successfully")
