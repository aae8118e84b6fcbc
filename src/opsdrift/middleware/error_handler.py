"""
Basic error handling middleware.
"""

import logging
import traceback
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse

from opsdrift.config.logging_config import reset_request_context, set_request_context
from opsdrift.utils.error_handling import FilterValidationError, OpsDriftError, log_error_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def setup_exception_handlers(app):
    """Setup exception handlers for domain errors and everything else."""

    @app.exception_handler(FilterValidationError)
    async def filter_validation_handler(request: Request, exc: FilterValidationError):
        logger.warning(f"Rejected filter on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": str(exc), **exc.to_dict()},
        )

    @app.exception_handler(OpsDriftError)
    async def domain_exception_handler(request: Request, exc: OpsDriftError):
        log_error_context(
            error_type=type(exc).__name__,
            error_message=str(exc),
            endpoint=f"{request.method} {request.url.path}",
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": str(exc)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        error_context = log_error_context(
            error_type=type(exc).__name__,
            error_message=str(exc),
            endpoint=f"{request.method} {request.url.path}"
        )

        logger.error(f"Full traceback: {traceback.format_exc()}")

        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal server error",
                "error_id": error_context["timestamp"]
            }
        )


async def request_context_middleware(request: Request, call_next):
    """Tag every log record emitted while serving a request with its id."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
    token = set_request_context(request_id)
    try:
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
    finally:
        reset_request_context(token)
