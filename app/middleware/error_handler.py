"""Exception handlers rendering every failure as one JSON error shape.

Bodies are ``{"error", "message", "path"}`` plus exception-specific fields,
such as eligibility ``reasons`` or ``conflicting_appointment_ids``.
"""

from typing import Any

import structlog
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.exceptions import AppException

logger = structlog.get_logger(__name__)


def error_response(
    request: Request,
    status_code: int,
    error: str,
    message: Any,
    headers: dict[str, str] | None = None,
    **extra: Any,
) -> JSONResponse:
    """Build the JSON error response."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "path": request.url.path,
            **jsonable_encoder(extra),
        },
        headers=headers,
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Handle scheduling and application exceptions.

    Args:
        request: Request object
        exc: Application exception

    Returns:
        JSON error response with the exception's status code
    """
    if exc.status_code >= 500:
        # Failed or half-compensated writes need operator attention
        logger.error(
            "request_mutation_failed",
            error=exc.__class__.__name__,
            message=exc.message,
            path=request.url.path,
            **exc.extra(),
        )
    return error_response(
        request, exc.status_code, exc.__class__.__name__, exc.message, **exc.extra()
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions such as failed authentication."""
    return error_response(
        request,
        exc.status_code,
        "HTTPException",
        exc.detail,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Handle malformed request bodies, paths and queries.

    Returns:
        400 JSON error response listing every invalid field
    """
    return error_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        "ValidationError",
        "Request validation failed",
        details=jsonable_encoder(exc.errors(), exclude={"ctx"}),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected exceptions and hide their details from the client."""
    logger.exception("unhandled_exception", path=request.url.path, error=str(exc))
    return error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "InternalServerError",
        "An unexpected error occurred",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the handlers on ``app``."""
    app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, general_exception_handler)
