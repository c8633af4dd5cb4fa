"""
Exception Handlers.

Every error leaving the HTTP surface (webhook, health probes) is answered
with the ErrorResponse envelope. Telegram never reads these bodies; they
exist for operators and probes, so internals stay out of them.

Usage:
    from modules.backend.core.exception_handlers import register_exception_handlers

    app = FastAPI()
    register_exception_handlers(app)
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from modules.backend.core.exceptions import (
    ApplicationError,
    AuthenticationError,
    DatabaseError,
    DataUnavailable,
    DeliveryError,
    NotFoundError,
    PermissionDenied,
    RateLimitExceeded,
    RenderError,
    SchedulingError,
    ValidationError,
)
from modules.backend.core.logging import get_logger, log_with_source
from modules.backend.schemas.base import ErrorDetail, ErrorResponse, ResponseMetadata

logger = get_logger(__name__)

EXCEPTION_STATUS_MAP: dict[type[ApplicationError], int] = {
    NotFoundError: 404,
    ValidationError: 400,
    AuthenticationError: 401,
    PermissionDenied: 403,
    RateLimitExceeded: 429,
    RenderError: 500,
    SchedulingError: 500,
    DeliveryError: 502,
    DataUnavailable: 503,
    DatabaseError: 503,
}


def status_for(exc: ApplicationError) -> int:
    """Resolve the HTTP status, honouring subclasses of mapped errors."""
    for cls in type(exc).__mro__:
        if cls in EXCEPTION_STATUS_MAP:
            return EXCEPTION_STATUS_MAP[cls]
    return 500


def _get_request_id(request: Request) -> str | None:
    if hasattr(request.state, "request_id"):
        return request.state.request_id
    return request.headers.get("x-request-id")


def _public_details(exc: ApplicationError) -> dict[str, Any] | None:
    # Chat ids and delivery targets are never echoed back.
    if isinstance(exc, ValidationError):
        return exc.details or None
    if isinstance(exc, RenderError) and exc.errors:
        return {"render_errors": exc.errors}
    if isinstance(exc, DataUnavailable):
        return {"provider": exc.provider}
    return None


def _error_response(
    request: Request,
    status_code: int,
    detail: ErrorDetail,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    envelope = ErrorResponse(
        error=detail,
        metadata=ResponseMetadata(request_id=_get_request_id(request)),
    )
    return JSONResponse(
        status_code=status_code,
        content=envelope.model_dump(mode="json"),
        headers=headers,
    )


async def application_error_handler(request: Request, exc: ApplicationError) -> JSONResponse:
    """
    Answer an ApplicationError with its mapped status.

    5xx outcomes log at error level, everything else at warning.
    Rate-limit rejections carry a Retry-After header.
    """
    status_code = status_for(exc)
    log_with_source(
        logger,
        "web",
        "error" if status_code >= 500 else "warning",
        "Request failed",
        code=exc.code,
        error=exc.message,
        status=status_code,
        path=request.url.path,
        method=request.method,
        request_id=_get_request_id(request),
    )

    headers = None
    if isinstance(exc, RateLimitExceeded) and exc.retry_after_seconds > 0:
        headers = {"Retry-After": str(exc.retry_after_seconds)}

    detail = ErrorDetail(code=exc.code, message=exc.message, details=_public_details(exc))
    return _error_response(request, status_code, detail, headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Flatten pydantic's error list into field/message/type triples."""
    problems = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())),
            "message": err.get("msg", "Validation error"),
            "type": err.get("type", "unknown"),
        }
        for err in exc.errors()
    ]
    log_with_source(
        logger,
        "web",
        "warning",
        "Request validation failed",
        path=request.url.path,
        error_count=len(problems),
    )

    detail = ErrorDetail(
        code="VAL_REQUEST_INVALID",
        message="Request validation failed",
        details={"validation_errors": problems},
    )
    return _error_response(request, 422, detail)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Last-resort handler.

    The traceback goes to the log; the caller only learns that
    something failed.
    """
    logger.exception(
        "Unhandled exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "exception_type": type(exc).__name__,
            "request_id": _get_request_id(request),
        },
    )
    detail = ErrorDetail(code="SYS_INTERNAL_ERROR", message="An unexpected error occurred")
    return _error_response(request, 500, detail)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApplicationError, application_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
