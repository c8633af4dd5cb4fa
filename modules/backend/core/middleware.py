"""
Request Context Middleware.

Tags every HTTP request with an id, a log source and its duration, and
binds them to structlog so webhook and health records can be correlated.

Headers:
    X-Request-ID     propagated, or generated when absent
    X-Frontend-ID    explicit source (web, telegram, internal); optional
    X-Response-Time  added to every response, in milliseconds

Requests carrying Telegram's secret-token header, or hitting a path under
`webhook_prefix`, are attributed to the "telegram" source.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from modules.backend.core.logging import VALID_SOURCES, get_logger

logger = get_logger(__name__)

TELEGRAM_SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


def resolve_source(request: Request, webhook_prefix: str) -> str:
    source = request.headers.get("X-Frontend-ID", "").lower()
    if source in VALID_SOURCES:
        return source
    if TELEGRAM_SECRET_HEADER in request.headers or request.url.path.startswith(webhook_prefix):
        return "telegram"
    return "web"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Binds request_id, source, method and path to every record logged while
    the request is handled, and exposes them on `request.state`.
    """

    def __init__(self, app: ASGIApp, webhook_prefix: str = "/webhook") -> None:
        super().__init__(app)
        self.webhook_prefix = webhook_prefix

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        source = resolve_source(request, self.webhook_prefix)
        started = time.perf_counter()

        request.state.request_id = request_id
        request.state.source = source

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            source=source,
            method=request.method,
            path=request.url.path,
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "Request failed with exception",
                extra={
                    "duration_ms": int((time.perf_counter() - started) * 1000),
                    "error_type": type(exc).__name__,
                },
            )
            structlog.contextvars.clear_contextvars()
            raise

        duration_ms = int((time.perf_counter() - started) * 1000)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms}ms"
        logger.debug(
            "Request completed",
            extra={"status_code": response.status_code, "duration_ms": duration_ms},
        )
        structlog.contextvars.clear_contextvars()
        return response
