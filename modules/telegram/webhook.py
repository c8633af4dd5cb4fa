"""
Webhook Endpoint for Telegram Bot.

FastAPI router that feeds raw webhook requests through the BotServer's
WebhookGateway and hands valid updates to the server. The server is
resolved from `app.state.bot_server`, set by the application lifespan.

    200 {"ok": true}   update accepted (dispatch errors included)
    400                malformed request
    401                shared secret mismatch
    405                method other than POST
    413                body over the configured limit
    503                bot server not started

Dispatch failures are logged and still acknowledged with 200 so that
Telegram does not redeliver the update.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from modules.backend.core.logging import get_logger, log_with_source
from modules.backend.schemas.base import WebhookAck
from modules.telegram.gateway import GatewayError

logger = get_logger(__name__)


def get_webhook_router(webhook_path: str = "/webhook/telegram") -> APIRouter:
    """
    Create the router serving `webhook_path`.

    Usage:
        app.include_router(get_webhook_router(app_config.application.telegram.webhook_path))
    """
    router = APIRouter(tags=["telegram"])

    @router.post(webhook_path, response_model=WebhookAck)
    async def telegram_webhook(request: Request) -> JSONResponse:
        server = getattr(request.app.state, "bot_server", None)
        if server is None:
            return JSONResponse(status_code=503, content={"ok": False, "error": "bot_unavailable"})

        result = server.gateway.process(await request.body(), request.headers)
        if isinstance(result, GatewayError):
            return JSONResponse(
                status_code=result.status_code,
                content={"ok": False, "error": result.kind.value, "detail": result.detail},
            )

        try:
            await server.handle_update(result)
        except Exception as e:
            log_with_source(
                logger, "telegram", "error", "Update dispatch failed",
                update_id=result.id,
                error=str(e),
                error_type=type(e).__name__,
            )
        return JSONResponse(status_code=200, content=WebhookAck().model_dump())

    @router.get(webhook_path + "/health")
    async def telegram_webhook_health() -> dict:
        """Health check for the Telegram webhook endpoint."""
        return {"status": "healthy", "webhook_path": webhook_path}

    return router
