"""
ASGI application.

Serves the Telegram webhook and the health endpoints. The lifespan owns
the BotServer: it is built from configuration, started, published as
``app.state.bot_server`` and stopped again on shutdown. Outside the
lifespan (tests, ``create_app()`` alone) the slot is None and the
webhook answers 503.

Run with ``uvicorn modules.backend.main:app``.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from modules.backend.api import health
from modules.backend.core.config import get_app_config, get_settings
from modules.backend.core.database import create_tables, dispose_engine, get_session_factory
from modules.backend.core.exception_handlers import register_exception_handlers
from modules.backend.core.logging import get_logger, log_with_source, setup_logging
from modules.backend.core.middleware import RequestContextMiddleware
from modules.telegram.webhook import get_webhook_router

logger = get_logger(__name__)

_app: FastAPI | None = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    from modules.backend.gateway.security.startup_checks import run_startup_checks
    from modules.telegram.server import BotServer

    config = get_app_config()
    setup_logging(level=config.logging.level)
    run_startup_checks()
    log_with_source(
        logger, "internal", "info", "Bot service starting",
        app_name=config.application.name, env=config.application.environment,
    )

    await create_tables()
    server = BotServer.from_config(config, get_settings(), get_session_factory())
    await server.start()
    app.state.bot_server = server
    try:
        yield
    finally:
        log_with_source(logger, "internal", "info", "Bot service stopping")
        app.state.bot_server = None
        await server.stop()
        await dispose_engine()


def create_app() -> FastAPI:
    settings = get_app_config().application
    webhook_path = settings.telegram.webhook_path

    app = FastAPI(
        title=settings.name,
        description=settings.description,
        version=settings.version,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.bot_server = None

    app.add_middleware(RequestContextMiddleware, webhook_prefix=webhook_path)
    register_exception_handlers(app)
    app.include_router(health.router, tags=["health"])
    app.include_router(get_webhook_router(webhook_path))
    return app


def get_app() -> FastAPI:
    """Build the app on first use so importing this module never reads configuration."""
    global _app
    if _app is None:
        _app = create_app()
    return _app


def __getattr__(name: str) -> FastAPI:
    if name == "app":
        return get_app()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
