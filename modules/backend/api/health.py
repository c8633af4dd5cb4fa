"""
Health endpoints.

    /health         liveness, never touches a dependency
    /health/ready   job store reachable and bot server running
    /health/bot     BotServer counters for operators

A bot server that was never configured (e.g. the API runs without a
token) is reported as ``not_configured`` and does not fail readiness.
"""

import asyncio
import time
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from modules.backend.core.logging import get_logger, log_with_source
from modules.backend.core.utils import utc_now

router = APIRouter()
logger = get_logger(__name__)


async def check_database() -> dict[str, Any]:
    from sqlalchemy import text

    from modules.backend.core.database import get_session_factory

    started = time.perf_counter()
    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        log_with_source(logger, "web", "warning", "Job store health check failed", error=str(e))
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy", "latency_ms": int((time.perf_counter() - started) * 1000)}


def check_bot_server(request: Request) -> dict[str, Any]:
    server = getattr(request.app.state, "bot_server", None)
    if server is None:
        return {"status": "not_configured"}
    return {"status": "healthy" if server.is_running else "unhealthy"}


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/health/ready")
async def readiness_check(request: Request) -> dict[str, Any]:
    """503 when any check reports ``unhealthy``; the body lists every check either way."""
    from modules.backend.core.config import get_app_config

    timeout = get_app_config().application.timeouts.external_api
    try:
        async with asyncio.timeout(timeout):
            database = await check_database()
    except TimeoutError:
        database = {"status": "unhealthy", "error": f"timed out after {timeout}s"}

    checks = {"database": database, "bot": check_bot_server(request)}
    failing = sorted(name for name, check in checks.items() if check["status"] == "unhealthy")
    body = {
        "status": "unhealthy" if failing else "healthy",
        "checks": checks,
        "timestamp": utc_now().isoformat(),
    }
    if failing:
        log_with_source(logger, "web", "warning", "Readiness check failed", failing=failing)
        raise HTTPException(status_code=503, detail=body)
    return body


@router.get("/health/bot")
async def bot_health(request: Request) -> dict[str, Any]:
    """Uptime, command popularity, active users, rate-limit and scheduler state."""
    server = getattr(request.app.state, "bot_server", None)
    if server is None:
        raise HTTPException(status_code=503, detail={"status": "not_configured"})
    return {
        "status": "healthy" if server.is_running else "unhealthy",
        "stats": server.stats(),
        "timestamp": utc_now().isoformat(),
    }
