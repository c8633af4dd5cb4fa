"""
Startup security checks.

Run from the lifespan before the webhook accepts traffic. Every failing
check is logged and the process refuses to start with all of them listed
in one StartupSecurityError.
"""

from collections.abc import Callable
from typing import Any

from modules.backend.core.config import get_app_config, get_settings
from modules.backend.core.logging import get_logger, log_with_source

logger = get_logger(__name__)


class StartupSecurityError(RuntimeError):
    pass


def _bot_token(app_config: Any, settings: Any) -> list[str]:
    return [] if settings.telegram_bot_token else ["TELEGRAM_BOT_TOKEN is empty"]


def _webhook(app_config: Any, settings: Any) -> list[str]:
    """A registered webhook, or any production deployment, needs HTTPS and a strong secret."""
    telegram = app_config.application.telegram
    production = app_config.application.environment == "production"
    if not (production or telegram.webhook_base_url):
        return []

    problems = []
    if telegram.webhook_base_url and not telegram.webhook_base_url.startswith("https://"):
        problems.append("webhook_base_url must use https; Telegram refuses plain http webhooks")
    secret = settings.telegram_webhook_secret or ""
    min_length = app_config.security.secrets_validation.webhook_secret_min_length
    if len(secret) < min_length:
        problems.append(f"TELEGRAM_WEBHOOK_SECRET is {len(secret)} chars, minimum is {min_length}")
    return problems


def _production(app_config: Any, settings: Any) -> list[str]:
    app = app_config.application
    if app.environment != "production":
        return []
    problems = []
    if app.debug:
        problems.append("debug is true in production environment")
    if not app.telegram.authorized_users:
        problems.append("authorized_users is empty in production; every caller would be authorized")
    return problems


CHECKS: tuple[Callable[[Any, Any], list[str]], ...] = (_bot_token, _webhook, _production)


def run_startup_checks(app_config: Any = None, settings: Any = None) -> None:
    app_config = app_config or get_app_config()
    settings = settings or get_settings()

    errors = [problem for check in CHECKS for problem in check(app_config, settings)]
    for error in errors:
        log_with_source(logger, "internal", "error", "Startup security check failed", check=error)
    if errors:
        raise StartupSecurityError(
            f"Startup blocked: {len(errors)} security check(s) failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    log_with_source(
        logger, "internal", "info", "Startup security checks passed",
        environment=app_config.application.environment, checks_run=len(CHECKS),
    )
