"""
Bot Server.

Composition root and lifecycle owner of the bot. It owns every piece of
runtime state (stores, registry, A/B manager, scheduler) and wires the
inbound path:

    WebhookGateway → rate limits → session → router → handler → Sender

Rate limits are applied per policy: every update counts against
"general", commands also against "command", and trading controls also
against "trading". The first exhausted policy rejects the update.

While running, three maintenance tasks tick in the background:

    metrics   log BotServer stats              (60s)
    health    check scheduler and bot API      (300s)
    cleanup   sweep sessions, rate limits, and cooldowns  (3600s)

Usage:
    server = BotServer.from_config(get_app_config(), get_settings(), get_session_factory())
    await server.start()
    ...
    await server.stop()
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from aiogram.exceptions import TelegramAPIError

from modules.backend.core.exceptions import DeliveryError, ValidationError
from modules.backend.core.logging import bound_context, get_logger, log_with_source
from modules.backend.gateway.security.rate_limiter import GatewayRateLimiter, RateLimitResult
from modules.backend.services.providers import HttpTradingProvider
from modules.backend.tasks.reports import ReportBuilder
from modules.backend.tasks.scheduler import ReportScheduler
from modules.telegram.bot import cleanup_bot, create_bot, publish_commands, setup_webhook
from modules.telegram.callbacks.common import decode_callback, resolve_action
from modules.telegram.gateway import Update, WebhookGateway
from modules.telegram.handlers import (
    CALLBACK_HANDLERS,
    PUBLIC_ACTIONS,
    TRADING_ACTIONS,
    TRADING_COMMANDS,
    BotServices,
    CallbackRouter,
    CommandRouter,
    HandlerContext,
    default_registry,
    parse_command,
    reply,
)
from modules.telegram.renderer.ab_testing import ABTestManager
from modules.telegram.renderer.models import Message
from modules.telegram.renderer.renderer import ReportRenderer
from modules.telegram.services.notifications import Sender
from modules.telegram.services.reports import ReportDelivery
from modules.telegram.sessions import SessionStore
from modules.telegram.users import UserStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class MaintenanceIntervals:
    metrics_seconds: float = 60
    health_seconds: float = 300
    cleanup_seconds: float = 3600

    @classmethod
    def from_config(cls, maintenance: Any) -> "MaintenanceIntervals":
        return cls(
            metrics_seconds=maintenance.metrics_interval_seconds,
            health_seconds=maintenance.health_interval_seconds,
            cleanup_seconds=maintenance.cleanup_interval_seconds,
        )


class BotServer:
    """Owns the bot's state and background tasks and handles inbound updates."""

    def __init__(
        self,
        bot: Any,
        services: BotServices,
        gateway: WebhookGateway,
        rate_limiter: GatewayRateLimiter,
        sessions: SessionStore,
        sender: Sender,
        maintenance: MaintenanceIntervals | None = None,
        publish_commands: bool = True,
        webhook_url: str | None = None,
        webhook_secret: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.bot = bot
        self.services = services
        self.gateway = gateway
        self.rate_limiter = rate_limiter
        self.sessions = sessions
        self.sender = sender
        self.maintenance = maintenance or MaintenanceIntervals()
        self.publish_commands = publish_commands
        self.webhook_url = webhook_url
        self.webhook_secret = webhook_secret
        self._clock = clock

        self.command_router = CommandRouter(services.registry, services.users)
        self.callback_router = CallbackRouter(CALLBACK_HANDLERS, services.users, PUBLIC_ACTIONS)
        services.command_router = self.command_router

        self._tasks: list[asyncio.Task] = []
        self._started_at: float | None = None
        self._stats = {"updates_handled": 0, "rate_limited": 0, "delivery_failures": 0}

    @classmethod
    def from_config(
        cls,
        app_config: Any,
        settings: Any,
        session_factory: Any,
        bot: Any = None,
        provider: Any = None,
    ) -> "BotServer":
        """Build the server and everything it owns from configuration."""
        telegram = app_config.application.telegram
        security = app_config.security

        bot = bot or create_bot(settings.telegram_bot_token)
        provider = provider or HttpTradingProvider.from_config(app_config.providers, settings.data_provider_api_key)
        ab_manager = ABTestManager.from_config(app_config.renderer.ab_testing)
        renderer = ReportRenderer.from_config(app_config.renderer, ab_manager)
        sender = Sender(bot, broadcast_delay_seconds=telegram.broadcast_delay_seconds)
        report_builder = ReportBuilder(provider)

        scheduler = None
        if app_config.scheduler.enabled:
            scheduler = ReportScheduler.from_config(
                app_config.scheduler,
                session_factory,
                ReportDelivery(report_builder, renderer, sender),
            )

        services = BotServices(
            provider=provider,
            control=provider,
            renderer=renderer,
            report_builder=report_builder,
            users=UserStore.from_config(telegram),
            ab_manager=ab_manager,
            registry=default_registry(),
            scheduler=scheduler,
        )

        webhook_url = None
        if telegram.webhook_base_url:
            webhook_url = f"{telegram.webhook_base_url.rstrip('/')}{telegram.webhook_path}"

        return cls(
            bot=bot,
            services=services,
            gateway=WebhookGateway(
                secret=settings.telegram_webhook_secret,
                secret_header=security.webhook.secret_header,
                max_body_bytes=security.webhook.max_body_bytes,
            ),
            rate_limiter=GatewayRateLimiter.from_config(security.rate_limiting),
            sessions=SessionStore(ttl=timedelta(hours=telegram.session_ttl_hours)),
            sender=sender,
            maintenance=MaintenanceIntervals.from_config(app_config.application.maintenance),
            publish_commands=telegram.publish_commands,
            webhook_url=webhook_url,
            webhook_secret=settings.telegram_webhook_secret,
        )

    # -------------------------------------------------------------------------
    # Inbound updates
    # -------------------------------------------------------------------------

    async def handle_update(self, update: Update) -> list[Message]:
        """
        Rate limit, route, and answer one update.

        Returns:
            The messages produced for the caller (empty if none)
        """
        with bound_context(update_id=update.id, caller_id=update.caller_id, update_kind=update.kind):
            self._stats["updates_handled"] += 1

            limited = await self._rate_limit(update)
            if limited is not None:
                self._stats["rate_limited"] += 1
                text = f"⏳ Too many requests. Please wait {limited.retry_after_seconds} seconds."
                if update.callback is not None:
                    await self.sender.answer_callback(update.callback.callback_id, text, show_alert=True)
                    return []
                messages = reply(text)
                await self._deliver(update, messages)
                return messages

            async with self.sessions.open(update.caller_id) as session:
                ctx = HandlerContext(update=update, session=session, services=self.services)
                if update.message is not None:
                    messages = await self.command_router.dispatch(ctx)
                else:
                    messages = await self.callback_router.dispatch(ctx)
                    await self.sender.answer_callback(update.callback.callback_id, ctx.notice)

                message_ids = await self._deliver(update, messages)
                if message_ids:
                    session.last_message_id = message_ids[-1]

        return messages

    def _policies_for(self, update: Update) -> list[str]:
        policies = ["general"]
        if update.message is not None:
            parsed = parse_command(update.message.text)
            if parsed is not None:
                policies.append("command")
                if parsed[0] in TRADING_COMMANDS:
                    policies.append("trading")
            return policies

        try:
            action = resolve_action(decode_callback(update.callback.data).action)
        except ValidationError:
            action = None
        if action in TRADING_ACTIONS:
            policies.append("trading")
        return policies

    async def _rate_limit(self, update: Update) -> RateLimitResult | None:
        """The first rejecting policy's result, or None when every policy admits."""
        for policy in self._policies_for(update):
            result = await self.rate_limiter.check(update.caller_id, policy)
            if not result.allowed:
                log_with_source(
                    logger, "telegram", "warning", "Update rate limited",
                    policy=policy, retry_after=result.retry_after_seconds,
                )
                return result
        return None

    async def _deliver(self, update: Update, messages: list[Message]) -> list[int]:
        if not messages:
            return []
        try:
            return await self.sender.send(update.chat_id, messages)
        except DeliveryError as e:
            self._stats["delivery_failures"] += 1
            log_with_source(logger, "telegram", "error", "Reply delivery failed", chat_id=e.chat_id, error=e.message)
            return []

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        self._started_at = self._clock()

        if self.publish_commands:
            try:
                await publish_commands(self.bot, self.services.registry)
            except TelegramAPIError as e:
                log_with_source(logger, "telegram", "warning", "Command menu not published", error=str(e))

        if self.webhook_url:
            try:
                await setup_webhook(self.bot, self.webhook_url, self.webhook_secret or "")
            except TelegramAPIError as e:
                log_with_source(logger, "telegram", "error", "Webhook registration failed", error=str(e))

        if self.services.scheduler is not None:
            self.services.scheduler.start()

        self._tasks = [
            self._spawn("metrics", self.maintenance.metrics_seconds, self.log_metrics),
            self._spawn("health", self.maintenance.health_seconds, self.check_health),
            self._spawn("cleanup", self.maintenance.cleanup_seconds, self.cleanup),
        ]
        log_with_source(logger, "telegram", "info", "Bot server started")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        if self.services.scheduler is not None:
            await self.services.scheduler.stop()

        aclose = getattr(self.services.provider, "aclose", None)
        if aclose is not None:
            await aclose()
        await cleanup_bot(self.bot)
        log_with_source(logger, "telegram", "info", "Bot server stopped")

    @property
    def is_running(self) -> bool:
        return bool(self._tasks) and not all(task.done() for task in self._tasks)

    def _spawn(self, name: str, interval: float, job: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        async def loop() -> None:
            while True:
                await asyncio.sleep(interval)
                try:
                    await job()
                except Exception as e:
                    log_with_source(
                        logger, "telegram", "error", "Maintenance task failed",
                        task=name, error=str(e), error_type=type(e).__name__,
                    )

        return asyncio.create_task(loop(), name=f"bot-{name}")

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def log_metrics(self) -> None:
        log_with_source(logger, "telegram", "info", "Bot metrics", **self.stats())

    async def check_health(self) -> dict[str, Any]:
        health: dict[str, Any] = {"bot_api": True, "scheduler": None}

        try:
            await self.bot.get_me()
        except TelegramAPIError as e:
            health["bot_api"] = False
            log_with_source(logger, "telegram", "warning", "Bot API unreachable", error=str(e))

        scheduler = self.services.scheduler
        if scheduler is not None:
            if not scheduler.is_running:
                log_with_source(logger, "tasks", "warning", "Report scheduler not running, restarting")
                scheduler.start()
            health["scheduler"] = scheduler.is_running

        log_with_source(logger, "telegram", "debug", "Health check completed", **health)
        return health

    async def cleanup(self) -> dict[str, int]:
        evicted = {
            "sessions": await self.sessions.sweep(),
            "rate_limits": await self.rate_limiter.sweep(),
            "cooldowns": await self.command_router.sweep(),
        }
        log_with_source(logger, "telegram", "info", "Cleanup completed", **evicted)
        return evicted

    def stats(self) -> dict[str, Any]:
        uptime = self._clock() - self._started_at if self._started_at is not None else 0.0
        scheduler = self.services.scheduler
        return {
            "uptime_seconds": round(uptime, 1),
            **self._stats,
            **self.command_router.stats(),
            **self.callback_router.stats(),
            "active_users": self.sessions.active_count(),
            "sessions": self.sessions.active_count(),
            "rate_limits": self.rate_limiter.stats(),
            "delivery": self.sender.stats(),
            "scheduler": scheduler.stats() if scheduler is not None else None,
        }
