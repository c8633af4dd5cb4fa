"""
Command Handlers.

The default bot commands. Each handler is a plain coroutine taking a
HandlerContext and returning the messages to send; auth, tier, and
cooldown checks happen in the CommandRouter before a handler runs.

    Command       Auth   Cooldown (s)
    /start        no     10
    /help         no     5
    /status       yes    5
    /balance      yes    5
    /pause        yes    30
    /resume       yes    30
    /settings     yes    5
    /report       yes    60
    /subscribe    yes    10
    /unsubscribe  yes    10
"""

import re
from html import escape

from modules.backend.core.exceptions import ApplicationError, ValidationError
from modules.backend.core.logging import get_logger, log_with_source
from modules.telegram.callbacks.common import CallbackAction
from modules.telegram.handlers.context import HandlerContext, reply
from modules.telegram.handlers.router import CommandRegistry, CommandSpec
from modules.telegram.handlers.views import balance_view, settings_view, status_view
from modules.telegram.keyboards.common import get_confirmation_keyboard, get_main_menu
from modules.telegram.renderer.models import Message

logger = get_logger(__name__)

_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):[0-5]\d$")


def _require_scheduler(ctx: HandlerContext):
    if ctx.services.scheduler is None:
        raise ApplicationError("Scheduled reports are not available right now", code="SCHEDULER_UNAVAILABLE")
    return ctx.services.scheduler


def help_text(ctx: HandlerContext) -> str:
    """Command list, limited to what the caller may use."""
    authorized = ctx.services.users.is_authorized(ctx.caller_id)
    lines = ["<b>📚 Available Commands</b>", ""]
    for spec in ctx.services.registry.all():
        if spec.requires_auth and not authorized:
            continue
        lines.append(f"/{spec.name} - {escape(spec.description)}")
    if not authorized:
        lines += ["", "🔒 More commands are available to authorized users."]
    return "\n".join(lines)


async def cmd_start(ctx: HandlerContext) -> list[Message]:
    log_with_source(logger, "telegram", "info", "User started bot", caller_id=ctx.caller_id)
    text = (
        f"👋 Welcome, <b>{escape(ctx.first_name)}</b>!\n\n"
        "I send your daily trading report and let you check and control your account.\n\n"
        "Use /help to see what I can do."
    )
    return reply(text, get_main_menu())


async def cmd_help(ctx: HandlerContext) -> list[Message]:
    return reply(help_text(ctx), get_main_menu())


async def cmd_status(ctx: HandlerContext) -> list[Message]:
    status = await ctx.services.provider.get_trading_status(ctx.caller_id)
    return reply(*status_view(status))


async def cmd_balance(ctx: HandlerContext) -> list[Message]:
    snapshot = await ctx.services.provider.get_portfolio_snapshot(ctx.caller_id)
    return reply(*balance_view(snapshot))


async def cmd_pause(ctx: HandlerContext) -> list[Message]:
    return reply(
        "⏸ <b>Pause trading?</b>\n\nOpen positions stay open; no new trades will be placed.",
        get_confirmation_keyboard(CallbackAction.CONFIRM_PAUSE),
    )


async def cmd_resume(ctx: HandlerContext) -> list[Message]:
    return reply(
        "▶️ <b>Resume trading?</b>\n\nStrategies will start placing trades again.",
        get_confirmation_keyboard(CallbackAction.CONFIRM_RESUME),
    )


async def cmd_settings(ctx: HandlerContext) -> list[Message]:
    subscribed = ctx.services.scheduler is not None and await ctx.services.scheduler.is_subscribed(ctx.caller_id)
    return reply(*settings_view(await ctx.preferences(), subscribed))


async def cmd_report(ctx: HandlerContext) -> list[Message]:
    data = await ctx.services.report_builder.build(ctx.caller_id)
    return ctx.services.renderer.render(data, await ctx.preferences())


async def cmd_subscribe(ctx: HandlerContext) -> list[Message]:
    """/subscribe [HH:MM] [timezone]"""
    scheduler = _require_scheduler(ctx)
    preferences = await ctx.preferences()

    if ctx.args:
        if not _TIME_RE.match(ctx.args[0]):
            raise ValidationError("Usage: /subscribe [HH:MM] [timezone], e.g. /subscribe 08:30 Europe/Berlin")
        preferences.preferred_time = ctx.args[0]
    if len(ctx.args) > 1:
        preferences.timezone = ctx.args[1]

    await scheduler.schedule_report(
        ctx.caller_id,
        ctx.chat_id,
        schedule=f"daily {preferences.preferred_time}",
        timezone=preferences.timezone,
        config={"preferences": preferences.model_dump(mode="json", exclude={"caller_id"})},
    )
    return reply(
        f"🔔 Daily report scheduled at <b>{escape(preferences.preferred_time)}</b> "
        f"({escape(preferences.timezone)}).\nUse /unsubscribe to stop."
    )


async def cmd_unsubscribe(ctx: HandlerContext) -> list[Message]:
    disabled = await _require_scheduler(ctx).cancel_reports(ctx.caller_id)
    if not disabled:
        return reply("ℹ️ You have no active report subscriptions.")
    return reply("🔕 Daily report disabled. Use /subscribe to turn it back on.")


DEFAULT_COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec("start", "Start the bot", cmd_start, requires_auth=False, cooldown_seconds=10),
    CommandSpec("help", "Show available commands", cmd_help, requires_auth=False, cooldown_seconds=5),
    CommandSpec("status", "Trading status", cmd_status, cooldown_seconds=5),
    CommandSpec("balance", "Account balance", cmd_balance, cooldown_seconds=5),
    CommandSpec("pause", "Pause trading", cmd_pause, cooldown_seconds=30),
    CommandSpec("resume", "Resume trading", cmd_resume, cooldown_seconds=30),
    CommandSpec("settings", "Report settings", cmd_settings, cooldown_seconds=5),
    CommandSpec("report", "Get your report now", cmd_report, cooldown_seconds=60),
    CommandSpec("subscribe", "Enable the daily report", cmd_subscribe, cooldown_seconds=10),
    CommandSpec("unsubscribe", "Disable the daily report", cmd_unsubscribe, cooldown_seconds=10),
)

# Commands whose effect is a trading control action
TRADING_COMMANDS = frozenset({"pause", "resume"})


def default_registry() -> CommandRegistry:
    registry = CommandRegistry()
    for spec in DEFAULT_COMMANDS:
        registry.register(spec)
    return registry
