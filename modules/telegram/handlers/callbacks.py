"""
Callback Handlers.

One handler per CallbackAction, wired up in CALLBACK_HANDLERS. The
CallbackRouter refuses to start if an action is missing from the table.

Report buttons (SHOW_*) also count as engagement for every running A/B
test the caller takes part in.
"""

from dataclasses import replace
from functools import wraps

from modules.backend.core.exceptions import NotFoundError, ValidationError
from modules.backend.core.logging import get_logger, log_with_source
from modules.backend.schemas.trading import ReportData
from modules.telegram.callbacks.common import CallbackAction
from modules.telegram.gateway import InboundMessage, Update
from modules.telegram.handlers.commands import cmd_report, help_text
from modules.telegram.handlers.context import HandlerContext, reply
from modules.telegram.handlers.router import Handler
from modules.telegram.handlers.views import (
    balance_view,
    breakdown_view,
    control_result_view,
    positions_view,
    settings_view,
    status_view,
)
from modules.telegram.keyboards.common import (
    get_back_keyboard,
    get_confirmation_keyboard,
    get_main_menu,
    get_recovery_menu,
)
from modules.telegram.renderer.ab_testing import ABTestEvent
from modules.telegram.renderer.models import Message

logger = get_logger(__name__)

EMERGENCY_CONFIRMED = "confirmed"

# Reachable without authorization
PUBLIC_ACTIONS = frozenset({
    CallbackAction.HELP,
    CallbackAction.HELP_COMMANDS,
    CallbackAction.BACK_TO_HELP,
})

# Trading control actions, rate limited with the trading policy
TRADING_ACTIONS = frozenset({
    CallbackAction.CONFIRM_PAUSE,
    CallbackAction.CONFIRM_RESUME,
    CallbackAction.CLOSE_POSITION,
    CallbackAction.EMERGENCY_STOP,
})


def record_engagement(ctx: HandlerContext) -> None:
    """Count a report button press for each running test."""
    manager = ctx.services.ab_manager
    for test in manager.running_tests():
        variant = manager.assignment(ctx.caller_id, test.id)
        try:
            manager.record_event(test.id, variant.id, ABTestEvent.ENGAGED)
        except NotFoundError:
            continue


def engaged(handler: Handler) -> Handler:
    @wraps(handler)
    async def wrapper(ctx: HandlerContext) -> list[Message]:
        record_engagement(ctx)
        return await handler(ctx)

    return wrapper


# =============================================================================
# Views
# =============================================================================


async def show_status(ctx: HandlerContext) -> list[Message]:
    status = await ctx.services.provider.get_trading_status(ctx.caller_id)
    return reply(*status_view(status))


async def show_positions(ctx: HandlerContext) -> list[Message]:
    positions = await ctx.services.provider.get_positions(ctx.caller_id)
    return reply(*positions_view(positions))


async def show_ai(ctx: HandlerContext) -> list[Message]:
    data = ReportData(caller_id=ctx.caller_id, ai_analysis=await ctx.services.provider.get_ai_analysis())
    messages = ctx.services.renderer.render_section("ai_insights", data)
    messages[-1].reply_markup = get_back_keyboard(CallbackAction.BACK_TO_STATUS)
    return messages


async def show_balance(ctx: HandlerContext) -> list[Message]:
    snapshot = await ctx.services.provider.get_portfolio_snapshot(ctx.caller_id)
    return reply(*balance_view(snapshot))


async def show_breakdown(ctx: HandlerContext) -> list[Message]:
    provider = ctx.services.provider
    snapshot = await provider.get_portfolio_snapshot(ctx.caller_id)
    positions = await provider.get_positions(ctx.caller_id)
    return reply(breakdown_view(snapshot, positions), get_back_keyboard(CallbackAction.BACK_TO_BALANCE))


async def show_settings(ctx: HandlerContext) -> list[Message]:
    scheduler = ctx.services.scheduler
    subscribed = scheduler is not None and await scheduler.is_subscribed(ctx.caller_id)
    return reply(*settings_view(await ctx.preferences(), subscribed))


async def show_notifications(ctx: HandlerContext) -> list[Message]:
    preferences = await ctx.preferences()
    text = (
        "<b>🔔 Notifications</b>\n\n"
        f"Reports mention P&amp;L moves above {preferences.thresholds.significant_pnl_change:g}% "
        f"and AI calls above {preferences.thresholds.minimum_confidence:.0%} confidence.\n"
        "Critical risk alerts are always included."
    )
    return reply(text, get_back_keyboard(CallbackAction.BACK_TO_SETTINGS))


async def show_help(ctx: HandlerContext) -> list[Message]:
    return reply(help_text(ctx), get_main_menu())


async def show_market(ctx: HandlerContext) -> list[Message]:
    provider = ctx.services.provider
    data = ReportData(
        caller_id=ctx.caller_id,
        ai_analysis=await provider.get_ai_analysis(),
        market_data=await provider.get_market_data(),
    )
    messages = ctx.services.renderer.render_section("market_opportunities", data)
    messages[-1].reply_markup = get_back_keyboard(CallbackAction.BACK_TO_STATUS)
    return messages


async def show_risk(ctx: HandlerContext) -> list[Message]:
    risk = await ctx.services.provider.get_risk_alerts(ctx.caller_id)
    data = ReportData(caller_id=ctx.caller_id, risk_metrics=risk.metrics, alerts=risk.alerts)
    messages = ctx.services.renderer.render_section("risk_alerts", data)
    messages[-1].reply_markup = [
        *get_confirmation_keyboard(CallbackAction.CONFIRM_PAUSE),
        *get_back_keyboard(CallbackAction.BACK_TO_STATUS),
    ]
    return messages


# =============================================================================
# Trading controls
# =============================================================================


async def confirm_pause(ctx: HandlerContext) -> list[Message]:
    result = await ctx.services.control.pause_trading(ctx.caller_id)
    log_with_source(logger, "telegram", "info", "Trading paused", caller_id=ctx.caller_id, success=result.success)
    ctx.notice = "⏸ Paused" if result.success else "Pause failed"
    return reply(control_result_view("Pause trading", result))


async def confirm_resume(ctx: HandlerContext) -> list[Message]:
    result = await ctx.services.control.resume_trading(ctx.caller_id)
    log_with_source(logger, "telegram", "info", "Trading resumed", caller_id=ctx.caller_id, success=result.success)
    ctx.notice = "▶️ Resumed" if result.success else "Resume failed"
    return reply(control_result_view("Resume trading", result))


async def cancel_control(ctx: HandlerContext) -> list[Message]:
    ctx.notice = "Cancelled"
    return reply("❌ Action cancelled.")


async def close_position(ctx: HandlerContext) -> list[Message]:
    position_id = ctx.payload.ref if ctx.payload is not None else None
    if position_id is None:
        raise ValidationError("No position selected")

    result = await ctx.services.control.close_position(ctx.caller_id, position_id)
    log_with_source(
        logger, "telegram", "info", "Position close requested",
        caller_id=ctx.caller_id, position_id=position_id, success=result.success,
    )
    ctx.notice = "Position closed" if result.success else "Close failed"
    return reply(control_result_view(f"Close position {position_id}", result))


async def emergency(ctx: HandlerContext) -> list[Message]:
    return reply(
        "🚨 <b>Emergency stop</b>\n\nThis closes all positions and halts every strategy. Continue?",
        get_confirmation_keyboard(CallbackAction.EMERGENCY_STOP, {"id": EMERGENCY_CONFIRMED}),
    )


async def emergency_stop(ctx: HandlerContext) -> list[Message]:
    if ctx.data.get("id") != EMERGENCY_CONFIRMED:
        return await emergency(ctx)

    result = await ctx.services.control.emergency_stop(ctx.caller_id)
    log_with_source(
        logger, "telegram", "warning", "Emergency stop executed",
        caller_id=ctx.caller_id, success=result.success,
    )
    ctx.notice = "🚨 Stopped" if result.success else "Emergency stop failed"
    return reply(control_result_view("Emergency stop", result))


# =============================================================================
# Settings
# =============================================================================


async def toggle_daily_reports(ctx: HandlerContext) -> list[Message]:
    scheduler = ctx.services.scheduler
    if scheduler is None:
        ctx.notice = "Unavailable"
        return reply("⚠️ Scheduled reports are not available right now.")

    if await scheduler.is_subscribed(ctx.caller_id):
        await scheduler.cancel_reports(ctx.caller_id)
        ctx.notice = "🔕 Daily report off"
    else:
        preferences = await ctx.preferences()
        await scheduler.schedule_report(
            ctx.caller_id,
            ctx.chat_id,
            schedule=f"daily {preferences.preferred_time}",
            timezone=preferences.timezone,
        )
        ctx.notice = "🔔 Daily report on"
    return await show_settings(ctx)


# =============================================================================
# Recovery
# =============================================================================


async def retry_last_command(ctx: HandlerContext) -> list[Message]:
    """Re-dispatch the caller's last command through the command router."""
    last_command = ctx.session.data.get("last_command")
    router = ctx.services.command_router
    if not last_command or router is None:
        return reply("Nothing to retry. Where would you like to go?", get_recovery_menu())

    update = Update(
        id=ctx.update.id,
        message=InboundMessage(
            message_id=0,
            caller_id=ctx.caller_id,
            chat_id=ctx.chat_id,
            text=last_command,
        ),
    )
    return await router.dispatch(replace(ctx, update=update, payload=None, args=[]))


async def request_report(ctx: HandlerContext) -> list[Message]:
    """Report buttons count against the /report cooldown."""
    router = ctx.services.command_router
    if router is None:
        return await cmd_report(ctx)
    return await router.invoke(ctx, "report")


async def refresh_data(ctx: HandlerContext) -> list[Message]:
    ctx.notice = "🔄 Refreshed"
    return await show_status(ctx)


CALLBACK_HANDLERS: dict[CallbackAction, Handler] = {
    CallbackAction.STATUS: show_status,
    CallbackAction.STATUS_REFRESH: show_status,
    CallbackAction.STATUS_POSITIONS: show_positions,
    CallbackAction.STATUS_AI: show_ai,
    CallbackAction.BALANCE: show_balance,
    CallbackAction.BALANCE_REFRESH: show_balance,
    CallbackAction.BALANCE_BREAKDOWN: show_breakdown,
    CallbackAction.CONFIRM_PAUSE: confirm_pause,
    CallbackAction.CONFIRM_RESUME: confirm_resume,
    CallbackAction.CANCEL_CONTROL: cancel_control,
    CallbackAction.CLOSE_POSITION: close_position,
    CallbackAction.SETTINGS: show_settings,
    CallbackAction.SETTINGS_NOTIFICATIONS: show_notifications,
    CallbackAction.TOGGLE_DAILY_REPORTS: toggle_daily_reports,
    CallbackAction.HELP: show_help,
    CallbackAction.HELP_COMMANDS: show_help,
    CallbackAction.BACK_TO_STATUS: show_status,
    CallbackAction.BACK_TO_BALANCE: show_balance,
    CallbackAction.BACK_TO_SETTINGS: show_settings,
    CallbackAction.BACK_TO_HELP: show_help,
    CallbackAction.SHOW_ANALYTICS: engaged(request_report),
    CallbackAction.SHOW_POSITIONS: engaged(show_positions),
    CallbackAction.SHOW_SETTINGS: engaged(show_settings),
    CallbackAction.SHOW_MARKET_ANALYSIS: engaged(show_market),
    CallbackAction.SHOW_FULL_REPORT: engaged(request_report),
    CallbackAction.MARKET_SCAN: show_market,
    CallbackAction.REDUCE_RISK: show_risk,
    CallbackAction.EMERGENCY: emergency,
    CallbackAction.EMERGENCY_STOP: emergency_stop,
    CallbackAction.EMERGENCY_RISK_REVIEW: show_risk,
    CallbackAction.RETRY_LAST_COMMAND: retry_last_command,
    CallbackAction.REFRESH_DATA: refresh_data,
}
