"""
Handler Views.

Text and keyboards shared by command and callback handlers, so that
/status and the "Status" button render the same screen.
"""

from html import escape

from modules.backend.schemas.trading import ControlResult, PortfolioSnapshot, Position, TradingStatus
from modules.telegram.callbacks.common import CallbackAction
from modules.telegram.keyboards.common import button, get_back_keyboard
from modules.telegram.renderer.models import Button, UserPreferences

MAX_CLOSE_BUTTONS = 5


def _money(value: float) -> str:
    return f"${value:,.2f}"


def _signed_money(value: float) -> str:
    sign = "+" if value >= 0 else "-"
    return f"{sign}${abs(value):,.2f}"


def status_view(status: TradingStatus) -> tuple[str, list[list[Button]]]:
    state = "🟢 Active" if status.trading_enabled else "🔴 Paused"
    lines = [
        "<b>📊 Trading Status</b>",
        "",
        f"<b>Trading:</b> {state}",
        f"<b>Daily P&amp;L:</b> {_signed_money(status.daily_pnl)} ({status.daily_pnl_percentage:+.2f}%)",
    ]

    if status.active_strategies:
        lines += ["", "<b>Strategies:</b>"]
        for strategy in status.active_strategies:
            marker = "✅" if strategy.enabled else "⏸"
            lines.append(
                f"{marker} {escape(strategy.name)}: {strategy.performance:+.2f}% "
                f"({strategy.active_positions} positions)"
            )

    toggle = (
        button("⏸ Pause Trading", CallbackAction.CONFIRM_PAUSE)
        if status.trading_enabled
        else button("▶️ Resume Trading", CallbackAction.CONFIRM_RESUME)
    )
    keyboard = [
        [button("🔄 Refresh", CallbackAction.STATUS_REFRESH), button("💼 Positions", CallbackAction.STATUS_POSITIONS)],
        [button("🤖 AI View", CallbackAction.STATUS_AI), toggle],
    ]
    return "\n".join(lines), keyboard


def balance_view(snapshot: PortfolioSnapshot) -> tuple[str, list[list[Button]]]:
    lines = [
        "<b>💰 Account Balance</b>",
        "",
        f"<b>Total:</b> {_money(snapshot.total_balance)}",
        f"<b>Available:</b> {_money(snapshot.available_balance)}",
        f"<b>Today:</b> {_signed_money(snapshot.daily_pnl)} ({snapshot.daily_pnl_percentage:+.2f}%)",
        f"<b>Total return:</b> {snapshot.total_return_percentage:+.2f}%",
    ]
    keyboard = [[
        button("🔄 Refresh", CallbackAction.BALANCE_REFRESH),
        button("📋 Breakdown", CallbackAction.BALANCE_BREAKDOWN),
    ]]
    return "\n".join(lines), keyboard


def breakdown_view(snapshot: PortfolioSnapshot, positions: list[Position]) -> str:
    in_positions = sum(p.size * p.current_price for p in positions)
    lines = [
        "<b>📋 Balance Breakdown</b>",
        "",
        f"<b>Available:</b> {_money(snapshot.available_balance)}",
        f"<b>In positions:</b> {_money(in_positions)}",
    ]
    for position in positions:
        lines.append(f"• {escape(position.symbol)}: {_money(position.size * position.current_price)}")
    return "\n".join(lines)


def positions_view(positions: list[Position]) -> tuple[str, list[list[Button]]]:
    if not positions:
        return "💼 No open positions.", get_back_keyboard(CallbackAction.BACK_TO_STATUS)

    lines = [f"<b>💼 Open Positions ({len(positions)})</b>", ""]
    for position in positions:
        icon = "🟢" if position.unrealized_pnl >= 0 else "🔴"
        lines.append(
            f"{icon} <b>{escape(position.symbol)}</b> {position.side} {position.size:g} "
            f"@ {position.entry_price:,.2f} → {position.current_price:,.2f} "
            f"({_signed_money(position.unrealized_pnl)}, {position.unrealized_pnl_percentage:+.2f}%)"
        )

    keyboard = [
        [button(f"❌ Close {position.symbol}", CallbackAction.CLOSE_POSITION, {"positionId": position.id})]
        for position in positions[:MAX_CLOSE_BUTTONS]
    ]
    keyboard.extend(get_back_keyboard(CallbackAction.BACK_TO_STATUS))
    return "\n".join(lines), keyboard


def control_result_view(action: str, result: ControlResult) -> str:
    action = escape(action)
    if result.success:
        return f"✅ {action} succeeded." + (f"\n{escape(result.message)}" if result.message else "")
    return f"❌ {action} failed." + (f"\n{escape(result.message)}" if result.message else "")


def settings_view(preferences: UserPreferences, subscribed: bool) -> tuple[str, list[list[Button]]]:
    enabled = [
        section_id.replace("_", " ")
        for section_id, pref in sorted(preferences.sections.items(), key=lambda item: item[1].priority)
        if pref.enabled
    ]
    lines = [
        "<b>⚙️ Settings</b>",
        "",
        f"<b>Daily report:</b> {'🟢 On' if subscribed else '🔴 Off'} at {escape(preferences.preferred_time)} "
        f"({escape(preferences.timezone)})",
        f"<b>Emojis:</b> {'on' if preferences.formatting.use_emojis else 'off'}",
        f"<b>Compact mode:</b> {'on' if preferences.formatting.compact_mode else 'off'}",
        f"<b>Sections:</b> {', '.join(enabled) or 'none'}",
    ]
    toggle_text = "🔕 Disable daily report" if subscribed else "🔔 Enable daily report"
    keyboard = [
        [button(toggle_text, CallbackAction.TOGGLE_DAILY_REPORTS)],
        [button("🔔 Notifications", CallbackAction.SETTINGS_NOTIFICATIONS)],
    ]
    return "\n".join(lines), keyboard
