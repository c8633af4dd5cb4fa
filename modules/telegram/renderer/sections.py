"""
Report Section Generators.

Each generator turns ReportData into one ReportSection of HTML text for
the given regime. Provider strings are escaped; every tag opens and closes
on the same line so that line-boundary chunking never splits markup.

Sections whose data source is unavailable degrade to a short notice
instead of failing the whole report.
"""

from collections.abc import Callable
from html import escape

from modules.telegram.renderer.models import (
    AlertLevel,
    Priority,
    Regime,
    ReportData,
    ReportSection,
)
from modules.telegram.renderer.regimes import RegimeConfig

SectionGenerator = Callable[[ReportData, RegimeConfig], ReportSection]

MAX_LISTED_POSITIONS = 5
MAX_LISTED_ALERTS = 3
MAX_REASONING_POINTS = 3
# Provider text placed inside a tag is cut to this many characters
MAX_INLINE_CHARS = 120


def _inline(text: str, limit: int = MAX_INLINE_CHARS) -> str:
    """Escape provider text for use inside a tag, cut before escaping."""
    if len(text) > limit:
        text = text[:limit - 1].rstrip() + "…"
    return escape(text)


def _signed(value: float, decimals: int = 2) -> str:
    return f"{value:+.{decimals}f}"


def _money(value: float) -> str:
    sign = "+" if value >= 0 else "-"
    return f"{sign}${abs(value):,.2f}"


def _confidence_bar(confidence: float) -> str:
    filled = max(0, min(10, int(confidence * 10)))
    return "█" * filled + "░" * (10 - filled)


def unavailable_section(section_id: str, title: str, source: str) -> ReportSection:
    """Notice shown in place of a section whose provider failed."""
    return ReportSection(
        id=section_id,
        title=title,
        content=f"<i>{escape(source.replace('_', ' ').capitalize())} insights unavailable right now.</i>",
        priority=Priority.LOW,
        emoji="⚪",
    )


def risk_level(data: ReportData) -> str:
    metrics = data.risk_metrics
    if metrics.portfolio_drawdown > 15 or metrics.leverage > 5:
        return "high"
    if metrics.portfolio_drawdown > 8 or metrics.leverage > 3:
        return "medium"
    return "low"


def executive_summary(data: ReportData, config: RegimeConfig) -> ReportSection:
    lines = [f"<b>{escape(config.greeting)}</b>"]

    if data.portfolio is not None:
        p = data.portfolio
        pnl_emoji = "📈" if p.daily_pnl >= 0 else "📉"
        pct = p.daily_pnl_percentage
        if pct > 2:
            mood = "Riding the wave perfectly" if config.regime is Regime.BULL else "Exceptional performance in tough conditions"
        elif pct > 0:
            mood = "Steady gains maintained"
        elif pct > -2:
            mood = "Defensive positioning working" if config.regime is Regime.BEAR else "Minor pullback, staying disciplined"
        else:
            mood = "Challenging conditions require attention"
        lines.append(f"{pnl_emoji} <b>Daily P&amp;L:</b> {_money(p.daily_pnl)} ({_signed(pct)}%)")
        lines.append(f"• {mood}")
    else:
        lines.append("<i>Portfolio snapshot unavailable.</i>")

    if data.ai_analysis is not None:
        ai = data.ai_analysis
        symbol = f" {_inline(ai.recommended_symbol)}" if ai.recommended_symbol else ""
        lines.append(
            f"{config.emojis['action']} <b>AI Confidence:</b> {_confidence_bar(ai.confidence)} "
            f"{ai.confidence * 100:.0f}%"
        )
        lines.append(f"• Next action: <b>{_inline(ai.next_action)}</b>{symbol}")

    lines.append(f"• Market state: {escape(config.summary)}")
    lines.append(f"💡 <b>Strategy focus:</b> {escape(config.action_phrase(data))}")

    return ReportSection(
        id="executive_summary",
        title="Executive Summary",
        content="\n".join(lines),
        priority=Priority.HIGH,
        emoji=config.emojis["performance"],
    )


def performance_metrics(data: ReportData, config: RegimeConfig) -> ReportSection:
    if data.performance is None or data.portfolio is None:
        return unavailable_section("performance_metrics", "Performance Metrics", "performance")

    perf = data.performance
    win_emoji = "🔥" if perf.win_rate >= 70 else "👍" if perf.win_rate >= 50 else "⚠️"
    total_return = data.portfolio.total_return_percentage
    return_emoji = "💚" if total_return >= 0 else "🚨" if total_return <= -10 else "📊"
    metrics = data.risk_metrics

    content = "\n".join([
        f"{win_emoji} <b>Win rate:</b> {perf.win_rate:.1f}% ({perf.profitable}/{perf.total_trades})",
        f"{return_emoji} <b>Total return:</b> {_signed(total_return)}%",
        f"📊 <b>Sharpe ratio:</b> {perf.sharpe_ratio:.2f}",
        f"📉 <b>Max drawdown:</b> {perf.max_drawdown:.2f}%",
        f"⚖️ <b>Risk:</b> {metrics.var95:.2f}% VaR | {metrics.leverage:.1f}x leverage",
    ])
    return ReportSection(
        id="performance_metrics",
        title="Performance Metrics",
        content=content,
        priority=Priority.HIGH,
        emoji="📊",
    )


def ai_insights(data: ReportData, config: RegimeConfig) -> ReportSection:
    if data.ai_analysis is None:
        return unavailable_section("ai_insights", "AI Analysis", "AI")

    ai = data.ai_analysis
    regime_emoji = {"BULL": "🐂", "BEAR": "🐻", "RANGE": "↔️", "VOLATILE": "⚡"}.get(ai.market_regime.value, "❓")
    sentiment_emoji = "😊" if ai.sentiment > 0.3 else "😰" if ai.sentiment < -0.3 else "😐"
    fear_greed_emoji = "🤑" if ai.fear_greed_index > 70 else "😨" if ai.fear_greed_index < 30 else "🤔"
    symbol = f" ({_inline(ai.recommended_symbol)})" if ai.recommended_symbol else ""

    lines = [
        f"{regime_emoji} <b>Market regime:</b> {ai.market_regime.value}",
        f"{sentiment_emoji} <b>Sentiment:</b> {ai.sentiment * 100:.0f}% | {fear_greed_emoji} Fear/Greed: {ai.fear_greed_index}",
        f"🎯 <b>Next action:</b> {_inline(ai.next_action)}{symbol}",
    ]
    if ai.reasoning:
        lines.append("<b>Key insights:</b>")
        lines.extend(
            f"{i}. {escape(reason)}" for i, reason in enumerate(ai.reasoning[:MAX_REASONING_POINTS], start=1)
        )

    return ReportSection(
        id="ai_insights",
        title="AI Analysis",
        content="\n".join(lines),
        priority=Priority.HIGH,
        emoji="🤖",
    )


def active_positions(data: ReportData, config: RegimeConfig) -> ReportSection:
    if "positions" in data.unavailable:
        return unavailable_section("active_positions", "Active Positions", "positions")

    positions = data.positions
    if not positions:
        return ReportSection(
            id="active_positions",
            title="Active Positions",
            content="📭 <b>No active positions</b>\nAll clear, ready for new opportunities.",
            priority=Priority.LOW,
            emoji="📭",
        )

    total = sum(p.unrealized_pnl for p in positions)
    plural = "s" if len(positions) != 1 else ""
    lines = [
        f"<b>{len(positions)} active position{plural}</b>",
        f"{'💚' if total >= 0 else '🔴'} <b>Total unrealized:</b> {_money(total)}",
    ]
    for pos in positions[:MAX_LISTED_POSITIONS]:
        side_emoji = "📈" if pos.side == "LONG" else "📉"
        pnl_emoji = "💚" if pos.unrealized_pnl >= 0 else "🔴"
        lines.append(
            f"{side_emoji} <b>{_inline(pos.symbol)}</b> {pos.side} | size {pos.size:g} | "
            f"{pnl_emoji} {_money(pos.unrealized_pnl)} ({_signed(pos.unrealized_pnl_percentage)}%)"
        )
    if len(positions) > MAX_LISTED_POSITIONS:
        lines.append(f"<i>...and {len(positions) - MAX_LISTED_POSITIONS} more</i>")

    return ReportSection(
        id="active_positions",
        title="Active Positions",
        content="\n".join(lines),
        priority=Priority.HIGH,
        emoji="💼",
    )


def risk_alerts(data: ReportData, config: RegimeConfig) -> ReportSection:
    metrics = data.risk_metrics
    level = risk_level(data)
    critical = [a for a in data.alerts if a.level is AlertLevel.CRITICAL]
    warnings = [a for a in data.alerts if a.level is AlertLevel.WARNING]

    lines: list[str] = []
    if "risk_alerts" in data.unavailable:
        lines.append("<i>Risk alert feed unavailable right now.</i>")
    elif not data.alerts:
        lines.append("✅ <b>All systems normal</b>")

    if critical:
        lines.append("🚨 <b>Critical alerts:</b>")
        lines.extend(f"• {escape(a.message)}" for a in critical[:MAX_LISTED_ALERTS])
    if warnings:
        lines.append("⚠️ <b>Warnings:</b>")
        lines.extend(f"• {escape(a.message)}" for a in warnings[:MAX_LISTED_ALERTS])

    lines.append(f"<b>Risk level:</b> {level.upper()} (score {data.risk_score}/100)")
    lines.append(f"• Drawdown: {metrics.portfolio_drawdown:.2f}% / {metrics.max_drawdown_limit:.2f}%")
    lines.append(f"• Leverage: {metrics.leverage:.1f}x / {metrics.max_leverage:.1f}x")
    lines.append(f"<b>{config.regime.value} guidance:</b> {escape(config.risk_messages[level])}")

    if critical:
        priority, emoji = Priority.HIGH, "🚨"
    elif warnings or level != "low":
        priority, emoji = Priority.MEDIUM, "⚠️"
    else:
        priority, emoji = Priority.LOW, "✅"

    return ReportSection(
        id="risk_alerts",
        title="Risk Alerts" if data.alerts else "Risk Status",
        content="\n".join(lines),
        priority=priority,
        emoji=emoji,
    )


def tomorrow_outlook(data: ReportData, config: RegimeConfig) -> ReportSection:
    top = max(data.market_data, key=lambda q: abs(q.price_change_percent), default=None)
    ai = data.ai_analysis
    focus = (ai.recommended_symbol if ai and ai.recommended_symbol else None) or (top.symbol if top else None)

    lines = [
        f"{config.emojis['trend']} <b>Outlook:</b> {escape(config.summary)}",
        f"🎯 <b>Focus:</b> {escape(focus) if focus else 'Market monitoring'}",
        f"{config.emojis['action']} <b>Strategy:</b> {escape(config.call_to_action)}",
    ]
    if top is not None:
        lines.append(f"• <b>{_inline(top.symbol)}:</b> {_signed(top.price_change_percent)}%")
    if ai is not None and ai.target_price is not None:
        lines.append(f"🎯 Target: ${ai.target_price:,.2f}")
    if ai is not None and ai.stop_loss is not None:
        lines.append(f"🛡️ Stop loss: ${ai.stop_loss:,.2f}")

    return ReportSection(
        id="tomorrow_outlook",
        title="Tomorrow's Outlook",
        content="\n".join(lines),
        priority=Priority.MEDIUM,
        emoji="🔮",
    )


_OPPORTUNITIES = {
    Regime.BULL: ("Look for momentum breakouts above resistance", "Scale into trending positions on pullbacks"),
    Regime.BEAR: ("Short rallies into resistance", "Accumulate quality assets at discounts"),
    Regime.RANGE: ("Buy near support, sell near resistance", "Mean reversion setups"),
    Regime.VOLATILE: ("Quick scalps on volatility spikes", "Market neutral approaches"),
}


def market_opportunities(data: ReportData, config: RegimeConfig) -> ReportSection:
    if config.regime is Regime.EMERGENCY:
        return ReportSection(
            id="market_opportunities",
            title="Opportunities",
            content="🚨 No new opportunities during emergency conditions.\nFocus on capital preservation.",
            priority=Priority.LOW,
            emoji="🚨",
        )

    movers = sorted(data.market_data, key=lambda q: abs(q.price_change_percent), reverse=True)[:3]
    lines = [f"• {idea}" for idea in _OPPORTUNITIES[config.regime]]
    if movers:
        lines.append("<b>Top movers:</b>")
        lines.extend(f"• <b>{_inline(q.symbol)}</b> {_signed(q.price_change_percent)}%" for q in movers)

    return ReportSection(
        id="market_opportunities",
        title="Market Opportunities",
        content="\n".join(lines),
        priority=Priority.MEDIUM,
        emoji=config.emojis["action"],
    )


SECTION_GENERATORS: dict[str, SectionGenerator] = {
    "executive_summary": executive_summary,
    "performance_metrics": performance_metrics,
    "ai_insights": ai_insights,
    "active_positions": active_positions,
    "risk_alerts": risk_alerts,
    "tomorrow_outlook": tomorrow_outlook,
    "market_opportunities": market_opportunities,
}
