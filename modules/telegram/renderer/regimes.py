"""
Market Regimes.

Per-regime tone, messaging, and risk guidance, plus the selection rule
that decides which regime a report is rendered for.

Selection order:
    1. EMERGENCY when the drawdown reaches the emergency threshold, any
       alert is CRITICAL, or the absolute daily move exceeds its limit
    2. VOLATILE when the volatility score exceeds its threshold
    3. the regime reported by AI analysis
    4. RANGE when no analysis is available
"""

from dataclasses import dataclass
from typing import Any

from modules.telegram.renderer.models import Regime, ReportData


@dataclass(frozen=True)
class RegimeConfig:
    regime: Regime
    tone: str
    greeting: str
    summary: str
    call_to_action: str
    emojis: dict[str, str]
    risk_messages: dict[str, str]
    action_phrases: tuple[str, ...]
    urgency: int

    def action_phrase(self, data: ReportData) -> str:
        """Strategy phrase for the report day; stable for a given date."""
        return self.action_phrases[data.generated_at.toordinal() % len(self.action_phrases)]


REGIME_CONFIGS: dict[Regime, RegimeConfig] = {
    Regime.BULL: RegimeConfig(
        regime=Regime.BULL,
        tone="positive",
        greeting="Bulls are charging! 🐂",
        summary="Strong upward momentum across the board",
        call_to_action="Consider scaling into winning positions",
        emojis={"trend": "🐂", "performance": "🚀", "warning": "⚠️", "action": "💪"},
        risk_messages={
            "low": "Excellent conditions for position building",
            "medium": "Monitor for overextension signals",
            "high": "Bulls running hot, watch for exhaustion",
        },
        action_phrases=(
            "Time to ride the wave",
            "Momentum is your friend",
            "Let winners run",
            "Scale into strength",
        ),
        urgency=2,
    ),
    Regime.BEAR: RegimeConfig(
        regime=Regime.BEAR,
        tone="cautious",
        greeting="Bears in control 🐻",
        summary="Downward pressure continues to dominate",
        call_to_action="Focus on capital preservation and short opportunities",
        emojis={"trend": "🐻", "performance": "🛡️", "warning": "🚨", "action": "🤔"},
        risk_messages={
            "low": "Defensive positioning recommended",
            "medium": "Reduce exposure and tighten stops",
            "high": "Maximum caution, consider cash positions",
        },
        action_phrases=(
            "Preserve capital first",
            "Wait for better entries",
            "Quality over quantity",
            "Cash is a position",
        ),
        urgency=3,
    ),
    Regime.RANGE: RegimeConfig(
        regime=Regime.RANGE,
        tone="neutral",
        greeting="Markets in balance ⚖️",
        summary="Consolidation phase with defined support and resistance",
        call_to_action="Favour range trading strategies",
        emojis={"trend": "↔️", "performance": "⚖️", "warning": "⚠️", "action": "🎯"},
        risk_messages={
            "low": "Ideal for swing trading setups",
            "medium": "Watch for range breakouts",
            "high": "Choppy conditions, reduce size",
        },
        action_phrases=(
            "Buy support, sell resistance",
            "Patience pays in ranges",
            "Small consistent wins",
            "Wait for clear signals",
        ),
        urgency=1,
    ),
    Regime.VOLATILE: RegimeConfig(
        regime=Regime.VOLATILE,
        tone="urgent",
        greeting="High volatility detected ⚡",
        summary="Markets moving with extreme speed and unpredictability",
        call_to_action="Adjust position sizes and tighten risk management",
        emojis={"trend": "⚡", "performance": "🎢", "warning": "🚨", "action": "⚡"},
        risk_messages={
            "low": "Opportunity in chaos for disciplined traders",
            "medium": "Reduce size, increase monitoring",
            "high": "Extreme caution, consider the sidelines",
        },
        action_phrases=(
            "Size down, stay nimble",
            "Quick profits, tight stops",
            "Volatility is opportunity",
            "Stay disciplined",
        ),
        urgency=4,
    ),
    Regime.EMERGENCY: RegimeConfig(
        regime=Regime.EMERGENCY,
        tone="urgent",
        greeting="🚨 EMERGENCY ALERT 🚨",
        summary="Critical market conditions require immediate attention",
        call_to_action="TAKE IMMEDIATE ACTION TO PROTECT CAPITAL",
        emojis={"trend": "🚨", "performance": "🛑", "warning": "⚠️", "action": "🚨"},
        risk_messages={
            "low": "Immediate risk management required",
            "medium": "URGENT: Review all positions",
            "high": "CRITICAL: Emergency protocols activated",
        },
        action_phrases=(
            "IMMEDIATE ACTION REQUIRED",
            "PROTECT CAPITAL NOW",
            "EMERGENCY PROTOCOLS ACTIVE",
        ),
        urgency=5,
    ),
}


@dataclass(frozen=True)
class RegimeThresholds:
    """Limits used by select_regime; values are percentages except the score."""

    emergency_drawdown: float = 20.0
    emergency_daily_move: float = 15.0
    volatility_threshold: float = 25.0
    low_confidence: float = 0.5
    low_confidence_penalty: float = 20.0
    elevated_drawdown: float = 10.0
    elevated_drawdown_penalty: float = 15.0

    @classmethod
    def from_config(cls, renderer: Any) -> "RegimeThresholds":
        return cls(
            emergency_drawdown=renderer.emergency_drawdown,
            emergency_daily_move=renderer.emergency_daily_move,
            volatility_threshold=renderer.volatility_threshold,
        )


def is_emergency(data: ReportData, thresholds: RegimeThresholds) -> bool:
    return (
        data.drawdown >= thresholds.emergency_drawdown
        or data.has_critical_alert
        or abs(data.daily_pnl_percentage) > thresholds.emergency_daily_move
    )


def volatility_score(data: ReportData, thresholds: RegimeThresholds) -> float:
    """
    Average absolute market move plus uncertainty penalties.

    Missing market data contributes zero; a missing AI analysis is not
    treated as low confidence.
    """
    score = 0.0
    if data.market_data:
        score = sum(abs(q.price_change_percent) for q in data.market_data) / len(data.market_data)

    confidence = data.confidence
    if confidence is not None and confidence < thresholds.low_confidence:
        score += thresholds.low_confidence_penalty
    if data.drawdown > thresholds.elevated_drawdown:
        score += thresholds.elevated_drawdown_penalty
    return score


def select_regime(data: ReportData, thresholds: RegimeThresholds | None = None) -> Regime:
    """Pick the regime a report is rendered for."""
    thresholds = thresholds or RegimeThresholds()

    if is_emergency(data, thresholds):
        return Regime.EMERGENCY
    if volatility_score(data, thresholds) > thresholds.volatility_threshold:
        return Regime.VOLATILE
    if data.ai_analysis is not None:
        return data.ai_analysis.market_regime
    return Regime.RANGE
