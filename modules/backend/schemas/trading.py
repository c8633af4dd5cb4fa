"""
Trading Data Schemas.

Payloads returned by the trading, portfolio, risk, and AI-analysis
services, and the ReportData aggregate assembled from them. Provider APIs
speak camelCase JSON; every model accepts both camelCase and snake_case
keys and ignores fields it does not know.
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from modules.backend.core.utils import utc_now


class Regime(str, Enum):
    """Market regimes a report template can be tailored to."""

    BULL = "BULL"
    BEAR = "BEAR"
    RANGE = "RANGE"
    VOLATILE = "VOLATILE"
    EMERGENCY = "EMERGENCY"


class AlertLevel(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class _ProviderModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class PortfolioSnapshot(_ProviderModel):
    total_balance: float = 0.0
    available_balance: float = 0.0
    daily_pnl: float = Field(0.0, alias="dailyPnL")
    daily_pnl_percentage: float = Field(0.0, alias="dailyPnLPercentage")
    total_return_percentage: float = 0.0


class Position(_ProviderModel):
    id: str
    symbol: str
    side: Literal["LONG", "SHORT"] = "LONG"
    size: float = 0.0
    entry_price: float = 0.0
    current_price: float = 0.0
    unrealized_pnl: float = Field(0.0, alias="unrealizedPnL")
    unrealized_pnl_percentage: float = Field(0.0, alias="unrealizedPnLPercentage")


class AIAnalysis(_ProviderModel):
    market_regime: Regime = Regime.RANGE
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    sentiment: float = 0.0
    fear_greed_index: int = 50
    next_action: str = "HOLD"
    recommended_symbol: str | None = None
    entry_price: float | None = None
    target_price: float | None = None
    stop_loss: float | None = None
    reasoning: list[str] = Field(default_factory=list)


class RiskMetrics(_ProviderModel):
    # Drawdown values are percentages (22.0 means 22%)
    portfolio_drawdown: float = 0.0
    max_drawdown_limit: float = 20.0
    leverage: float = 1.0
    max_leverage: float = 3.0
    var95: float = 0.0
    daily_pnl: float = Field(0.0, alias="dailyPnL")
    daily_pnl_limit: float = Field(0.0, alias="dailyPnLLimit")


class RiskAlert(_ProviderModel):
    level: AlertLevel = Field(AlertLevel.WARNING, alias="type")
    message: str


class PerformanceReport(_ProviderModel):
    win_rate: float = 0.0
    total_trades: int = 0
    profitable: int = 0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0


class MarketQuote(_ProviderModel):
    symbol: str
    price: float = 0.0
    price_change_percent: float = 0.0


class RiskReport(_ProviderModel):
    """Risk metrics together with the alerts raised against them."""

    metrics: RiskMetrics = Field(default_factory=RiskMetrics)
    alerts: list[RiskAlert] = Field(default_factory=list)


class StrategyStatus(_ProviderModel):
    name: str
    enabled: bool = True
    performance: float = 0.0
    active_positions: int = 0


class TradingStatus(_ProviderModel):
    trading_enabled: bool = False
    daily_pnl: float = Field(0.0, alias="dailyPnL")
    daily_pnl_percentage: float = Field(0.0, alias="dailyPnLPercentage")
    active_strategies: list[StrategyStatus] = Field(default_factory=list)


class ControlResult(_ProviderModel):
    """Outcome of a trading control request."""

    success: bool
    message: str = ""


class ReportData(_ProviderModel):
    """Everything a report is rendered from, assembled by the report builder."""

    caller_id: int
    generated_at: datetime = Field(default_factory=utc_now)
    portfolio: PortfolioSnapshot | None = None
    positions: list[Position] = Field(default_factory=list)
    ai_analysis: AIAnalysis | None = None
    risk_metrics: RiskMetrics = Field(default_factory=RiskMetrics)
    alerts: list[RiskAlert] = Field(default_factory=list)
    performance: PerformanceReport | None = None
    market_data: list[MarketQuote] = Field(default_factory=list)
    risk_score: int = Field(50, ge=0, le=100)
    unavailable: list[str] = Field(default_factory=list)

    @property
    def daily_pnl_percentage(self) -> float:
        return self.portfolio.daily_pnl_percentage if self.portfolio else 0.0

    @property
    def drawdown(self) -> float:
        return self.risk_metrics.portfolio_drawdown

    @property
    def confidence(self) -> float | None:
        return self.ai_analysis.confidence if self.ai_analysis else None

    @property
    def has_critical_alert(self) -> bool:
        return any(alert.level is AlertLevel.CRITICAL for alert in self.alerts)


