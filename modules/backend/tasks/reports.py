"""
Report Jobs.

Assembles ReportData from the data providers and delivers a rendered
report for one scheduled job.

Provider calls run in parallel. A provider that fails is recorded in
ReportData.unavailable and its sections degrade to an "insights
unavailable" notice; the report itself still goes out.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from modules.backend.core.exceptions import DataUnavailable
from modules.backend.core.logging import get_logger, log_with_source
from modules.backend.core.utils import utc_now
from modules.backend.schemas.trading import AlertLevel, ReportData, RiskAlert, RiskMetrics
from modules.backend.services.providers import DataProvider

logger = get_logger(__name__)

BASE_RISK_SCORE = 50


def calculate_risk_score(metrics: RiskMetrics, alerts: list[RiskAlert]) -> int:
    """
    Portfolio risk on a 0..100 scale.

    Drawdown above 20% adds 30 (above 10% adds 15); each CRITICAL alert
    adds 20 and each WARNING adds 10.
    """
    score = BASE_RISK_SCORE
    if metrics.portfolio_drawdown > 20:
        score += 30
    elif metrics.portfolio_drawdown > 10:
        score += 15

    score += 20 * sum(1 for a in alerts if a.level is AlertLevel.CRITICAL)
    score += 10 * sum(1 for a in alerts if a.level is AlertLevel.WARNING)
    return max(0, min(100, score))


class ReportBuilder:
    """
    Fetches everything a report needs for one caller.

    Usage:
        builder = ReportBuilder(provider)
        data = await builder.build(caller_id)
    """

    def __init__(self, provider: DataProvider) -> None:
        self.provider = provider

    async def build(self, caller_id: int, now: datetime | None = None) -> ReportData:
        sources: dict[str, Callable[[], Awaitable[Any]]] = {
            "portfolio": lambda: self.provider.get_portfolio_snapshot(caller_id),
            "positions": lambda: self.provider.get_positions(caller_id),
            "ai_analysis": self.provider.get_ai_analysis,
            "risk_alerts": lambda: self.provider.get_risk_alerts(caller_id),
            "performance": lambda: self.provider.get_performance(caller_id),
            "market_data": self.provider.get_market_data,
        }
        results = await asyncio.gather(*(fetch() for fetch in sources.values()), return_exceptions=True)

        fetched: dict[str, Any] = {}
        unavailable: list[str] = []
        for name, result in zip(sources, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                unavailable.append(name)
                log_with_source(
                    logger, "tasks", "warning", "Report data source unavailable",
                    caller_id=caller_id,
                    provider=result.provider if isinstance(result, DataUnavailable) else name,
                    error=str(result),
                )
                continue
            fetched[name] = result

        risk = fetched.get("risk_alerts")
        metrics = risk.metrics if risk is not None else RiskMetrics()
        alerts = risk.alerts if risk is not None else []

        return ReportData(
            caller_id=caller_id,
            generated_at=now or utc_now(),
            portfolio=fetched.get("portfolio"),
            positions=fetched.get("positions", []),
            ai_analysis=fetched.get("ai_analysis"),
            risk_metrics=metrics,
            alerts=alerts,
            performance=fetched.get("performance"),
            market_data=fetched.get("market_data", []),
            risk_score=calculate_risk_score(metrics, alerts),
            unavailable=unavailable,
        )


@dataclass(frozen=True)
class JobSpec:
    """Detached copy of a scheduled job, safe to hand to a concurrent task."""

    id: str
    caller_id: int
    chat_id: int
    type: str
    schedule: str
    timezone: str
    config: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_job(cls, job: Any) -> "JobSpec":
        return cls(
            id=job.id,
            caller_id=job.caller_id,
            chat_id=job.chat_id,
            type=job.type,
            schedule=job.schedule,
            timezone=job.timezone,
            config=dict(job.config or {}),
        )


@dataclass
class JobOutcome:
    job: JobSpec
    ran_at: datetime
    report: dict[str, Any] | None = None
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def report_summary(data: ReportData, regime: str, messages: int) -> dict[str, Any]:
    """What a SentReport row keeps about a delivered report."""
    return {
        "regime": regime,
        "messages": messages,
        "risk_score": data.risk_score,
        "daily_pnl_percentage": data.daily_pnl_percentage,
        "drawdown": data.drawdown,
        "positions": len(data.positions),
        "alerts": [a.level.value for a in data.alerts],
        "unavailable": data.unavailable,
        "generated_at": data.generated_at.isoformat(),
    }
