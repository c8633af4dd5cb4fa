"""
Report Models.

Preferences are pydantic so that stored values are validated when loaded
from a job's config. Render-time models (sections, templates, buttons,
messages) are plain dataclasses built fresh for each render and never
persisted. Provider payloads and ReportData live in
modules.backend.schemas.trading and are re-exported here.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from modules.backend.schemas.trading import (
    AIAnalysis,
    AlertLevel,
    MarketQuote,
    PerformanceReport,
    PortfolioSnapshot,
    Position,
    Regime,
    ReportData,
    RiskAlert,
    RiskMetrics,
)

__all__ = [
    "AIAnalysis",
    "AlertLevel",
    "Button",
    "Formatting",
    "MarketQuote",
    "Message",
    "PerformanceReport",
    "PortfolioSnapshot",
    "Position",
    "Priority",
    "Regime",
    "ReportData",
    "ReportSection",
    "ReportTemplate",
    "RiskAlert",
    "RiskMetrics",
    "UserPreferences",
]


class Priority(str, Enum):
    """Section priority; rank orders high before low."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 3, "medium": 2, "low": 1}[self.value]


# =============================================================================
# Preferences
# =============================================================================


DEFAULT_SECTION_PRIORITIES: dict[str, int] = {
    "executive_summary": 1,
    "performance_metrics": 2,
    "ai_insights": 3,
    "active_positions": 4,
    "risk_alerts": 5,
    "tomorrow_outlook": 6,
    "market_opportunities": 7,
}

DISABLED_BY_DEFAULT = frozenset({"market_opportunities"})


class SectionPreference(BaseModel):
    enabled: bool = True
    priority: int = 99


def default_sections() -> dict[str, SectionPreference]:
    return {
        section_id: SectionPreference(enabled=section_id not in DISABLED_BY_DEFAULT, priority=priority)
        for section_id, priority in DEFAULT_SECTION_PRIORITIES.items()
    }


class FormattingPreference(BaseModel):
    use_emojis: bool = True
    compact_mode: bool = False


class Thresholds(BaseModel):
    significant_pnl_change: float = 5.0
    minimum_confidence: float = 0.6


class UserPreferences(BaseModel):
    """Per-caller report preferences, stored in the report job's config."""

    model_config = ConfigDict(extra="ignore")

    caller_id: int
    sections: dict[str, SectionPreference] = Field(default_factory=default_sections)
    formatting: FormattingPreference = Field(default_factory=FormattingPreference)
    timezone: str = "UTC"
    preferred_time: str = "09:00"
    thresholds: Thresholds = Field(default_factory=Thresholds)
    avg_read_time_seconds: float | None = None


# =============================================================================
# Render-time structures
# =============================================================================


@dataclass
class ReportSection:
    id: str
    title: str
    content: str
    priority: Priority = Priority.MEDIUM
    emoji: str | None = None


@dataclass
class Formatting:
    parse_mode: str = "HTML"
    use_emojis: bool = True
    bold_headers: bool = True
    link_previews: bool = False
    compact_mode: bool = False


@dataclass(frozen=True)
class Button:
    text: str
    callback_data: str


@dataclass
class Message:
    """One outbound chat message; reply_markup is rows of buttons."""

    text: str
    parse_mode: str = "HTML"
    disable_link_preview: bool = True
    reply_markup: list[list[Button]] | None = None

    @property
    def button_count(self) -> int:
        return sum(len(row) for row in self.reply_markup or [])


@dataclass
class ReportTemplate:
    template_id: str
    regime: Regime
    sections: list[ReportSection]
    formatting: Formatting = field(default_factory=Formatting)
    # InteractiveElement instances; typed loosely to keep predicates out of this module
    interactive_elements: list[Any] = field(default_factory=list)

    def section(self, section_id: str) -> ReportSection | None:
        return next((s for s in self.sections if s.id == section_id), None)
