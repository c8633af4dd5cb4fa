"""
Report Personalization.

Adapts a template to a caller's preferences:
    - drops disabled sections and orders the rest by preferred priority
    - hides performance metrics on quiet days (outside emergencies)
    - condenses sections for fast readers, adds context for slow ones
    - strips section emojis when the caller turned them off
"""

from dataclasses import dataclass, replace
from typing import Any

from modules.telegram.renderer.models import (
    Regime,
    ReportData,
    ReportSection,
    ReportTemplate,
    UserPreferences,
)

UNRANKED_PRIORITY = 1000

CONTEXT_NOTES: dict[str, str] = {
    "executive_summary": "Daily P&amp;L compares today's close with yesterday's.",
    "performance_metrics": "A Sharpe ratio above 1.0 means returns outpaced the risk taken.",
    "ai_insights": "Confidence reflects how strongly the signals agree, not a guaranteed outcome.",
    "active_positions": "Unrealized P&amp;L changes with price until a position is closed.",
    "risk_alerts": "VaR (95%) is the loss not expected to be exceeded on 19 days out of 20.",
    "tomorrow_outlook": "Targets and stops are suggestions; size positions to your own limits.",
}


@dataclass(frozen=True)
class PersonalizationSettings:
    condensed_read_time_seconds: float = 20.0
    expanded_read_time_seconds: float = 60.0
    max_condensed_lines: int = 6

    @classmethod
    def from_config(cls, renderer: Any) -> "PersonalizationSettings":
        return cls(
            condensed_read_time_seconds=renderer.condensed_read_time_seconds,
            expanded_read_time_seconds=renderer.expanded_read_time_seconds,
            max_condensed_lines=renderer.max_condensed_lines,
        )


def _condense(section: ReportSection, max_lines: int) -> ReportSection:
    lines = [line for line in section.content.splitlines() if line.strip()]
    return replace(section, content="\n".join(lines[:max_lines]))


def _expand(section: ReportSection) -> ReportSection:
    note = CONTEXT_NOTES.get(section.id)
    if note is None:
        return section
    return replace(section, content=f"{section.content}\n<i>{note}</i>")


def personalize(
    template: ReportTemplate,
    data: ReportData,
    preferences: UserPreferences,
    settings: PersonalizationSettings | None = None,
) -> ReportTemplate:
    """Return a copy of `template` adapted to `preferences`."""
    settings = settings or PersonalizationSettings()
    emergency = template.regime is Regime.EMERGENCY

    def rank(section: ReportSection) -> int:
        pref = preferences.sections.get(section.id)
        return pref.priority if pref is not None else UNRANKED_PRIORITY

    sections = [
        s for s in template.sections
        if s.id not in preferences.sections or preferences.sections[s.id].enabled
    ]

    quiet_day = abs(data.daily_pnl_percentage) < preferences.thresholds.significant_pnl_change
    if quiet_day and not emergency:
        sections = [s for s in sections if s.id != "performance_metrics"]

    # Stable sort keeps the template order among equally ranked sections
    sections.sort(key=rank)

    read_time = preferences.avg_read_time_seconds
    if read_time is not None and read_time < settings.condensed_read_time_seconds:
        sections = [_condense(s, settings.max_condensed_lines) for s in sections]
    elif read_time is not None and read_time > settings.expanded_read_time_seconds:
        sections = [_expand(s) for s in sections]

    formatting = replace(
        template.formatting,
        use_emojis=template.formatting.use_emojis and preferences.formatting.use_emojis,
        compact_mode=template.formatting.compact_mode or preferences.formatting.compact_mode,
    )
    if not formatting.use_emojis:
        sections = [replace(s, emoji=None) for s in sections]

    return replace(template, sections=sections, formatting=formatting)
