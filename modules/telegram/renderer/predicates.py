"""
Interactive Element Predicates.

Buttons on a report are gated by one of a closed set of predicates over
the report data and the selected regime. Nothing is evaluated dynamically:
configuration strings are parsed onto these classes only.

    "always"              -> Always()
    "has_positions"       -> HasPositions()
    "has_daily_gain"      -> HasDailyGain()
    "has_risk_alerts"     -> HasRiskAlerts()
    "drawdown_above:10"   -> DrawdownAbove(10.0)
    "confidence_above:0.7"-> ConfidenceAbove(0.7)
    "is_emergency"        -> IsEmergency()
"""

from dataclasses import dataclass

from modules.backend.core.exceptions import ValidationError
from modules.telegram.renderer.models import Regime, ReportData


class Predicate:
    """Base class of the closed predicate set."""

    def __call__(self, data: ReportData, regime: Regime) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class Always(Predicate):
    def __call__(self, data: ReportData, regime: Regime) -> bool:
        return True


@dataclass(frozen=True)
class HasPositions(Predicate):
    def __call__(self, data: ReportData, regime: Regime) -> bool:
        return len(data.positions) > 0


@dataclass(frozen=True)
class HasDailyGain(Predicate):
    def __call__(self, data: ReportData, regime: Regime) -> bool:
        return data.portfolio is not None and data.portfolio.daily_pnl > 0


@dataclass(frozen=True)
class HasRiskAlerts(Predicate):
    def __call__(self, data: ReportData, regime: Regime) -> bool:
        return len(data.alerts) > 0


@dataclass(frozen=True)
class DrawdownAbove(Predicate):
    threshold: float

    def __call__(self, data: ReportData, regime: Regime) -> bool:
        return data.drawdown > self.threshold


@dataclass(frozen=True)
class ConfidenceAbove(Predicate):
    threshold: float

    def __call__(self, data: ReportData, regime: Regime) -> bool:
        confidence = data.confidence
        return confidence is not None and confidence > self.threshold


@dataclass(frozen=True)
class IsEmergency(Predicate):
    def __call__(self, data: ReportData, regime: Regime) -> bool:
        return regime is Regime.EMERGENCY


_NULLARY: dict[str, type[Predicate]] = {
    "always": Always,
    "has_positions": HasPositions,
    "has_daily_gain": HasDailyGain,
    "has_risk_alerts": HasRiskAlerts,
    "is_emergency": IsEmergency,
}

_THRESHOLD: dict[str, type[Predicate]] = {
    "drawdown_above": DrawdownAbove,
    "confidence_above": ConfidenceAbove,
}


def parse_predicate(spec: str) -> Predicate:
    """
    Parse a config string onto the predicate set.

    Raises:
        ValidationError: For unknown names or malformed thresholds
    """
    name, _, argument = spec.strip().lower().partition(":")

    if name in _NULLARY:
        if argument:
            raise ValidationError(f"Predicate '{name}' takes no argument", details={"predicate": spec})
        return _NULLARY[name]()

    if name in _THRESHOLD:
        try:
            threshold = float(argument)
        except ValueError as e:
            raise ValidationError(
                f"Predicate '{name}' needs a numeric threshold",
                details={"predicate": spec},
            ) from e
        return _THRESHOLD[name](threshold)

    raise ValidationError(f"Unknown predicate '{name}'", details={"predicate": spec})
