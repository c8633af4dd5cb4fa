"""
Report Templates.

Builds the per-regime ReportTemplate: sections from the generators,
formatting, and the interactive elements offered as buttons.

The emergency template drops performance and positions and renders in
compact mode; volatile markets are compact as well.
"""

from dataclasses import dataclass, field
from typing import Any

from modules.backend.core.exceptions import ValidationError
from modules.telegram.callbacks.common import CallbackAction, encode_callback
from modules.telegram.renderer.models import (
    Button,
    Formatting,
    Regime,
    ReportData,
    ReportTemplate,
)
from modules.telegram.renderer.predicates import (
    Always,
    ConfidenceAbove,
    DrawdownAbove,
    HasDailyGain,
    HasPositions,
    IsEmergency,
    Predicate,
    parse_predicate,
)
from modules.telegram.renderer.regimes import REGIME_CONFIGS
from modules.telegram.renderer.sections import SECTION_GENERATORS

EMERGENCY_OMITTED_SECTIONS = frozenset({"performance_metrics", "active_positions"})


@dataclass(frozen=True)
class InteractiveElement:
    """A report button shown only when its predicate holds."""

    text: str
    action: CallbackAction
    data: dict[str, Any] | None = None
    condition: Predicate = field(default_factory=Always)

    def to_button(self) -> Button:
        return Button(text=self.text, callback_data=encode_callback(self.action, self.data))


STANDARD_ELEMENTS: tuple[InteractiveElement, ...] = (
    InteractiveElement("📊 Full Analytics", CallbackAction.SHOW_ANALYTICS),
    InteractiveElement("💼 Positions", CallbackAction.SHOW_POSITIONS, condition=HasPositions()),
    InteractiveElement("⚙️ Settings", CallbackAction.SHOW_SETTINGS),
    InteractiveElement("🚨 Emergency Stop", CallbackAction.EMERGENCY_STOP, condition=DrawdownAbove(10.0)),
    InteractiveElement("📈 Market Analysis", CallbackAction.SHOW_MARKET_ANALYSIS, condition=ConfidenceAbove(0.7)),
)

REGIME_ELEMENTS: dict[Regime, tuple[InteractiveElement, ...]] = {
    Regime.BULL: (
        InteractiveElement("🚀 Scale Positions", CallbackAction.MARKET_SCAN, {"id": "scale"}, HasDailyGain()),
        InteractiveElement("📈 Momentum Scan", CallbackAction.MARKET_SCAN, {"id": "momentum"}),
    ),
    Regime.BEAR: (
        InteractiveElement("🛡️ Reduce Risk", CallbackAction.REDUCE_RISK),
        InteractiveElement("📉 Short Setups", CallbackAction.MARKET_SCAN, {"id": "short"}),
    ),
    Regime.RANGE: (
        InteractiveElement("🎯 Range Setups", CallbackAction.MARKET_SCAN, {"id": "range"}),
    ),
    Regime.VOLATILE: (
        InteractiveElement("⚡ Adjust Stops", CallbackAction.REDUCE_RISK, {"id": "stops"}),
        InteractiveElement("📊 Volatility Plays", CallbackAction.MARKET_SCAN, {"id": "volatility"}),
    ),
    Regime.EMERGENCY: (
        InteractiveElement("🚨 EMERGENCY STOP", CallbackAction.EMERGENCY_STOP, condition=IsEmergency()),
        InteractiveElement("⚠️ Risk Review", CallbackAction.EMERGENCY_RISK_REVIEW),
    ),
}


@dataclass(frozen=True)
class ScopedElement:
    """A configured button; an empty `regimes` set means every regime."""

    element: InteractiveElement
    regimes: frozenset[Regime] = frozenset()

    def applies_to(self, regime: Regime) -> bool:
        return not self.regimes or regime in self.regimes


def parse_extra_buttons(entries: Any) -> tuple[ScopedElement, ...]:
    """
    Build configured buttons from renderer.yaml `extra_buttons` entries.

    Raises:
        ValidationError: For unknown actions, regimes or predicates
    """
    scoped: list[ScopedElement] = []
    for entry in entries or ():
        try:
            action = CallbackAction(entry.action)
            regimes = frozenset(Regime(r.upper()) for r in entry.regimes)
        except ValueError as e:
            raise ValidationError(
                "Invalid extra button", details={"text": entry.text, "error": str(e)},
            ) from e
        element = InteractiveElement(entry.text, action, entry.data, parse_predicate(entry.when))
        # Callback data must fit before the button is accepted
        element.to_button()
        scoped.append(ScopedElement(element, regimes))
    return tuple(scoped)


def interactive_elements_for(
    regime: Regime,
    extra: tuple[ScopedElement, ...] = (),
) -> list[InteractiveElement]:
    """Regime-specific, standard, then configured elements, without duplicate actions."""
    configured = [s.element for s in extra if s.applies_to(regime)]
    elements: list[InteractiveElement] = []
    seen: set[str] = set()
    for element in (*REGIME_ELEMENTS[regime], *STANDARD_ELEMENTS, *configured):
        key = encode_callback(element.action, element.data)
        if key in seen:
            continue
        seen.add(key)
        elements.append(element)
    return elements


def build_template(
    data: ReportData,
    regime: Regime,
    extra: tuple[ScopedElement, ...] = (),
) -> ReportTemplate:
    """Assemble the template for `regime` from the section generators."""
    config = REGIME_CONFIGS[regime]
    emergency = regime is Regime.EMERGENCY

    sections = [
        generate(data, config)
        for section_id, generate in SECTION_GENERATORS.items()
        if not (emergency and section_id in EMERGENCY_OMITTED_SECTIONS)
    ]

    return ReportTemplate(
        template_id=f"market_{regime.value.lower()}",
        regime=regime,
        sections=sections,
        formatting=Formatting(compact_mode=emergency or regime is Regime.VOLATILE),
        interactive_elements=interactive_elements_for(regime, extra),
    )
