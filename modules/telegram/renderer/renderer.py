"""
Report Renderer.

Turns ReportData into platform-ready messages:

    regime selection → template → A/B variants → personalization
        → composition → chunking → buttons → validation

Any failure inside the pipeline is logged and answered with a simplified
report (executive summary and risk alerts, no buttons) so that a caller
always receives something.

Usage:
    renderer = ReportRenderer.from_config(app_config.renderer, ab_manager)
    messages = renderer.render(report_data, preferences)
    await sender.send(chat_id, messages)
"""

from dataclasses import dataclass, field
from html import escape
from typing import Any

from modules.backend.core.exceptions import NotFoundError, RenderError
from modules.backend.core.logging import get_logger, log_with_source
from modules.telegram.renderer.ab_testing import (
    ABTest,
    ABTestEvent,
    ABTestManager,
    ABTestStatus,
    apply_variant,
    assign_variant,
)
from modules.telegram.renderer.chunking import TELEGRAM_MAX_MESSAGE_LENGTH, chunk_text
from modules.telegram.renderer.models import (
    Button,
    Message,
    Regime,
    ReportData,
    ReportSection,
    ReportTemplate,
    UserPreferences,
)
from modules.telegram.renderer.personalization import PersonalizationSettings, personalize
from modules.telegram.renderer.regimes import REGIME_CONFIGS, RegimeThresholds, select_regime
from modules.telegram.renderer.sections import SECTION_GENERATORS, executive_summary, risk_alerts
from modules.telegram.renderer.templates import ScopedElement, build_template, parse_extra_buttons
from modules.telegram.renderer.validation import validate_messages

logger = get_logger(__name__)


@dataclass(frozen=True)
class RendererSettings:
    max_message_length: int = TELEGRAM_MAX_MESSAGE_LENGTH
    buttons_per_row: int = 2
    thresholds: RegimeThresholds = field(default_factory=RegimeThresholds)
    personalization: PersonalizationSettings = field(default_factory=PersonalizationSettings)
    extra_elements: tuple[ScopedElement, ...] = ()

    @classmethod
    def from_config(cls, renderer: Any) -> "RendererSettings":
        return cls(
            max_message_length=renderer.max_message_length,
            buttons_per_row=renderer.buttons_per_row,
            thresholds=RegimeThresholds.from_config(renderer),
            personalization=PersonalizationSettings.from_config(renderer),
            extra_elements=parse_extra_buttons(getattr(renderer, "extra_buttons", ())),
        )


def _urgency_marker(urgency: int) -> str:
    return "●" * urgency + "○" * (5 - urgency)


def format_section(section: ReportSection, bold_headers: bool = True) -> str:
    title = escape(section.title)
    heading = f"<b>{title}</b>" if bold_headers else title
    if section.emoji:
        heading = f"{section.emoji} {heading}"
    return f"{heading}\n{section.content}" if section.content else heading


def compose(template: ReportTemplate, data: ReportData) -> str:
    """Header, blank-line separated sections, and footer as one HTML text."""
    config = REGIME_CONFIGS[template.regime]
    formatting = template.formatting

    greeting = escape(config.greeting)
    header = [f"<b>{greeting}</b>" if formatting.bold_headers else greeting]
    header.append(f"📅 {data.generated_at:%A, %B %d, %Y}")
    header.append(f"Urgency: {_urgency_marker(config.urgency)}")
    if not formatting.compact_mode:
        header.append(f"<i>{escape(config.summary)}</i>")

    footer = f"<i>Generated {data.generated_at:%H:%M} UTC"
    if data.confidence is not None:
        footer += f" · AI confidence {data.confidence:.0%}"
    footer += "</i>"

    blocks = ["\n".join(header)]
    blocks.extend(format_section(s, formatting.bold_headers) for s in template.sections)
    blocks.append(footer)
    return "\n\n".join(blocks)


class ReportRenderer:
    """Renders reports; owns no state besides its settings and A/B manager."""

    def __init__(
        self,
        settings: RendererSettings | None = None,
        ab_manager: ABTestManager | None = None,
    ) -> None:
        self.settings = settings or RendererSettings()
        self.ab_manager = ab_manager

    @classmethod
    def from_config(cls, renderer: Any, ab_manager: ABTestManager | None = None) -> "ReportRenderer":
        return cls(RendererSettings.from_config(renderer), ab_manager)

    def render(
        self,
        data: ReportData,
        preferences: UserPreferences,
        active_tests: list[ABTest] | None = None,
    ) -> list[Message]:
        """
        Render a full report for one caller.

        Args:
            data: Report inputs
            preferences: The caller's report preferences
            active_tests: Tests to apply; defaults to the manager's running tests

        Returns:
            One or more messages; buttons are attached to the last one
        """
        regime = Regime.RANGE
        try:
            regime = select_regime(data, self.settings.thresholds)
            template = build_template(data, regime, self.settings.extra_elements)

            if active_tests is None:
                active_tests = self.ab_manager.running_tests() if self.ab_manager else []
            assignments: list[tuple[str, str]] = []
            for test in active_tests:
                if test.status is not ABTestStatus.RUNNING:
                    continue
                variant = assign_variant(data.caller_id, test)
                template = apply_variant(template, variant)
                assignments.append((test.id, variant.id))

            template = personalize(template, data, preferences, self.settings.personalization)
            messages = self._to_messages(compose(template, data), self._buttons(template, data))
            validate_messages(messages, self.settings.max_message_length)
        except Exception as e:
            log_with_source(
                logger, "telegram", "error",
                "Report render failed, sending simplified report",
                caller_id=data.caller_id,
                regime=regime.value,
                error=str(e),
                error_type=type(e).__name__,
                errors=getattr(e, "errors", None) if isinstance(e, RenderError) else None,
            )
            return self.render_fallback(data, regime)

        for test_id, variant_id in assignments:
            self._record_sent(test_id, variant_id)

        log_with_source(
            logger, "telegram", "info", "Report rendered",
            caller_id=data.caller_id,
            regime=regime.value,
            template_id=template.template_id,
            messages=len(messages),
            sections=[s.id for s in template.sections],
        )
        return messages

    def render_fallback(self, data: ReportData, regime: Regime = Regime.RANGE) -> list[Message]:
        """Executive summary and risk alerts only, without buttons."""
        config = REGIME_CONFIGS[regime]
        template = ReportTemplate(
            template_id="fallback",
            regime=regime,
            sections=[executive_summary(data, config), risk_alerts(data, config)],
        )
        return self._to_messages(compose(template, data), [])

    def render_section(self, section_id: str, data: ReportData) -> list[Message]:
        """
        Render a single report section as a standalone message.

        Raises:
            RenderError: If the section id is unknown
        """
        generate = SECTION_GENERATORS.get(section_id)
        if generate is None:
            raise RenderError(f"Unknown report section '{section_id}'", errors=[section_id])

        regime = select_regime(data, self.settings.thresholds)
        section = generate(data, REGIME_CONFIGS[regime])
        messages = self._to_messages(format_section(section), [])
        validate_messages(messages, self.settings.max_message_length)
        return messages

    def _buttons(self, template: ReportTemplate, data: ReportData) -> list[Button]:
        buttons: list[Button] = []
        seen: set[str] = set()
        for element in template.interactive_elements:
            if not element.condition(data, template.regime):
                continue
            button = element.to_button()
            if button.callback_data in seen:
                continue
            seen.add(button.callback_data)
            buttons.append(button)
        return buttons

    def _to_messages(self, text: str, buttons: list[Button]) -> list[Message]:
        chunks = chunk_text(text, self.settings.max_message_length)
        messages = [Message(text=chunk.text) for chunk in chunks]

        if buttons:
            per_row = self.settings.buttons_per_row
            messages[-1].reply_markup = [
                buttons[i:i + per_row] for i in range(0, len(buttons), per_row)
            ]
        return messages

    def _record_sent(self, test_id: str, variant_id: str) -> None:
        if self.ab_manager is None:
            return
        try:
            self.ab_manager.record_event(test_id, variant_id, ABTestEvent.SENT)
        except NotFoundError as e:
            # Tests unknown to the manager are still applied but not measured
            logger.debug("A/B sent metric not recorded", extra={"test_id": test_id, "error": str(e)})
