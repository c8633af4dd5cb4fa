"""
Unit Tests for the Report Renderer.

Covers the full pipeline, the simplified fallback, single sections, and
the platform-limit validation every message passes through.
"""

from datetime import datetime
from unittest.mock import patch

import pytest

from modules.backend.core.exceptions import RenderError
from modules.telegram.callbacks.common import MAX_CALLBACK_BYTES, decode_callback
from modules.telegram.renderer import ABTestManager, Message, ReportRenderer, RendererSettings, UserPreferences
from modules.telegram.renderer.ab_testing import ABTestEvent, ABTestVariant
from modules.telegram.renderer.models import (
    AIAnalysis,
    AlertLevel,
    Button,
    PerformanceReport,
    PortfolioSnapshot,
    Position,
    ReportData,
    RiskAlert,
    RiskMetrics,
)
from modules.telegram.renderer.validation import message_errors, validate_messages


def _data(**fields) -> ReportData:
    fields.setdefault("caller_id", 42)
    fields.setdefault("generated_at", datetime(2024, 1, 15, 9, 0))
    fields.setdefault("portfolio", PortfolioSnapshot(total_balance=10000, daily_pnl=600, daily_pnl_percentage=6.0))
    fields.setdefault("ai_analysis", AIAnalysis(market_regime="BULL", confidence=0.85, recommended_symbol="BTCUSDT"))
    fields.setdefault("performance", PerformanceReport(win_rate=65, total_trades=10, profitable=6))
    fields.setdefault("positions", [Position(id="abc123", symbol="BTCUSDT", unrealized_pnl=120)])
    return ReportData(**fields)


def _actions(messages):
    return [decode_callback(b.callback_data).action for row in messages[-1].reply_markup or [] for b in row]


@pytest.fixture
def prefs():
    return UserPreferences(caller_id=42)


class TestRender:
    def test_bull_report(self, prefs):
        messages = ReportRenderer().render(_data(), prefs)

        assert len(messages) == 1
        text = messages[0].text
        assert "Bulls are charging" in text
        assert "Executive Summary" in text
        assert messages[0].parse_mode == "HTML"
        actions = _actions(messages)
        assert "show_positions" in actions
        assert "show_market_analysis" in actions
        assert "emergency_stop_all" not in actions

    def test_emergency_report(self, prefs):
        data = _data(
            risk_metrics=RiskMetrics(portfolio_drawdown=22.0),
            alerts=[RiskAlert(level=AlertLevel.CRITICAL, message="Drawdown <limit> breached")],
        )

        messages = ReportRenderer().render(data, prefs)

        text = "\n".join(m.text for m in messages)
        assert "EMERGENCY ALERT" in text
        assert "Performance Metrics" not in text
        assert "&lt;limit&gt;" in text
        assert "emergency_stop_all" in _actions(messages)

    def test_buttons_are_unique_and_within_limits(self, prefs):
        messages = ReportRenderer(RendererSettings(buttons_per_row=2)).render(_data(), prefs)

        buttons = [b for row in messages[-1].reply_markup for b in row]
        assert len({b.callback_data for b in buttons}) == len(buttons)
        assert all(len(row) <= 2 for row in messages[-1].reply_markup)
        assert all(len(b.callback_data.encode()) <= MAX_CALLBACK_BYTES for b in buttons)

    def test_long_report_is_chunked_with_buttons_on_last(self, prefs):
        renderer = ReportRenderer(RendererSettings(max_message_length=300))

        messages = renderer.render(_data(), prefs)

        assert len(messages) > 1
        assert all(len(m.text) <= 300 for m in messages)
        assert all(m.reply_markup is None for m in messages[:-1])
        assert messages[-1].reply_markup

    def test_failure_falls_back_to_simplified_report(self, prefs):
        with patch(
            "modules.telegram.renderer.renderer.personalize",
            side_effect=RuntimeError("boom"),
        ):
            messages = ReportRenderer().render(_data(), prefs)

        assert len(messages) >= 1
        assert all(m.reply_markup is None for m in messages)
        assert "Executive Summary" in messages[0].text

    def test_overlong_next_action_keeps_markup_balanced(self, prefs):
        ai = AIAnalysis(market_regime="BULL", confidence=0.85, next_action="<BUY> " + "x" * 5000)

        messages = ReportRenderer().render(_data(ai_analysis=ai), prefs)

        assert messages[-1].reply_markup
        summary = next(line for line in messages[0].text.splitlines() if "Next action:" in line)
        assert summary.startswith("• Next action: <b>&lt;BUY&gt; x")
        assert "…</b>" in summary
        assert len(summary) < 300
        assert all(m.text.count("<b>") == m.text.count("</b>") for m in messages)

    def test_unavailable_sources_degrade(self, prefs):
        data = _data(portfolio=None, performance=None, unavailable=["portfolio", "performance"])

        messages = ReportRenderer().render(data, prefs)

        assert "Portfolio snapshot unavailable" in messages[0].text


class TestABVariantsInRender:
    def test_running_test_is_applied_and_counted(self, prefs):
        manager = ABTestManager(min_sample_size=1)
        manager.create_test(
            "Emoji", "",
            [ABTestVariant("plain", "Plain", modifications=_plain())],
            test_id="emoji",
        )
        manager.start_test("emoji")

        messages = ReportRenderer(ab_manager=manager).render(_data(), prefs)

        assert "<b>Executive Summary</b>" not in messages[0].text
        assert manager.get_test("emoji").metrics["plain"].sent == 1

    def test_explicit_empty_active_tests(self, prefs):
        manager = ABTestManager()
        manager.create_from_template("EMOJI_USAGE", test_id="emoji")
        manager.start_test("emoji")

        ReportRenderer(ab_manager=manager).render(_data(), prefs, active_tests=[])

        metrics = manager.get_test("emoji").metrics
        assert all(m.sent == 0 for m in metrics.values())

    def test_failed_render_records_no_sent_event(self, prefs):
        manager = ABTestManager()
        manager.create_from_template("EMOJI_USAGE", test_id="emoji")
        manager.start_test("emoji")

        with patch("modules.telegram.renderer.renderer.personalize", side_effect=RuntimeError("boom")):
            ReportRenderer(ab_manager=manager).render(_data(), prefs)

        assert all(m.sent == 0 for m in manager.get_test("emoji").metrics.values())


def _plain():
    from modules.telegram.renderer.ab_testing import VariantModifications

    return VariantModifications(formatting={"bold_headers": False})


class TestConfiguredButtons:
    @staticmethod
    def _settings(**entry):
        from modules.backend.core.config_schema import ExtraButtonSchema
        from modules.telegram.renderer.templates import parse_extra_buttons

        entry.setdefault("text", "🔍 Deep Scan")
        entry.setdefault("action", "market_scan")
        return RendererSettings(extra_elements=parse_extra_buttons([ExtraButtonSchema(**entry)]))

    def test_button_shown_when_predicate_holds(self, prefs):
        settings = self._settings(data={"id": "deep"}, when="has_positions", regimes=["bull"])

        messages = ReportRenderer(settings).render(_data(), prefs)

        payloads = [decode_callback(b.callback_data) for row in messages[-1].reply_markup for b in row]
        assert any(p.action == "market_scan" and p.ref == "deep" for p in payloads)

    def test_button_hidden_when_predicate_fails(self, prefs):
        settings = self._settings(data={"id": "deep"}, when="drawdown_above:50")

        messages = ReportRenderer(settings).render(_data(), prefs)

        payloads = [decode_callback(b.callback_data) for row in messages[-1].reply_markup for b in row]
        assert not any(p.ref == "deep" for p in payloads)

    def test_button_scoped_to_regimes(self):
        from modules.telegram.renderer.models import Regime
        from modules.telegram.renderer.templates import interactive_elements_for

        extra = self._settings(data={"id": "deep"}, regimes=["bear"]).extra_elements

        assert any(e.data == {"id": "deep"} for e in interactive_elements_for(Regime.BEAR, extra))
        assert not any(e.data == {"id": "deep"} for e in interactive_elements_for(Regime.BULL, extra))

    @pytest.mark.parametrize(
        "entry",
        [
            {"action": "no_such_action"},
            {"regimes": ["sideways"]},
            {"when": "moon_phase"},
            {"when": "drawdown_above:lots"},
        ],
    )
    def test_invalid_entries_are_rejected(self, entry):
        from modules.backend.core.exceptions import ValidationError

        with pytest.raises(ValidationError):
            self._settings(**entry)

class TestRenderSection:
    def test_known_section(self):
        messages = ReportRenderer().render_section("risk_alerts", _data())

        assert "Risk" in messages[0].text
        assert messages[0].reply_markup is None

    def test_unknown_section(self):
        with pytest.raises(RenderError):
            ReportRenderer().render_section("horoscope", _data())


class TestValidation:
    def test_valid_message(self):
        assert message_errors(Message(text="hi", reply_markup=[[Button("A", "a")]])) == []

    def test_collects_every_violation(self):
        message = Message(
            text="x" * 5000,
            reply_markup=[[Button("", "a")] * 9, [Button("B", "b" * 65)]],
        )

        errors = message_errors(message)

        assert any("5000 characters" in e for e in errors)
        assert any("row 0 has 9 buttons" in e for e in errors)
        assert any("button text length 0" in e for e in errors)
        assert any("exceeds 64 bytes" in e for e in errors)

    def test_validate_raises_render_error(self):
        with pytest.raises(RenderError) as exc_info:
            validate_messages([Message(text="  ")])

        assert exc_info.value.errors == ["message 0: text is empty"]

    def test_no_messages(self):
        with pytest.raises(RenderError):
            validate_messages([])


class TestEngagementRecording:
    def test_sent_then_engaged(self):
        manager = ABTestManager(min_sample_size=1)
        manager.create_from_template("INTERACTIVE_ELEMENTS", test_id="ui")
        manager.start_test("ui")
        variant = manager.assignment(42, "ui")

        ReportRenderer(ab_manager=manager).render(_data(), UserPreferences(caller_id=42))
        manager.record_event("ui", variant.id, ABTestEvent.ENGAGED)

        metrics = manager.get_test("ui").metrics[variant.id]
        assert (metrics.sent, metrics.engaged) == (1, 1)
