"""
Unit Test Fixtures.

Fixtures for unit tests - the Telegram Bot API and the trading services are
mocked. Handlers, routers and the renderer run for real against them.
"""

from collections.abc import Callable
from datetime import datetime
from itertools import count
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from modules.backend.schemas.trading import (
    AIAnalysis,
    ControlResult,
    MarketQuote,
    PerformanceReport,
    PortfolioSnapshot,
    Position,
    RiskReport,
    StrategyStatus,
    TradingStatus,
)

CALLER_ID = 42
STRANGER_ID = 666


# =============================================================================
# Trading services
# =============================================================================


@pytest.fixture
def mock_provider() -> MagicMock:
    """
    DataProvider and TradingControl with canned, healthy data.

    Usage:
        def test_balance(mock_provider):
            mock_provider.get_portfolio_snapshot.side_effect = DataUnavailable(provider="portfolio")
    """
    provider = MagicMock()
    provider.get_portfolio_snapshot = AsyncMock(return_value=PortfolioSnapshot(
        total_balance=12500.0,
        available_balance=4000.0,
        daily_pnl=250.0,
        daily_pnl_percentage=2.0,
        total_return_percentage=25.0,
    ))
    provider.get_positions = AsyncMock(return_value=[
        Position(id="abc123", symbol="BTCUSDT", size=0.1, entry_price=40000, current_price=42000,
                 unrealized_pnl=200, unrealized_pnl_percentage=5.0),
        Position(id="def456", symbol="ETHUSDT", side="SHORT", size=1, entry_price=2500, current_price=2550,
                 unrealized_pnl=-50, unrealized_pnl_percentage=-2.0),
    ])
    provider.get_ai_analysis = AsyncMock(return_value=AIAnalysis(
        market_regime="BULL",
        confidence=0.82,
        sentiment=0.4,
        fear_greed_index=65,
        next_action="BUY",
        recommended_symbol="BTCUSDT",
        reasoning=["Momentum is strong"],
    ))
    provider.get_risk_alerts = AsyncMock(return_value=RiskReport())
    provider.get_performance = AsyncMock(return_value=PerformanceReport(
        win_rate=60.0, total_trades=20, profitable=12, sharpe_ratio=1.4, max_drawdown=6.0,
    ))
    provider.get_market_data = AsyncMock(return_value=[
        MarketQuote(symbol="BTCUSDT", price=42000, price_change_percent=3.1),
    ])
    provider.get_trading_status = AsyncMock(return_value=TradingStatus(
        trading_enabled=True,
        daily_pnl=250.0,
        daily_pnl_percentage=2.0,
        active_strategies=[StrategyStatus(name="Momentum", performance=3.2, active_positions=2)],
    ))
    provider.pause_trading = AsyncMock(return_value=ControlResult(success=True, message="Trading paused"))
    provider.resume_trading = AsyncMock(return_value=ControlResult(success=True, message="Trading resumed"))
    provider.close_position = AsyncMock(return_value=ControlResult(success=True))
    provider.emergency_stop = AsyncMock(return_value=ControlResult(success=True))
    return provider


# =============================================================================
# Telegram
# =============================================================================


@pytest.fixture
def mock_bot() -> MagicMock:
    """aiogram Bot double; send_message returns increasing message ids."""
    ids = count(1000)
    bot = MagicMock()
    bot.send_message = AsyncMock(side_effect=lambda **kwargs: SimpleNamespace(message_id=next(ids)))
    bot.answer_callback_query = AsyncMock(return_value=True)
    bot.get_me = AsyncMock(return_value=SimpleNamespace(id=1, username="report_bot"))
    bot.set_my_commands = AsyncMock(return_value=True)
    bot.set_webhook = AsyncMock(return_value=True)
    bot.delete_webhook = AsyncMock(return_value=True)
    bot.session.close = AsyncMock()
    return bot


@pytest.fixture
def users():
    from modules.telegram.users import UserStore

    return UserStore(authorized_users=[CALLER_ID], subscription_tiers={CALLER_ID: "PREMIUM"})


@pytest.fixture
def services(mock_provider, users):
    from modules.backend.tasks.reports import ReportBuilder
    from modules.telegram.handlers import BotServices, default_registry
    from modules.telegram.renderer import ABTestManager, ReportRenderer

    ab_manager = ABTestManager(min_sample_size=1)
    return BotServices(
        provider=mock_provider,
        control=mock_provider,
        renderer=ReportRenderer(ab_manager=ab_manager),
        report_builder=ReportBuilder(mock_provider),
        users=users,
        ab_manager=ab_manager,
        registry=default_registry(),
    )


@pytest.fixture
def message_update() -> Callable[..., Any]:
    """Factory for text-message updates."""
    from modules.telegram.gateway import InboundMessage, Update

    ids = count(1)

    def make(text: str, caller_id: int = CALLER_ID, chat_id: int | None = None, first_name: str = "Ada"):
        update_id = next(ids)
        return Update(
            id=update_id,
            message=InboundMessage(
                message_id=update_id,
                caller_id=caller_id,
                chat_id=chat_id or caller_id,
                text=text,
                first_name=first_name,
            ),
        )

    return make


@pytest.fixture
def callback_update() -> Callable[..., Any]:
    """Factory for button-press updates."""
    from modules.telegram.gateway import InboundCallback, Update

    ids = count(1)

    def make(data: str, caller_id: int = CALLER_ID, chat_id: int | None = None):
        update_id = next(ids)
        return Update(
            id=update_id,
            callback=InboundCallback(
                callback_id=f"cb-{update_id}",
                caller_id=caller_id,
                data=data,
                chat_id=chat_id or caller_id,
                message_id=update_id,
            ),
        )

    return make


@pytest.fixture
def make_ctx(services) -> Callable[..., Any]:
    """Factory for HandlerContext around an update, with a fresh session."""
    from modules.telegram.handlers import HandlerContext
    from modules.telegram.sessions import Session

    def make(update, **fields: Any):
        now = datetime(2024, 1, 15, 10, 0)
        session = Session(caller_id=update.caller_id, created_at=now, expires_at=now, last_activity=now)
        return HandlerContext(update=update, session=session, services=services, **fields)

    return make


# =============================================================================
# Settings Mock Fixtures
# =============================================================================


@pytest.fixture
def mock_settings() -> MagicMock:
    """
    Secrets double.

    Usage:
        run_startup_checks(app_config, mock_settings)
    """
    settings = MagicMock()
    settings.telegram_bot_token = "123456:test-token"
    settings.telegram_webhook_secret = "a-sufficiently-long-secret"
    settings.data_provider_api_key = ""
    settings.db_password = ""
    return settings


class FakeClock:
    """Monotonic clock driven by the test."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
