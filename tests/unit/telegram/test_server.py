"""
Unit Tests for the Bot Server.

The server runs with real routers, stores and limiter; only the aiogram Bot
and the trading services are mocked.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from aiogram.exceptions import TelegramBadRequest, TelegramNetworkError

from modules.backend.gateway.security.rate_limiter import GatewayRateLimiter, RateLimitPolicy
from modules.telegram.gateway import WebhookGateway
from modules.telegram.server import BotServer, MaintenanceIntervals
from modules.telegram.services.notifications import Sender
from modules.telegram.sessions import SessionStore

SECRET = "a-sufficiently-long-secret"


@pytest.fixture
def server(services, mock_bot, clock):
    limiter = GatewayRateLimiter(
        policies={
            "general": RateLimitPolicy(60, 5),
            "command": RateLimitPolicy(60, 3),
            "trading": RateLimitPolicy(60, 2),
        },
        clock=clock,
    )
    return BotServer(
        bot=mock_bot,
        services=services,
        gateway=WebhookGateway(secret=SECRET),
        rate_limiter=limiter,
        sessions=SessionStore(),
        sender=Sender(mock_bot),
        maintenance=MaintenanceIntervals(metrics_seconds=3600, health_seconds=3600, cleanup_seconds=3600),
        webhook_url="https://bot.example.com/webhook/telegram",
        webhook_secret=SECRET,
        clock=clock,
    )


def _sent_texts(mock_bot):
    return [c.kwargs["text"] for c in mock_bot.send_message.await_args_list]


class TestHandleMessage:
    async def test_command_is_answered(self, server, message_update, mock_bot):
        messages = await server.handle_update(message_update("/status"))

        assert "Trading Status" in messages[0].text
        mock_bot.send_message.assert_awaited_once()
        assert mock_bot.send_message.await_args.kwargs["chat_id"] == 42
        assert server.sessions.get(42).last_message_id == 1000

    async def test_session_records_last_command(self, server, message_update):
        await server.handle_update(message_update("/balance"))

        assert server.sessions.get(42).data["last_command"] == "/balance"

    async def test_plain_text_gets_hint(self, server, message_update, mock_bot):
        await server.handle_update(message_update("what's up?"))

        assert _sent_texts(mock_bot) == ["💡 I respond to commands. Use /help to see what I can do."]

    async def test_commands_share_a_budget(self, server, message_update, mock_bot, mock_provider):
        for text in ("/help", "/start", "/status", "/balance"):
            await server.handle_update(message_update(text))

        texts = _sent_texts(mock_bot)
        assert texts[-1].startswith("⏳ Too many requests. Please wait")
        mock_provider.get_portfolio_snapshot.assert_not_awaited()
        assert server.stats()["rate_limited"] == 1

    async def test_plain_text_counts_against_general_only(self, server, message_update, mock_bot):
        for _ in range(5):
            await server.handle_update(message_update("hi"))
        messages = await server.handle_update(message_update("hi"))

        assert messages[0].text.startswith("⏳ Too many requests.")

    async def test_limits_are_per_caller(self, server, message_update, users):
        users.authorize(7)
        for text in ("/help", "/start", "/status"):
            await server.handle_update(message_update(text))

        messages = await server.handle_update(message_update("/status", caller_id=7))

        assert "Trading Status" in messages[0].text

    async def test_delivery_failure_is_counted(self, server, message_update, mock_bot):
        mock_bot.send_message.side_effect = TelegramBadRequest(method=MagicMock(), message="chat not found")

        messages = await server.handle_update(message_update("/status"))

        assert messages
        assert server.stats()["delivery_failures"] == 1
        assert server.sessions.get(42).last_message_id is None


class TestHandleCallback:
    async def test_callback_is_answered_with_notice(self, server, callback_update, mock_bot, mock_provider):
        await server.handle_update(callback_update("confirm_pause_trading"))

        mock_provider.pause_trading.assert_awaited_once_with(42)
        mock_bot.answer_callback_query.assert_awaited_once_with(
            callback_query_id="cb-1", text="⏸ Paused", show_alert=False,
        )
        assert _sent_texts(mock_bot) == ["✅ Pause trading succeeded.\nTrading paused"]

    async def test_unauthorized_callback_sends_nothing(self, server, callback_update, mock_bot):
        messages = await server.handle_update(callback_update("balance", caller_id=666))

        assert messages == []
        mock_bot.send_message.assert_not_awaited()
        assert mock_bot.answer_callback_query.await_args.kwargs["text"] == "🔒 Not authorized"

    async def test_trading_actions_have_a_tighter_limit(self, server, callback_update, mock_bot, mock_provider):
        for _ in range(3):
            await server.handle_update(callback_update("confirm_pause_trading"))

        assert mock_provider.pause_trading.await_count == 2
        last = mock_bot.answer_callback_query.await_args.kwargs
        assert last["text"].startswith("⏳ Too many requests.")
        assert last["show_alert"] is True

    async def test_navigation_is_not_trading_limited(self, server, callback_update, mock_bot):
        for _ in range(4):
            await server.handle_update(callback_update("status"))

        assert mock_bot.send_message.await_count == 4


class TestLifecycle:
    async def test_start_publishes_and_registers_webhook(self, server, mock_bot, mock_provider):
        mock_provider.aclose = AsyncMock()

        await server.start()
        try:
            assert server.is_running
            mock_bot.set_my_commands.assert_awaited_once()
            published = [c.command for c in mock_bot.set_my_commands.await_args.args[0]]
            assert published[:2] == ["start", "help"]
            mock_bot.set_webhook.assert_awaited_once_with(
                url="https://bot.example.com/webhook/telegram",
                secret_token=SECRET,
                allowed_updates=["message", "callback_query"],
            )
        finally:
            await server.stop()

        assert not server.is_running
        mock_provider.aclose.assert_awaited_once()
        mock_bot.session.close.assert_awaited_once()

    async def test_start_survives_bot_api_errors(self, server, mock_bot, mock_provider):
        mock_provider.aclose = AsyncMock()
        mock_bot.set_my_commands.side_effect = TelegramNetworkError(method=MagicMock(), message="timeout")
        mock_bot.set_webhook.side_effect = TelegramBadRequest(method=MagicMock(), message="bad webhook")

        await server.start()
        assert server.is_running
        await server.stop()

    async def test_starts_and_stops_scheduler(self, server, services, mock_provider):
        mock_provider.aclose = AsyncMock()
        scheduler = MagicMock()
        scheduler.stop = AsyncMock()
        services.scheduler = scheduler

        await server.start()
        await server.stop()

        scheduler.start.assert_called_once()
        scheduler.stop.assert_awaited_once()


class TestMaintenance:
    async def test_health_check(self, server, mock_bot):
        assert await server.check_health() == {"bot_api": True, "scheduler": None}

        mock_bot.get_me.side_effect = TelegramNetworkError(method=MagicMock(), message="down")
        assert (await server.check_health())["bot_api"] is False

    async def test_health_check_restarts_scheduler(self, server, services):
        scheduler = MagicMock()
        scheduler.is_running = False
        services.scheduler = scheduler

        await server.check_health()

        scheduler.start.assert_called_once()

    async def test_cleanup(self, server, message_update, clock):
        await server.handle_update(message_update("/status"))

        clock.advance(7200)
        evicted = await server.cleanup()

        assert set(evicted) == {"sessions", "rate_limits", "cooldowns"}
        assert evicted["rate_limits"] == 2

    async def test_stats(self, server, message_update, callback_update):
        await server.handle_update(message_update("/status"))
        await server.handle_update(callback_update("nonsense"))

        stats = server.stats()

        assert stats["updates_handled"] == 2
        assert stats["commands_handled"] == 1
        assert stats["unknown_callbacks"] == 1
        assert stats["active_users"] == 1
        assert stats["delivery"]["messages_sent"] == 2
        assert stats["scheduler"] is None


class TestFromConfig:
    def test_builds_from_application_config(self, mock_settings, mock_bot, mock_provider):
        from modules.backend.core.config import AppConfig

        server = BotServer.from_config(
            AppConfig(), mock_settings, MagicMock(), bot=mock_bot, provider=mock_provider,
        )

        assert server.bot is mock_bot
        assert server.services.provider is mock_provider
        assert server.services.command_router is server.command_router
        assert server.webhook_url is None
        assert len(server.services.registry) == 10

    def test_renderer_yaml_tests_and_buttons_are_loaded(self, mock_settings, mock_bot, mock_provider):
        from modules.backend.core.config import AppConfig
        from modules.telegram.renderer.ab_testing import ABTestStatus
        from modules.telegram.renderer.models import Regime
        from modules.telegram.renderer.templates import interactive_elements_for

        server = BotServer.from_config(
            AppConfig(), mock_settings, MagicMock(), bot=mock_bot, provider=mock_provider,
        )

        ab_manager = server.services.ab_manager
        assert ab_manager.get_test("concise_vs_detailed").status is ABTestStatus.DRAFT
        assert server.services.renderer.ab_manager is ab_manager
        extra = server.services.renderer.settings.extra_elements
        bear_actions = [e.action.value for e in interactive_elements_for(Regime.BEAR, extra)]
        assert "emergency_risk_review" in bear_actions

    async def test_registered_secret_token_passes_gateway(self, mock_settings, mock_bot, mock_provider):
        import json

        from modules.backend.core.config import AppConfig
        from modules.telegram.bot import setup_webhook
        from modules.telegram.gateway import Update

        server = BotServer.from_config(
            AppConfig(), mock_settings, MagicMock(), bot=mock_bot, provider=mock_provider,
        )
        await setup_webhook(mock_bot, "https://bot.example.com/webhook/telegram", server.webhook_secret)
        token = mock_bot.set_webhook.await_args.kwargs["secret_token"]
        body = json.dumps({
            "update_id": 1,
            "message": {"message_id": 1, "from": {"id": 42}, "chat": {"id": 42}, "text": "/start"},
        }).encode()

        result = server.gateway.process(
            body, {"Content-Type": "application/json", "X-Telegram-Bot-Api-Secret-Token": token},
        )

        assert isinstance(result, Update)
