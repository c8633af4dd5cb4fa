"""
Unit Tests for Startup Security Checks.
"""

import pytest

from modules.backend.core.config import AppConfig
from modules.backend.gateway.security.startup_checks import (
    StartupSecurityError,
    run_startup_checks,
)


@pytest.fixture
def app_config():
    return AppConfig()


@pytest.fixture
def production_config(app_config):
    app_config.application.environment = "production"
    app_config.application.debug = False
    app_config.application.telegram.authorized_users = [42]
    return app_config


class TestRunStartupChecks:
    def test_passes_in_development(self, app_config, mock_settings):
        run_startup_checks(app_config, mock_settings)

    def test_passes_in_hardened_production(self, production_config, mock_settings):
        run_startup_checks(production_config, mock_settings)

    def test_rejects_missing_bot_token(self, app_config, mock_settings):
        mock_settings.telegram_bot_token = ""

        with pytest.raises(StartupSecurityError, match="TELEGRAM_BOT_TOKEN"):
            run_startup_checks(app_config, mock_settings)

    def test_short_secret_ignored_without_webhook(self, app_config, mock_settings):
        mock_settings.telegram_webhook_secret = "short"

        run_startup_checks(app_config, mock_settings)

    def test_short_secret_rejected_when_webhook_registered(self, app_config, mock_settings):
        app_config.application.telegram.webhook_base_url = "https://bot.example.com"
        mock_settings.telegram_webhook_secret = "short"

        with pytest.raises(StartupSecurityError, match="TELEGRAM_WEBHOOK_SECRET"):
            run_startup_checks(app_config, mock_settings)

    def test_production_rejects_debug_and_open_access(self, production_config, mock_settings):
        production_config.application.debug = True
        production_config.application.telegram.authorized_users = []

        with pytest.raises(StartupSecurityError) as exc_info:
            run_startup_checks(production_config, mock_settings)

        message = str(exc_info.value)
        assert "2 security check(s) failed" in message
        assert "debug" in message
        assert "authorized_users" in message

    def test_plain_http_webhook_rejected(self, app_config, mock_settings):
        app_config.application.telegram.webhook_base_url = "http://bot.example.com"

        with pytest.raises(StartupSecurityError, match="https"):
            run_startup_checks(app_config, mock_settings)
