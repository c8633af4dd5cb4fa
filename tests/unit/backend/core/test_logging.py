"""
Unit Tests for Structured Logging.
"""

import logging
from unittest.mock import MagicMock, patch

import pytest
import structlog


@pytest.fixture
def logging_config():
    return {
        "level": "INFO",
        "format": "json",
        "handlers": {
            "console": {"enabled": True},
            "file": {
                "enabled": True,
                "path": "logs/system.jsonl",
                "max_bytes": 10485760,
                "backup_count": 5,
            },
        },
    }


class TestValidSources:
    def test_sources_cover_bot_contexts(self):
        from modules.backend.core.logging import VALID_SOURCES

        assert {"web", "telegram", "tasks", "internal"} <= VALID_SOURCES
        assert isinstance(VALID_SOURCES, frozenset)


class TestLoggingConfigLoading:
    def test_config_is_cached(self):
        """Should read logging.yaml once and reuse it."""
        from modules.backend.core import logging as logging_module

        logging_module._logging_config = None
        try:
            with patch(
                "modules.backend.core.logging.load_yaml_config",
                return_value={"level": "INFO"},
            ) as loader:
                first = logging_module._get_logging_config()
                second = logging_module._get_logging_config()

            assert first is second
            loader.assert_called_once_with("logging.yaml")
        finally:
            logging_module._logging_config = None

    def test_missing_file_propagates(self):
        from modules.backend.core import logging as logging_module

        logging_module._logging_config = None
        try:
            with patch(
                "modules.backend.core.logging.load_yaml_config",
                side_effect=FileNotFoundError("Configuration file not found: logging.yaml"),
            ):
                with pytest.raises(FileNotFoundError, match="logging.yaml"):
                    logging_module._get_logging_config()
        finally:
            logging_module._logging_config = None


class TestSetupLogging:
    def test_override_level(self, logging_config):
        from modules.backend.core.logging import setup_logging

        with patch("modules.backend.core.logging._get_logging_config", return_value=logging_config):
            setup_logging(level="DEBUG", enable_file_logging=False)

        assert logging.getLogger().level == logging.DEBUG

    def test_config_defaults(self, logging_config):
        from modules.backend.core.logging import setup_logging

        with patch("modules.backend.core.logging._get_logging_config", return_value=logging_config):
            setup_logging(enable_file_logging=False)

        root_logger = logging.getLogger()
        assert root_logger.level == logging.INFO
        assert "StreamHandler" in [type(h).__name__ for h in root_logger.handlers]

    def test_file_handler(self, tmp_path, logging_config):
        """Should write a single rotating JSONL file."""
        from modules.backend.core.logging import setup_logging

        log_file = tmp_path / "logs" / "system.jsonl"
        with patch("modules.backend.core.logging._get_logging_config", return_value=logging_config), \
             patch("modules.backend.core.logging._resolve_log_path", return_value=log_file):
            setup_logging(format_type="json", enable_file_logging=True)

        handler_types = [type(h).__name__ for h in logging.getLogger().handlers]
        assert handler_types.count("RotatingFileHandler") == 1
        assert log_file.parent.exists()

    def test_quiets_aiogram_event_logger(self, logging_config):
        from modules.backend.core.logging import setup_logging

        with patch("modules.backend.core.logging._get_logging_config", return_value=logging_config):
            setup_logging(level="DEBUG", enable_file_logging=False)

        assert logging.getLogger("aiogram.event").level == logging.WARNING


class TestLogWithSource:
    def test_adds_source_field(self):
        from modules.backend.core.logging import get_logger, log_with_source

        logger = get_logger("test")
        mock_info = MagicMock()

        with patch.object(logger, "info", mock_info):
            log_with_source(logger, "telegram", "info", "Update received", chat_id=42)

        mock_info.assert_called_once_with("Update received", source="telegram", chat_id=42)

    def test_invalid_level_raises(self):
        from modules.backend.core.logging import get_logger, log_with_source

        with pytest.raises(AttributeError):
            log_with_source(get_logger("test"), "tasks", "nonexistent_level", "Test")


class TestBoundContext:
    def test_fields_bound_inside_block_only(self):
        from modules.backend.core.logging import bound_context

        with bound_context(caller_id=42, update_id=1001):
            bound = structlog.contextvars.get_contextvars()
            assert bound["caller_id"] == 42
            assert bound["update_id"] == 1001

        after = structlog.contextvars.get_contextvars()
        assert "caller_id" not in after
        assert "update_id" not in after

    def test_unbinds_on_exception(self):
        from modules.backend.core.logging import bound_context

        with pytest.raises(RuntimeError):
            with bound_context(caller_id=7):
                raise RuntimeError("boom")

        assert "caller_id" not in structlog.contextvars.get_contextvars()


class TestResolveLogPath:
    def test_relative_to_project_root(self, tmp_path):
        from modules.backend.core.logging import _resolve_log_path

        with patch("modules.backend.core.logging.find_project_root", return_value=tmp_path):
            assert _resolve_log_path("logs/system.jsonl") == tmp_path / "logs" / "system.jsonl"


class TestRedactBotToken:
    def test_masks_token_in_any_string_field(self):
        from modules.backend.core.logging import redact_bot_token

        token = "123456789:AAHdqTcvCH1vGWJxfSeofSAs0K5PALDsaw"
        event = {
            "event": "Request failed",
            "error": f"POST https://api.telegram.org/bot{token}/sendMessage timed out",
            "chat_id": 42,
        }

        result = redact_bot_token(None, "error", event)

        assert token not in result["error"]
        assert "<bot-token>" in result["error"]
        assert result["chat_id"] == 42

    def test_leaves_ordinary_text_alone(self):
        from modules.backend.core.logging import redact_bot_token

        event = {"event": "Report sent", "job_id": "12:30 daily"}

        assert redact_bot_token(None, "info", dict(event)) == event


class TestQuietLoggers:
    def test_all_quieted(self, logging_config):
        from modules.backend.core.logging import QUIET_LOGGERS, setup_logging

        with patch("modules.backend.core.logging._get_logging_config", return_value=logging_config):
            setup_logging(enable_file_logging=False)

        assert all(logging.getLogger(name).level == logging.WARNING for name in QUIET_LOGGERS)
