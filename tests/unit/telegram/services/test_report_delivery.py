"""
Unit Tests for Scheduled Report Delivery.
"""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from modules.backend.core.exceptions import DeliveryError
from modules.backend.tasks.reports import JobSpec, ReportBuilder
from modules.telegram.renderer import ReportRenderer
from modules.telegram.services.notifications import Sender
from modules.telegram.services.reports import ReportDelivery

NOW = datetime(2024, 1, 16, 9, 0)


def _job(config=None):
    return JobSpec(
        id="daily_42",
        caller_id=42,
        chat_id=4242,
        type="DAILY",
        schedule="daily 09:00",
        timezone="UTC",
        config=config or {},
    )


class TestReportDelivery:
    async def test_builds_renders_and_sends(self, mock_provider, mock_bot):
        delivery = ReportDelivery(ReportBuilder(mock_provider), ReportRenderer(), Sender(mock_bot))

        summary = await delivery(_job(), NOW)

        assert summary["regime"] == "BULL"
        assert summary["messages"] == mock_bot.send_message.await_count
        assert summary["generated_at"] == NOW.isoformat()
        assert all(c.kwargs["chat_id"] == 4242 for c in mock_bot.send_message.await_args_list)

    async def test_applies_stored_preferences(self, mock_provider, mock_bot):
        prefs = {"formatting": {"use_emojis": False, "compact_mode": True}}
        delivery = ReportDelivery(ReportBuilder(mock_provider), ReportRenderer(), Sender(mock_bot))

        await delivery(_job({"preferences": prefs}), NOW)

        text = mock_bot.send_message.await_args_list[0].kwargs["text"]
        assert "🚀 <b>Executive Summary</b>" not in text

    async def test_delivery_errors_propagate(self, mock_provider):
        sender = AsyncMock(spec=Sender)
        sender.send.side_effect = DeliveryError("blocked", chat_id=4242)
        delivery = ReportDelivery(ReportBuilder(mock_provider), ReportRenderer(), sender)

        with pytest.raises(DeliveryError):
            await delivery(_job(), NOW)
