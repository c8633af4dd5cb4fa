"""
Scheduled Report Delivery.

The job runner the ReportScheduler calls for each due job: build the
caller's ReportData, render it with their stored preferences and the
running A/B tests, and send it to the job's chat.

Errors propagate to the scheduler, which records them against the job.
"""

from datetime import datetime
from typing import Any

from modules.backend.core.logging import get_logger, log_with_source
from modules.backend.tasks.reports import JobSpec, ReportBuilder, report_summary
from modules.telegram.renderer.models import UserPreferences
from modules.telegram.renderer.regimes import select_regime
from modules.telegram.renderer.renderer import ReportRenderer
from modules.telegram.services.notifications import Sender

logger = get_logger(__name__)


class ReportDelivery:
    """
    Renders and sends one scheduled report.

    Usage:
        delivery = ReportDelivery(builder, renderer, sender)
        scheduler = ReportScheduler(session_factory, delivery)
    """

    def __init__(self, builder: ReportBuilder, renderer: ReportRenderer, sender: Sender) -> None:
        self.builder = builder
        self.renderer = renderer
        self.sender = sender

    async def __call__(self, job: JobSpec, now: datetime) -> dict[str, Any]:
        data = await self.builder.build(job.caller_id, now)
        preferences = UserPreferences.model_validate(
            {**job.config.get("preferences", {}), "caller_id": job.caller_id},
        )

        messages = self.renderer.render(data, preferences)
        message_ids = await self.sender.send(job.chat_id, messages)

        regime = select_regime(data, self.renderer.settings.thresholds)
        log_with_source(
            logger, "tasks", "info", "Scheduled report delivered",
            job_id=job.id,
            chat_id=job.chat_id,
            regime=regime.value,
            messages=len(message_ids),
        )
        return report_summary(data, regime.value, len(message_ids))
