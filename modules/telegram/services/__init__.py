"""
Telegram Bot Services.

Outbound delivery: the Sender for rendered messages and the runner that
delivers scheduled reports.
"""

from modules.telegram.services.notifications import NotificationResult, Sender
from modules.telegram.services.reports import ReportDelivery

__all__ = [
    "NotificationResult",
    "ReportDelivery",
    "Sender",
]
