"""
Handler Context.

Everything a command or callback handler may touch, passed explicitly so
that handlers stay plain async functions:

    async def handler(ctx: HandlerContext) -> list[Message]

Handlers return the messages to send; the BotServer delivers them. A
callback handler may also set `ctx.notice`, the short text shown when the
button press is acknowledged.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from modules.telegram.callbacks.common import CallbackPayload
from modules.telegram.gateway import Update
from modules.telegram.renderer.models import Button, Message, UserPreferences
from modules.telegram.sessions import Session

if TYPE_CHECKING:
    from modules.backend.services.providers import DataProvider, TradingControl
    from modules.backend.tasks.reports import ReportBuilder
    from modules.backend.tasks.scheduler import ReportScheduler
    from modules.telegram.handlers.router import CommandRegistry, CommandRouter
    from modules.telegram.renderer.ab_testing import ABTestManager
    from modules.telegram.renderer.renderer import ReportRenderer
    from modules.telegram.users import UserStore


@dataclass
class BotServices:
    """Collaborators shared by all handlers; owned by the BotServer."""

    provider: "DataProvider"
    control: "TradingControl"
    renderer: "ReportRenderer"
    report_builder: "ReportBuilder"
    users: "UserStore"
    ab_manager: "ABTestManager"
    registry: "CommandRegistry"
    scheduler: "ReportScheduler | None" = None
    command_router: "CommandRouter | None" = None


@dataclass
class HandlerContext:
    update: Update
    session: Session
    services: BotServices
    command: str | None = None
    args: list[str] = field(default_factory=list)
    payload: CallbackPayload | None = None
    notice: str | None = None

    @property
    def caller_id(self) -> int:
        return self.update.caller_id

    @property
    def chat_id(self) -> int:
        return self.update.chat_id or self.update.caller_id

    @property
    def first_name(self) -> str:
        message = self.update.message
        if message is not None and message.first_name:
            return message.first_name
        return "there"

    @property
    def data(self) -> dict[str, Any]:
        """Callback payload data; empty for commands."""
        return self.payload.data if self.payload is not None else {}

    async def preferences(self) -> UserPreferences:
        """Stored report preferences, or defaults for callers without a job."""
        stored = None
        if self.services.scheduler is not None:
            stored = await self.services.scheduler.preferences_for(self.caller_id)
        return UserPreferences.model_validate({**(stored or {}), "caller_id": self.caller_id})


def reply(text: str, keyboard: list[list[Button]] | None = None) -> list[Message]:
    """Single-message response."""
    return [Message(text=text, reply_markup=keyboard)]
