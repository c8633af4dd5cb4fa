"""
Notification Service.

Delivers rendered messages through the aiogram Bot.

Transient transport failures (flood control, network errors) are retried
with tenacity; flood control waits the number of seconds Telegram asks
for. Anything still failing becomes a DeliveryError for the chat.
Broadcasts pace their sends and collect per-recipient results instead of
raising.

Usage:
    sender = Sender(bot, broadcast_delay_seconds=0.05)
    await sender.send(chat_id, messages)
    results = await sender.broadcast([123, 456], messages)
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from aiogram.exceptions import TelegramAPIError, TelegramNetworkError, TelegramRetryAfter
from aiogram.types import LinkPreviewOptions
from tenacity import wait_exponential

from modules.backend.core.exceptions import DeliveryError
from modules.backend.core.logging import get_logger, log_with_source
from modules.backend.core.resilience import create_retrying
from modules.backend.core.utils import utc_now
from modules.telegram.keyboards.common import to_inline_markup
from modules.telegram.renderer.models import Message

logger = get_logger(__name__)

RETRYABLE_ERRORS = (TelegramRetryAfter, TelegramNetworkError)

_backoff = wait_exponential(multiplier=0.5, min=0.5, max=4)


def _telegram_wait(retry_state: Any) -> float:
    """Honor flood-control delays, back off exponentially otherwise."""
    error = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(error, TelegramRetryAfter):
        return float(error.retry_after)
    return _backoff(retry_state)


@dataclass
class NotificationResult:
    """Result of delivering messages to one chat."""

    success: bool
    chat_id: int
    message_ids: list[int] = field(default_factory=list)
    error: str | None = None
    timestamp: datetime = field(default_factory=utc_now)


class Sender:
    """Sends Message chunks to chats through an aiogram Bot."""

    def __init__(
        self,
        bot: Any,
        broadcast_delay_seconds: float = 0.05,
        retry_attempts: int = 3,
    ) -> None:
        self.bot = bot
        self.broadcast_delay_seconds = broadcast_delay_seconds
        self.retry_attempts = retry_attempts
        self._stats = {"messages_sent": 0, "delivery_failures": 0}

    async def _send_one(self, chat_id: int, message: Message) -> int:
        async for attempt in create_retrying(
            RETRYABLE_ERRORS, attempts=self.retry_attempts, wait=_telegram_wait, dependency="telegram",
        ):
            with attempt:
                sent = await self.bot.send_message(
                    chat_id=chat_id,
                    text=message.text,
                    parse_mode=message.parse_mode,
                    link_preview_options=LinkPreviewOptions(is_disabled=message.disable_link_preview),
                    reply_markup=to_inline_markup(message.reply_markup),
                )
                return sent.message_id

    async def send(self, chat_id: int, messages: list[Message]) -> list[int]:
        """
        Send messages to one chat in order.

        Returns:
            Telegram message ids of the sent messages

        Raises:
            DeliveryError: If a message cannot be delivered after retries
        """
        message_ids: list[int] = []
        for index, message in enumerate(messages):
            try:
                message_ids.append(await self._send_one(chat_id, message))
            except TelegramAPIError as e:
                self._stats["delivery_failures"] += 1
                log_with_source(
                    logger, "telegram", "error", "Message delivery failed",
                    chat_id=chat_id,
                    chunk=index,
                    chunks=len(messages),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise DeliveryError(f"Failed to deliver message to chat {chat_id}: {e}", chat_id=chat_id) from e
            self._stats["messages_sent"] += 1

        log_with_source(logger, "telegram", "debug", "Messages delivered", chat_id=chat_id, count=len(message_ids))
        return message_ids

    async def answer_callback(self, callback_id: str, text: str | None = None, show_alert: bool = False) -> bool:
        """Acknowledge a button press; a failed acknowledgement is logged, not raised."""
        try:
            await self.bot.answer_callback_query(callback_query_id=callback_id, text=text, show_alert=show_alert)
        except TelegramAPIError as e:
            log_with_source(
                logger, "telegram", "warning", "Callback answer failed",
                callback_id=callback_id,
                error=str(e),
            )
            return False
        return True

    async def broadcast(
        self,
        chat_ids: list[int],
        messages: list[Message],
        delay_between: float | None = None,
    ) -> list[NotificationResult]:
        """
        Send the same messages to several chats.

        Args:
            chat_ids: Recipients
            messages: Messages to deliver to each recipient
            delay_between: Pause between recipients; defaults to broadcast_delay_seconds

        Returns:
            One NotificationResult per recipient, in order
        """
        delay = self.broadcast_delay_seconds if delay_between is None else delay_between
        results = []

        for index, chat_id in enumerate(chat_ids):
            try:
                message_ids = await self.send(chat_id, messages)
                results.append(NotificationResult(success=True, chat_id=chat_id, message_ids=message_ids))
            except DeliveryError as e:
                results.append(NotificationResult(success=False, chat_id=chat_id, error=e.message))

            # Pace sends to stay under Telegram's global rate limit
            if delay > 0 and index < len(chat_ids) - 1:
                await asyncio.sleep(delay)

        success_count = sum(1 for r in results if r.success)
        log_with_source(
            logger,
            "telegram",
            "info",
            "Broadcast completed",
            total=len(chat_ids),
            success=success_count,
            failed=len(chat_ids) - success_count,
        )
        return results

    def stats(self) -> dict[str, int]:
        return dict(self._stats)
