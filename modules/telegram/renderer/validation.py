"""
Message Validation.

Platform limits every outbound message must satisfy before it is sent.
"""

from modules.backend.core.exceptions import RenderError
from modules.telegram.callbacks.common import MAX_CALLBACK_BYTES
from modules.telegram.renderer.chunking import TELEGRAM_MAX_MESSAGE_LENGTH
from modules.telegram.renderer.models import Message

MAX_BUTTONS_PER_ROW = 8
MAX_BUTTONS_TOTAL = 100
MAX_BUTTON_TEXT_LENGTH = 64


def message_errors(message: Message, max_length: int = TELEGRAM_MAX_MESSAGE_LENGTH) -> list[str]:
    """Return every limit `message` violates; empty when valid."""
    errors: list[str] = []

    if not message.text.strip():
        errors.append("text is empty")
    if len(message.text) > max_length:
        errors.append(f"text is {len(message.text)} characters (limit {max_length})")

    rows = message.reply_markup or []
    if message.button_count > MAX_BUTTONS_TOTAL:
        errors.append(f"{message.button_count} buttons (limit {MAX_BUTTONS_TOTAL})")

    for row_index, row in enumerate(rows):
        if len(row) > MAX_BUTTONS_PER_ROW:
            errors.append(f"row {row_index} has {len(row)} buttons (limit {MAX_BUTTONS_PER_ROW})")
        for button in row:
            if not 1 <= len(button.text) <= MAX_BUTTON_TEXT_LENGTH:
                errors.append(f"button text length {len(button.text)} outside 1..{MAX_BUTTON_TEXT_LENGTH}")
            if len(button.callback_data.encode("utf-8")) > MAX_CALLBACK_BYTES:
                errors.append(f"callback data for '{button.text}' exceeds {MAX_CALLBACK_BYTES} bytes")

    return errors


def validate_messages(messages: list[Message], max_length: int = TELEGRAM_MAX_MESSAGE_LENGTH) -> None:
    """
    Raises:
        RenderError: Listing every violation across all messages
    """
    errors = [
        f"message {i}: {error}"
        for i, message in enumerate(messages)
        for error in message_errors(message, max_length)
    ]
    if not messages:
        errors.append("no messages rendered")
    if errors:
        raise RenderError("Rendered messages violate platform limits", errors=errors)
