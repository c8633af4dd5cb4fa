"""
Keyboard Builders.

Inline keyboards for the bot. Handlers and the renderer build rows of
Button dataclasses; to_inline_markup converts them to aiogram markup at
send time.

Example:
    keyboard = get_confirmation_keyboard(CallbackAction.CONFIRM_PAUSE)
    markup = to_inline_markup(keyboard)
"""

from modules.telegram.keyboards.common import (
    button,
    get_back_keyboard,
    get_confirmation_keyboard,
    get_main_menu,
    get_recovery_menu,
    get_retry_keyboard,
    to_inline_markup,
)

__all__ = [
    "button",
    "get_back_keyboard",
    "get_confirmation_keyboard",
    "get_main_menu",
    "get_recovery_menu",
    "get_retry_keyboard",
    "to_inline_markup",
]
