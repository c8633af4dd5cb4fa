"""
Common Keyboard Builders.

Converts rendered button rows into aiogram inline markup and builds the
menus shared by several handlers: the recovery menu shown after unknown
actions, the retry button attached to error replies, and confirmation
prompts for trading controls.
"""

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from modules.telegram.callbacks.common import CallbackAction, encode_callback
from modules.telegram.renderer.models import Button


def to_inline_markup(rows: list[list[Button]] | None) -> InlineKeyboardMarkup | None:
    """
    Build aiogram markup from rows of rendered buttons.

    Args:
        rows: Button rows as produced by the renderer or the menu builders

    Returns:
        InlineKeyboardMarkup, or None when there are no buttons
    """
    if not rows:
        return None

    builder = InlineKeyboardBuilder()
    for row in rows:
        if not row:
            continue
        builder.row(*(
            InlineKeyboardButton(text=b.text, callback_data=b.callback_data) for b in row
        ))

    markup = builder.as_markup()
    return markup if markup.inline_keyboard else None


def button(text: str, action: CallbackAction, data: dict | None = None) -> Button:
    """Create a button whose callback data is encoded for `action`."""
    return Button(text=text, callback_data=encode_callback(action, data))


def get_recovery_menu() -> list[list[Button]]:
    """Quick navigation offered when an action cannot be handled."""
    return [
        [
            button("📊 Status", CallbackAction.BACK_TO_STATUS),
            button("💰 Balance", CallbackAction.BACK_TO_BALANCE),
        ],
        [
            button("⚙️ Settings", CallbackAction.BACK_TO_SETTINGS),
            button("❓ Help", CallbackAction.BACK_TO_HELP),
        ],
    ]


def get_retry_keyboard() -> list[list[Button]]:
    """Single retry button attached to error replies."""
    return [[button("🔄 Try again", CallbackAction.RETRY_LAST_COMMAND)]]


def get_confirmation_keyboard(confirm: CallbackAction, data: dict | None = None) -> list[list[Button]]:
    """
    Build a confirm/cancel pair for a trading control action.

    Args:
        confirm: Action dispatched when the caller confirms
        data: Optional payload carried by the confirm button

    Returns:
        One row with confirm and cancel buttons
    """
    return [
        [
            button("✅ Confirm", confirm, data),
            button("❌ Cancel", CallbackAction.CANCEL_CONTROL),
        ],
    ]


def get_main_menu() -> list[list[Button]]:
    """Menu attached to /start and /help."""
    return [
        [
            button("📊 Status", CallbackAction.STATUS_REFRESH),
            button("💰 Balance", CallbackAction.BALANCE_REFRESH),
        ],
        [
            button("📈 Full Report", CallbackAction.SHOW_FULL_REPORT),
            button("⚙️ Settings", CallbackAction.SETTINGS),
        ],
    ]


def get_back_keyboard(target: CallbackAction) -> list[list[Button]]:
    """Single back button returning to a view."""
    return [[button("⬅️ Back", target)]]
