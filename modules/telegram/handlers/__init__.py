"""
Telegram Bot Handlers.

Handler Organization:
- router.py: CommandRegistry, CommandRouter, CallbackRouter
- commands.py: the default commands and their registry
- callbacks.py: one handler per CallbackAction
- views.py: screens shared by commands and callbacks
- context.py: HandlerContext passed to every handler

Adding a Command:
1. Write `async def cmd_x(ctx: HandlerContext) -> list[Message]` in commands.py
2. Add a CommandSpec to DEFAULT_COMMANDS

Adding a Callback:
1. Add a member to CallbackAction
2. Map it to a handler in CALLBACK_HANDLERS (the router checks this at startup)
"""

from modules.telegram.handlers.callbacks import CALLBACK_HANDLERS, PUBLIC_ACTIONS, TRADING_ACTIONS
from modules.telegram.handlers.commands import DEFAULT_COMMANDS, TRADING_COMMANDS, default_registry
from modules.telegram.handlers.context import BotServices, HandlerContext, reply
from modules.telegram.handlers.router import (
    CallbackRouter,
    CommandRegistry,
    CommandRouter,
    CommandSpec,
    parse_command,
)

__all__ = [
    "CALLBACK_HANDLERS",
    "DEFAULT_COMMANDS",
    "PUBLIC_ACTIONS",
    "TRADING_ACTIONS",
    "TRADING_COMMANDS",
    "BotServices",
    "CallbackRouter",
    "CommandRegistry",
    "CommandRouter",
    "CommandSpec",
    "HandlerContext",
    "default_registry",
    "parse_command",
    "reply",
]
