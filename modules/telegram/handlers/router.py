"""
Command and Callback Routing.

CommandRegistry holds the CommandSpecs the bot understands; CommandRouter
dispatches text messages to them after three checks, in order:

    1. authentication (UserStore)
    2. subscription tier, ranked FREE < PREMIUM < PRO
    3. per-(caller, command) cooldown, recorded only once 1 and 2 pass

CallbackRouter dispatches inline-button presses on the CallbackAction enum.
Every enum member must have a handler; a missing one fails construction.
Unknown actions get the recovery menu.

Handler exceptions never escape a router: application errors are shown to
the caller, anything else becomes a generic "Something went wrong" reply
with a retry button, and both are logged.
"""

import time
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from aiogram.types import BotCommand

from modules.backend.core.exceptions import ApplicationError, ValidationError
from modules.backend.core.keyed_store import KeyedStore
from modules.backend.core.logging import get_logger, log_with_source
from modules.telegram.callbacks.common import CallbackAction, decode_callback, resolve_action
from modules.telegram.handlers.context import HandlerContext, reply
from modules.telegram.keyboards.common import get_recovery_menu, get_retry_keyboard
from modules.telegram.renderer.models import Message
from modules.telegram.users import Tier, UserStore

logger = get_logger(__name__)

Handler = Callable[[HandlerContext], Awaitable[list[Message]]]

NOT_A_COMMAND_HINT = "💡 I respond to commands. Use /help to see what I can do."
UNAUTHORIZED_TEXT = "🔒 You are not authorized to use this command."
ERROR_TEXT = "❌ Something went wrong. Please try again."
UNKNOWN_ACTION_TEXT = "Unknown action"


@dataclass(frozen=True)
class CommandSpec:
    name: str
    description: str
    handler: Handler
    requires_auth: bool = True
    required_tier: Tier | None = None
    cooldown_seconds: float = 0


def parse_command(text: str) -> tuple[str, list[str]] | None:
    """Split "/cmd@botname arg1 arg2" into ("cmd", ["arg1", "arg2"])."""
    text = text.strip()
    if not text.startswith("/"):
        return None
    head, *args = text.split()
    name = head[1:].split("@", 1)[0].lower()
    return (name, args) if name else None


class CommandRegistry:
    """Ordered set of commands; the order is the published menu order."""

    def __init__(self) -> None:
        self._commands: dict[str, CommandSpec] = {}

    def register(self, spec: CommandSpec) -> None:
        if spec.name in self._commands:
            raise ValidationError(f"Command /{spec.name} is already registered")
        self._commands[spec.name] = spec

    def get(self, name: str) -> CommandSpec | None:
        return self._commands.get(name)

    def all(self) -> list[CommandSpec]:
        return list(self._commands.values())

    def __contains__(self, name: object) -> bool:
        return name in self._commands

    def __len__(self) -> int:
        return len(self._commands)

    def bot_commands(self) -> list[BotCommand]:
        return [BotCommand(command=spec.name, description=spec.description) for spec in self._commands.values()]


class CommandRouter:
    """
    Dispatches commands with auth, tier, and cooldown checks.

    Usage:
        router = CommandRouter(registry, users)
        messages = await router.dispatch(ctx)
    """

    def __init__(
        self,
        registry: CommandRegistry,
        users: UserStore,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = registry
        self.users = users
        self._clock = clock
        self._cooldowns: KeyedStore[tuple[int, str], float] = KeyedStore("cooldowns")
        self._usage: Counter[str] = Counter()
        self._errors = 0
        self._handled = 0

    async def dispatch(self, ctx: HandlerContext) -> list[Message]:
        message = ctx.update.message
        parsed = parse_command(message.text) if message is not None else None
        if parsed is None:
            return reply(NOT_A_COMMAND_HINT)

        name, args = parsed
        return await self.invoke(ctx, name, args, text=message.text)

    async def invoke(
        self,
        ctx: HandlerContext,
        name: str,
        args: list[str] | None = None,
        text: str | None = None,
    ) -> list[Message]:
        """
        Run command `name` behind the auth, tier, and cooldown checks.

        Buttons standing in for a command call this directly, so they share
        its cooldown. `text` is remembered for retry when given.
        """
        spec = self.registry.get(name)
        if spec is None:
            return reply(f"❓ Unknown command /{name}. Use /help to see available commands.")

        if spec.requires_auth and not self.users.is_authorized(ctx.caller_id):
            log_with_source(logger, "telegram", "warning", "Unauthorized command", command=name)
            return reply(UNAUTHORIZED_TEXT)

        if spec.required_tier is not None and not self.users.has_tier(ctx.caller_id, spec.required_tier):
            return reply(f"⭐ /{name} requires the {spec.required_tier.value} plan.")

        remaining = await self._start_cooldown(ctx.caller_id, spec)
        if remaining > 0:
            return reply(f"⏳ Please wait {remaining} seconds before using /{name} again.")

        ctx.command = name
        ctx.args = list(args or [])
        ctx.session.current_command = name
        if text is not None:
            ctx.session.data["last_command"] = text
        self._usage[name] += 1
        self._handled += 1

        return await self._run(spec.handler, ctx, command=name)

    async def _start_cooldown(self, caller_id: int, spec: CommandSpec) -> int:
        """Seconds left on the cooldown; records a new one when none is active."""
        if spec.cooldown_seconds <= 0:
            return 0
        key = (caller_id, spec.name)
        async with self._cooldowns.locked(key):
            now = self._clock()
            expires = self._cooldowns.get(key)
            if expires is not None and now < expires:
                return max(1, int(expires - now + 0.999))
            self._cooldowns.set(key, now + spec.cooldown_seconds)
        return 0

    async def _run(self, handler: Handler, ctx: HandlerContext, **log_fields: object) -> list[Message]:
        try:
            return await handler(ctx)
        except ApplicationError as e:
            self._errors += 1
            log_with_source(
                logger, "telegram", "warning", "Handler rejected request",
                error=e.message, error_code=e.code, **log_fields,
            )
            return reply(f"⚠️ {e.message}", get_retry_keyboard())
        except Exception as e:
            self._errors += 1
            log_with_source(
                logger, "telegram", "error", "Handler failed",
                error=str(e), error_type=type(e).__name__, **log_fields,
            )
            return reply(ERROR_TEXT, get_retry_keyboard())

    async def sweep(self) -> int:
        """Drop expired cooldowns."""
        now = self._clock()
        return await self._cooldowns.sweep(lambda _key, expires: expires <= now)

    def popular_commands(self, limit: int = 5) -> list[tuple[str, int]]:
        return self._usage.most_common(limit)

    def stats(self) -> dict[str, object]:
        return {
            "commands_handled": self._handled,
            "command_errors": self._errors,
            "active_cooldowns": len(self._cooldowns),
            "popular_commands": dict(self.popular_commands()),
        }


class CallbackRouter:
    """
    Dispatches button presses by CallbackAction.

    Raises:
        ValidationError: At construction, if any action lacks a handler
    """

    def __init__(
        self,
        handlers: dict[CallbackAction, Handler],
        users: UserStore,
        public_actions: frozenset[CallbackAction] = frozenset(),
    ) -> None:
        missing = [action.value for action in CallbackAction if action not in handlers]
        if missing:
            raise ValidationError("Callback actions without a handler", details={"actions": missing})
        self._handlers = dict(handlers)
        self.users = users
        self.public_actions = public_actions
        self._usage: Counter[str] = Counter()
        self._unknown = 0
        self._errors = 0

    async def dispatch(self, ctx: HandlerContext) -> list[Message]:
        raw = ctx.update.callback.data if ctx.update.callback is not None else ""
        try:
            payload = decode_callback(raw)
        except ValidationError:
            return self._unknown_action(ctx, raw)

        action = resolve_action(payload.action)
        if action is None:
            return self._unknown_action(ctx, payload.action)

        if action not in self.public_actions and not self.users.is_authorized(ctx.caller_id):
            ctx.notice = "🔒 Not authorized"
            return []

        ctx.payload = payload
        self._usage[action.value] += 1
        ctx.session.data["last_callback"] = raw

        try:
            return await self._handlers[action](ctx)
        except ApplicationError as e:
            self._errors += 1
            log_with_source(
                logger, "telegram", "warning", "Callback handler rejected request",
                action=action.value, error=e.message, error_code=e.code,
            )
            ctx.notice = "⚠️ Action failed"
            return reply(f"⚠️ {e.message}", get_retry_keyboard())
        except Exception as e:
            self._errors += 1
            log_with_source(
                logger, "telegram", "error", "Callback handler failed",
                action=action.value, error=str(e), error_type=type(e).__name__,
            )
            ctx.notice = "❌ Error"
            return reply(ERROR_TEXT, get_retry_keyboard())

    def _unknown_action(self, ctx: HandlerContext, action: str) -> list[Message]:
        self._unknown += 1
        log_with_source(logger, "telegram", "warning", "Unknown callback action", action=action)
        ctx.notice = UNKNOWN_ACTION_TEXT
        return reply("🤔 I didn't recognise that action. Where would you like to go?", get_recovery_menu())

    def stats(self) -> dict[str, object]:
        return {
            "callbacks_handled": sum(self._usage.values()),
            "unknown_callbacks": self._unknown,
            "callback_errors": self._errors,
        }
