"""
Bot Configuration.

Creates the aiogram Bot used as the outbound transport, publishes the
command menu, and registers or removes the webhook. The bot is owned by
the BotServer; there is no module-level instance.
"""

from typing import TYPE_CHECKING

from modules.backend.core.logging import get_logger

logger = get_logger(__name__)

if TYPE_CHECKING:
    from aiogram import Bot

    from modules.telegram.handlers.router import CommandRegistry


def create_bot(token: str) -> "Bot":
    """
    Create and configure the aiogram Bot instance.

    Args:
        token: Bot token from BotFather

    Returns:
        Bot sending HTML by default

    Raises:
        RuntimeError: If the token is empty
    """
    from aiogram import Bot
    from aiogram.client.default import DefaultBotProperties
    from aiogram.enums import ParseMode

    if not token:
        raise RuntimeError(
            "TELEGRAM_BOT_TOKEN not configured. "
            "Set TELEGRAM_BOT_TOKEN environment variable or configure it in config/.env"
        )

    bot = Bot(token=token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    logger.info("Telegram bot created")
    return bot


async def publish_commands(bot: "Bot", registry: "CommandRegistry") -> None:
    """Publish the registered commands as the bot's command menu."""
    commands = registry.bot_commands()
    await bot.set_my_commands(commands)
    logger.info("Bot command menu published", extra={"commands": [c.command for c in commands]})


async def setup_webhook(bot: "Bot", webhook_url: str, secret_token: str) -> None:
    """
    Configure the webhook for the bot.

    Args:
        bot: Bot instance
        webhook_url: Full webhook URL (e.g., https://example.com/webhook/telegram)
        secret_token: Secret Telegram echoes back in the secret-token header
    """
    await bot.set_webhook(
        url=webhook_url,
        secret_token=secret_token,
        allowed_updates=["message", "callback_query"],
    )
    logger.info("Webhook configured", extra={"webhook_url": webhook_url})


async def cleanup_bot(bot: "Bot", delete_webhook: bool = False) -> None:
    """
    Release bot resources on shutdown.

    Args:
        bot: Bot instance to clean up
        delete_webhook: Also unregister the webhook
    """
    if delete_webhook:
        await bot.delete_webhook()
    await bot.session.close()
    logger.info("Bot session closed")
