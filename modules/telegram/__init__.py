"""
Telegram Bot Module.

Webhook-driven bot running inside the FastAPI application. aiogram's Bot
is used only as the outbound transport; inbound updates are validated and
routed by this package.

Structure:
    modules/telegram/
    ├── server.py            # BotServer: composition root and lifecycle
    ├── gateway.py           # Webhook validation and Update parsing
    ├── webhook.py           # FastAPI route for the webhook
    ├── bot.py               # aiogram Bot creation, command menu, webhook setup
    ├── sessions.py          # Per-caller sessions
    ├── users.py             # Authorization and subscription tiers
    ├── handlers/            # Routers, commands, callbacks
    ├── callbacks/           # CallbackAction enum and 64-byte payload codec
    ├── keyboards/           # Inline keyboards
    ├── renderer/            # Report rendering pipeline
    └── services/            # Sender and scheduled report delivery

Usage:
    server = BotServer.from_config(get_app_config(), get_settings(), get_session_factory())
    await server.start()
"""

from modules.telegram.server import BotServer

__all__ = [
    "BotServer",
]
