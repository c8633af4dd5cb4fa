"""
Application Modules.

- backend/: Core backend services, API, database, configuration
- cli/: Interactive CLI client (Typer + Rich)
- frontend/: Web frontend (templates, static assets)
- telegram/: Telegram bot integration (aiogram v3)
"""
