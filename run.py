#!/usr/bin/env python3
"""
Operator entry point for the report bot.

Usage:
    python run.py --action server --reload -v
    python run.py --action health
    python run.py --action webhook            register the webhook and the command menu
    python run.py --action webhook --delete   switch the bot back to no webhook
    python run.py --action jobs --caller 42   list a caller's scheduled reports
    python run.py --action config
    python run.py --action init-db
    python run.py --action test --test-type unit --coverage
"""

import asyncio
import subprocess
import sys
from pathlib import Path
from typing import NoReturn

import click

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from modules.backend.core.logging import get_logger, log_with_source, setup_logging

logger = get_logger(__name__)


def _fail(message: str, code: int = 1) -> NoReturn:
    click.echo(click.style(message, fg="red"), err=True)
    sys.exit(code)


def run_server(host: str | None, port: int | None, reload: bool, **_) -> None:
    from modules.backend.core.config import get_app_config

    server = get_app_config().application.server
    host, port = host or server.host, port or server.port
    cmd = [sys.executable, "-m", "uvicorn", "modules.backend.main:app", "--host", host, "--port", str(port)]
    if reload:
        cmd.append("--reload")

    log_with_source(logger, "internal", "info", "Starting server", host=host, port=port, reload=reload)
    click.echo(f"Serving webhook on http://{host}:{port} (Ctrl+C to stop)")
    try:
        subprocess.run(cmd, check=True)
    except KeyboardInterrupt:
        pass
    except subprocess.CalledProcessError as e:
        _fail(f"uvicorn exited with {e.returncode}", e.returncode)


def check_health(**_) -> None:
    """Ask a running server for readiness and bot counters."""
    import httpx

    from modules.backend.core.config import get_server_base_url

    base_url, timeout = get_server_base_url()
    try:
        with httpx.Client(base_url=base_url, timeout=timeout, headers={"X-Frontend-ID": "internal"}) as client:
            ready = client.get("/health/ready")
            bot = client.get("/health/bot")
    except httpx.HTTPError as e:
        _fail(f"✗ {base_url} unreachable: {e}")

    if ready.status_code == 200:
        click.echo(click.style("✓ READY", fg="green"))
    else:
        click.echo(click.style(f"✗ NOT READY ({ready.status_code})", fg="red"))
        for name, check in ready.json().get("detail", {}).get("checks", {}).items():
            click.echo(f"    {name}: {check.get('status')} {check.get('error', '')}")

    if bot.status_code == 200:
        for key, value in bot.json()["stats"].items():
            click.echo(f"  {key:<20} {value}")
    else:
        click.echo(click.style(f"  bot stats unavailable ({bot.status_code})", fg="yellow"))

    if ready.status_code != 200:
        sys.exit(1)


def manage_webhook(delete: bool, **_) -> None:
    """Register (or drop) the webhook and publish the command menu."""
    from modules.backend.core.config import get_app_config, get_settings
    from modules.telegram.bot import cleanup_bot, create_bot, publish_commands, setup_webhook
    from modules.telegram.handlers.commands import default_registry

    telegram = get_app_config().application.telegram
    settings = get_settings()
    if not delete and not telegram.webhook_base_url:
        _fail("telegram.webhook_base_url is empty in application.yaml")

    async def _apply() -> str:
        bot = create_bot(settings.telegram_bot_token)
        try:
            if delete:
                await bot.delete_webhook(drop_pending_updates=False)
                return "Webhook removed"
            url = f"{telegram.webhook_base_url.rstrip('/')}{telegram.webhook_path}"
            await setup_webhook(bot, url, settings.telegram_webhook_secret)
            await publish_commands(bot, default_registry())
            return f"Webhook set to {url}"
        finally:
            await cleanup_bot(bot)

    click.echo(click.style(asyncio.run(_apply()), fg="green"))


def list_jobs(caller: int | None, **_) -> None:
    from modules.backend.core.database import dispose_engine, get_session_factory
    from modules.backend.repositories.jobs import JobRepository

    if caller is None:
        _fail("--caller is required for the jobs action")

    async def _load() -> list:
        try:
            async with get_session_factory()() as session:
                return await JobRepository(session).list_for_caller(caller)
        finally:
            await dispose_engine()

    jobs = asyncio.run(_load())
    if not jobs:
        click.echo(f"No scheduled reports for {caller}")
        return
    for job in jobs:
        state = "on " if job.enabled else "off"
        click.echo(f"  [{state}] {job.id:<28} {job.type:<8} {job.schedule:<10} {job.timezone:<18} next {job.next_run}")


def show_config(**_) -> None:
    from modules.backend.core.config import CONFIG_SECTIONS, get_app_config

    try:
        config = get_app_config()
    except (ValueError, FileNotFoundError) as e:
        _fail(f"Configuration invalid: {e}")

    for section in CONFIG_SECTIONS:
        click.echo(click.style(f"[{section}]", bold=True))
        for key, value in getattr(config, section).model_dump().items():
            click.echo(f"  {key}: {value}")
        click.echo()


def init_db(**_) -> None:
    from modules.backend.core.database import create_tables, dispose_engine

    async def _init() -> None:
        try:
            await create_tables()
        finally:
            await dispose_engine()

    asyncio.run(_init())
    click.echo(click.style("Job store tables ready", fg="green"))


def run_tests(test_type: str, coverage: bool, **_) -> None:
    cmd = [sys.executable, "-m", "pytest", "tests/unit" if test_type == "unit" else "tests/", "-v"]
    if coverage:
        cmd += ["--cov=modules", "--cov-report=term-missing"]
    click.echo(" ".join(cmd))
    sys.exit(subprocess.run(cmd).returncode)


ACTIONS = {
    "server": run_server,
    "health": check_health,
    "webhook": manage_webhook,
    "jobs": list_jobs,
    "config": show_config,
    "init-db": init_db,
    "test": run_tests,
}


@click.command()
@click.option("--action", type=click.Choice(list(ACTIONS)), default="health", help="Action to perform.")
@click.option("--verbose", "-v", is_flag=True, help="INFO level logging.")
@click.option("--debug", "-d", is_flag=True, help="DEBUG level logging.")
@click.option("--host", default=None, help="Bind host (server).")
@click.option("--port", default=None, type=int, help="Bind port (server).")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes (server).")
@click.option("--delete", is_flag=True, help="Remove the webhook instead of setting it (webhook).")
@click.option("--caller", default=None, type=int, help="Telegram user id (jobs).")
@click.option("--test-type", type=click.Choice(["all", "unit"]), default="all", help="Suite to run (test).")
@click.option("--coverage", is_flag=True, help="Collect coverage (test).")
def main(action: str, verbose: bool, debug: bool, **options) -> None:
    """Run and operate the trading report bot."""
    if not (PROJECT_ROOT / ".project_root").exists():
        _fail("Error: .project_root not found. Run from project root.")

    level = "DEBUG" if debug else "INFO" if verbose else "WARNING"
    setup_logging(level=level, format_type="console", enable_file_logging=False)
    ACTIONS[action](**options)


if __name__ == "__main__":
    main()
