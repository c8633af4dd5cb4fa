"""
Structured logging for the bot.

Every module logs through get_logger(); nothing creates a standalone
logger. Settings come from config/settings/logging.yaml and the
arguments of setup_logging() override them.

A JSON record carries timestamp, level, logger, event, func_name and
lineno, plus whatever the caller adds. Two fields matter for reading
the single log file (logs/system.jsonl):

    source      - web, telegram, tasks or internal, always set explicitly
    caller_id   - bound for the duration of one update via bound_context()

Usage:
    from modules.backend.core.logging import bound_context, get_logger, log_with_source

    logger = get_logger(__name__)
    log_with_source(logger, "telegram", "info", "Update received", chat_id=123)

    with bound_context(caller_id=42, update_id=1001):
        ...
"""

import logging
import re
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog
from structlog.typing import EventDict, Processor

from modules.backend.core.config import find_project_root, load_yaml_config

VALID_SOURCES = frozenset({"web", "telegram", "tasks", "internal", "unknown"})

# Third-party loggers that are chatty at INFO.
QUIET_LOGGERS = ("aiogram.event", "uvicorn.access", "sqlalchemy.engine", "httpx")

_BOT_TOKEN = re.compile(r"(?<!\d)\d{6,}:[A-Za-z0-9_-]{30,}")

_logging_config: dict[str, Any] | None = None


def _get_logging_config() -> dict[str, Any]:
    global _logging_config
    if _logging_config is None:
        _logging_config = load_yaml_config("logging.yaml")
    return _logging_config


def _resolve_log_path(configured_path: str) -> Path:
    return find_project_root() / configured_path


def redact_bot_token(_logger: Any, _method: str, event_dict: EventDict) -> EventDict:
    """Mask Telegram bot tokens, which appear in Bot API URLs inside error text."""
    for key, value in event_dict.items():
        if isinstance(value, str) and _BOT_TOKEN.search(value):
            event_dict[key] = _BOT_TOKEN.sub("<bot-token>", value)
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.FUNC_NAME,
                structlog.processors.CallsiteParameter.LINENO,
            ],
        ),
        redact_bot_token,
    ]


def _formatter(renderer: Processor, pre_chain: list[Processor]) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=pre_chain)


def setup_logging(
    level: str | None = None,
    format_type: str | None = None,
    enable_console: bool | None = None,
    enable_file_logging: bool | None = None,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Any argument left as None falls back to logging.yaml. The file handler
    always writes JSON; the console follows ``format`` (json or console).
    Calling this again replaces the previous handlers.
    """
    config = _get_logging_config()
    handlers_config = config["handlers"]

    level = level or config["level"]
    format_type = format_type or config["format"]
    if enable_console is None:
        enable_console = handlers_config["console"]["enabled"]
    if enable_file_logging is None:
        enable_file_logging = handlers_config["file"]["enabled"]

    pre_chain = _shared_processors()
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    json_formatter = _formatter(structlog.processors.JSONRenderer(), pre_chain)
    handlers: list[logging.Handler] = []

    if enable_console:
        console = logging.StreamHandler(sys.stdout)
        if format_type == "console":
            console.setFormatter(_formatter(structlog.dev.ConsoleRenderer(colors=True), pre_chain))
        else:
            console.setFormatter(json_formatter)
        handlers.append(console)

    if enable_file_logging:
        file_config = handlers_config["file"]
        log_path = _resolve_log_path(file_config["path"])
        log_path.parent.mkdir(parents=True, exist_ok=True)
        rotating = RotatingFileHandler(
            filename=str(log_path),
            maxBytes=file_config["max_bytes"],
            backupCount=file_config["backup_count"],
            encoding="utf-8",
        )
        rotating.setFormatter(json_formatter)
        handlers.append(rotating)

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    for old in list(root.handlers):
        root.removeHandler(old)
    for handler in handlers:
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)


def log_with_source(logger: Any, source: str, level: str, message: str, **kwargs: Any) -> None:
    """
    Log with an explicit ``source`` field.

    Used wherever there is no HTTP request to infer one from: update
    handlers, report jobs, maintenance ticks. An unknown level name
    raises AttributeError.
    """
    getattr(logger, level.lower())(message, source=source, **kwargs)


@contextmanager
def bound_context(**fields: Any) -> Iterator[None]:
    """Bind fields to every record emitted inside the block, then restore."""
    tokens = structlog.contextvars.bind_contextvars(**fields)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
