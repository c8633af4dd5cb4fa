"""
Configuration.

Two sources, nothing hardcoded:

    config/.env             secrets (bot token, webhook secret, API key, DB password)
    config/settings/*.yaml  everything else, one file per section

Each YAML section is validated against its schema in config_schema.py
when AppConfig is built, so a typo in a key fails at startup rather
than on the first report run.
"""

import re
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from modules.backend.core.config_schema import (
    ApplicationSchema,
    DatabaseSchema,
    LoggingSchema,
    ProvidersSchema,
    RendererSchema,
    SchedulerSchema,
    SecuritySchema,
)

PROJECT_MARKER = ".project_root"

# Characters Telegram accepts in setWebhook's secret_token.
_WEBHOOK_SECRET = re.compile(r"^[A-Za-z0-9_-]{1,256}$")


def find_project_root() -> Path:
    """Walk up from the working directory to the first folder holding the marker file."""
    for candidate in (Path.cwd(), *Path.cwd().parents):
        if (candidate / PROJECT_MARKER).exists():
            return candidate
    raise RuntimeError(f"Project root not found. Ensure {PROJECT_MARKER} file exists.")


def validate_project_root() -> Path:
    """find_project_root() for entry scripts: exits with a readable message instead of raising."""
    try:
        return find_project_root()
    except RuntimeError as e:
        raise SystemExit(f"Error: {e}") from e


def load_yaml_config(filename: str) -> dict[str, Any]:
    config_path = find_project_root() / "config" / "settings" / filename
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    with open(config_path) as f:
        return yaml.safe_load(f) or {}


class Settings(BaseSettings):
    """Secrets only. Tunables belong in YAML."""

    telegram_bot_token: str
    telegram_webhook_secret: str
    data_provider_api_key: str = ""
    db_password: str = ""

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("telegram_webhook_secret")
    @classmethod
    def _telegram_charset(cls, value: str) -> str:
        if not _WEBHOOK_SECRET.match(value):
            raise ValueError("webhook secret may only contain A-Z, a-z, 0-9, '_' and '-' (1-256 chars)")
        return value


CONFIG_SECTIONS: dict[str, type] = {
    "application": ApplicationSchema,
    "database": DatabaseSchema,
    "logging": LoggingSchema,
    "security": SecuritySchema,
    "scheduler": SchedulerSchema,
    "renderer": RendererSchema,
    "providers": ProvidersSchema,
}


def _load_validated(schema_cls: type, filename: str) -> Any:
    raw = load_yaml_config(filename)
    try:
        return schema_cls(**raw)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration in {filename}:\n{e}") from e


class AppConfig:
    """
    Typed view over config/settings/.

    Every attribute is loaded from the YAML file of the same name.
    """

    application: ApplicationSchema
    database: DatabaseSchema
    logging: LoggingSchema
    security: SecuritySchema
    scheduler: SchedulerSchema
    renderer: RendererSchema
    providers: ProvidersSchema

    def __init__(self) -> None:
        for section, schema_cls in CONFIG_SECTIONS.items():
            setattr(self, section, _load_validated(schema_cls, f"{section}.yaml"))


@lru_cache
def get_settings() -> Settings:
    return Settings(_env_file=str(find_project_root() / "config" / ".env"))


@lru_cache
def get_app_config() -> AppConfig:
    return AppConfig()


def get_database_url() -> str:
    """
    SQLAlchemy async URL for the job store.

    For SQLite drivers ``name`` is the database file; any other driver is
    addressed by host, port and user with the password from secrets.
    """
    db = get_app_config().database
    if db.driver.startswith("sqlite"):
        return f"{db.driver}:///{db.name}"
    return f"{db.driver}://{db.user}:{get_settings().db_password}@{db.host}:{db.port}/{db.name}"


def get_server_base_url() -> tuple[str, float]:
    """(base_url, timeout_seconds) for talking to the running server, used by the CLI."""
    app = get_app_config().application
    return f"http://{app.server.host}:{app.server.port}", float(app.timeouts.external_api)
