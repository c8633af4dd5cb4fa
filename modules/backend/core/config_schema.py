"""
Configuration Schemas.

One strict model per file in config/settings/ (see CONFIG_SECTIONS in
config.py). Unknown keys are rejected, so a misspelt threshold in
renderer.yaml stops the bot at startup instead of silently using a default.

    ApplicationSchema  → application.yaml
    DatabaseSchema     → database.yaml
    LoggingSchema      → logging.yaml
    SecuritySchema     → security.yaml
    SchedulerSchema    → scheduler.yaml
    RendererSchema     → renderer.yaml
    ProvidersSchema    → providers.yaml
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator


class _StrictBase(BaseModel):
    """Base with extra='forbid' so unknown YAML keys are caught immediately."""

    model_config = ConfigDict(extra="forbid")


# =============================================================================
# application.yaml
# =============================================================================


class ServerSchema(_StrictBase):
    host: str
    port: int


class TimeoutsSchema(_StrictBase):
    external_api: int
    shutdown: int


class TelegramAppSchema(_StrictBase):
    webhook_path: str
    webhook_base_url: str
    authorized_users: list[int]
    subscription_tiers: dict[int, str] = Field(default_factory=dict)
    session_ttl_hours: int = 24
    broadcast_delay_seconds: float = 0.05
    publish_commands: bool = True


class MaintenanceSchema(_StrictBase):
    metrics_interval_seconds: int
    health_interval_seconds: int
    cleanup_interval_seconds: int


class ApplicationSchema(_StrictBase):
    name: str
    version: str
    description: str
    environment: str
    debug: bool
    server: ServerSchema
    timeouts: TimeoutsSchema
    telegram: TelegramAppSchema
    maintenance: MaintenanceSchema


# =============================================================================
# database.yaml
# =============================================================================


class DatabaseSchema(_StrictBase):
    driver: str
    host: str
    port: int
    name: str
    user: str
    pool_size: int
    max_overflow: int
    echo: bool


# =============================================================================
# logging.yaml
# =============================================================================


class ConsoleHandlerSchema(_StrictBase):
    enabled: bool


class FileHandlerSchema(_StrictBase):
    enabled: bool
    path: str
    max_bytes: int
    backup_count: int


class HandlersSchema(_StrictBase):
    console: ConsoleHandlerSchema
    file: FileHandlerSchema


class LoggingSchema(_StrictBase):
    level: str
    format: str
    handlers: HandlersSchema


# =============================================================================
# security.yaml
# =============================================================================


class WebhookSecuritySchema(_StrictBase):
    secret_header: str
    max_body_bytes: int


class RateLimitPolicySchema(_StrictBase):
    window_seconds: int
    max_requests: int


class RateLimitingSchema(_StrictBase):
    block_cap_seconds: int
    stale_after_seconds: int
    policies: dict[str, RateLimitPolicySchema]

    @model_validator(mode="after")
    def _require_general_policy(self) -> "RateLimitingSchema":
        if "general" not in self.policies:
            raise ValueError("rate_limiting.policies must define a 'general' policy")
        return self


class SecretsValidationSchema(_StrictBase):
    webhook_secret_min_length: int


class SecuritySchema(_StrictBase):
    webhook: WebhookSecuritySchema
    rate_limiting: RateLimitingSchema
    secrets_validation: SecretsValidationSchema


# =============================================================================
# scheduler.yaml
# =============================================================================


class SchedulerSchema(_StrictBase):
    enabled: bool
    tick_interval_seconds: int
    max_concurrent_jobs: int
    default_schedule: str
    default_timezone: str


# =============================================================================
# renderer.yaml
# =============================================================================


class ABTestEntrySchema(_StrictBase):
    template: str
    id: str | None = None
    start: bool = True


class ABTestingSchema(_StrictBase):
    min_sample_size: int
    confidence_threshold: float
    minimum_effect_size: float
    tests: list[ABTestEntrySchema] = Field(default_factory=list)


class ExtraButtonSchema(_StrictBase):
    """A report button added to every template, or to the listed regimes."""

    text: str
    action: str
    data: dict[str, str] | None = None
    when: str = "always"
    regimes: list[str] = Field(default_factory=list)


class RendererSchema(_StrictBase):
    max_message_length: int
    buttons_per_row: int
    emergency_drawdown: float
    emergency_daily_move: float
    volatility_threshold: float
    significant_pnl_change: float
    condensed_read_time_seconds: float
    expanded_read_time_seconds: float
    max_condensed_lines: int
    ab_testing: ABTestingSchema
    extra_buttons: list[ExtraButtonSchema] = Field(default_factory=list)


# =============================================================================
# providers.yaml
# =============================================================================


class ProviderRetrySchema(_StrictBase):
    attempts: int
    min_wait_seconds: float
    max_wait_seconds: float


class ProviderBreakerSchema(_StrictBase):
    fail_max: int
    timeout_duration: int


class ProvidersSchema(_StrictBase):
    base_url: str
    timeout_seconds: float
    retry: ProviderRetrySchema
    circuit_breaker: ProviderBreakerSchema
