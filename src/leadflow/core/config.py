"""Configuration loaders for the core services.

Leverages pydantic-settings to hydrate runtime configuration from environment
variables, an optional ``.env`` file, or default values. Nested settings classes
mirror infrastructure concerns (datastore, queue, providers) and the tunable
business constants (lead reuse window, question ceilings, lease timeouts).
"""

from __future__ import annotations

from functools import cached_property
from typing import Any

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseAppSettings(BaseSettings):
    """Base settings that looks at environment variables and an optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class PostgresSettings(BaseAppSettings):
    """Postgres connection details."""

    model_config = SettingsConfigDict(
        env_prefix="postgres_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = "localhost"
    port: int = Field(default=5432, ge=1, le=65535)
    database: str = Field(
        default="leadflow",
        validation_alias=AliasChoices("database", "db"),
    )
    user: str = "leadflow"
    password: str = "changeme"
    sslmode: str = "prefer"

    @cached_property
    def dsn(self) -> str:
        """Return a libpq compatible DSN string."""

        return (
            f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"
            f"?sslmode={self.sslmode}"
        )


class RedisSettings(BaseAppSettings):
    """Redis URL used to wake idle workers after an enqueue."""

    model_config = SettingsConfigDict(
        env_prefix="redis_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    url: str | None = "redis://localhost:6379/0"
    wakeup_key: str = "leadflow:jobs:wakeup"


class OpenAISettings(BaseAppSettings):
    """Configuration specific to OpenAI-compatible models."""

    model_config = SettingsConfigDict(
        env_prefix="openai_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    api_key: str | None = None
    model: str = Field(default="gpt-4.1-mini")
    base_url: str | None = None
    timeout_seconds: float = Field(default=30.0, ge=0.1)


class LLMSettings(BaseAppSettings):
    """Generation parameters shared by reply generation."""

    model_config = SettingsConfigDict(
        env_prefix="llm_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=300, ge=1)
    generation_timeout_seconds: float = Field(default=8.0, ge=0.1)


class TelemetrySettings(BaseAppSettings):
    """Shared telemetry configuration."""

    model_config = SettingsConfigDict(
        env_prefix="otel_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    exporter_endpoint: str | None = None
    exporter_headers: str | None = None
    metrics_host: str = "0.0.0.0"
    metrics_port: int | None = None


class GatewaySettings(BaseAppSettings):
    """Webhook secrets and provider credentials for the channel gateway."""

    model_config = SettingsConfigDict(
        env_prefix="gateway_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_version: str = "0.1.0"

    whatsapp_secret: str = "dev-whatsapp"
    instagram_secret: str = "dev-instagram"
    sms_secret: str = "dev-sms"
    web_secret: str = "dev-web"
    verify_token: str = "dev-verify-token"

    whatsapp_token: str | None = None
    whatsapp_phone_number_id: str | None = None
    instagram_token: str | None = None
    graph_base_url: str = "https://graph.facebook.com/v19.0"
    send_timeout_seconds: float = Field(default=10.0, ge=0.1)

    default_country_code: str = Field(default="971", pattern=r"^\d{1,3}$")

    def secret_for(self, channel: str) -> str | None:
        """Return the webhook signing secret for ``channel``."""

        return {
            "whatsapp": self.whatsapp_secret,
            "instagram": self.instagram_secret,
            "sms": self.sms_secret,
            "web": self.web_secret,
        }.get(channel)


class ResolutionSettings(BaseAppSettings):
    """Entity resolution tunables."""

    model_config = SettingsConfigDict(
        env_prefix="resolution_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    lead_reuse_window_days: int = Field(default=30, ge=1)


class FlowSettings(BaseAppSettings):
    """Question ceilings and escape hatch configuration."""

    model_config = SettingsConfigDict(
        env_prefix="flow_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    max_questions: int = Field(default=5, ge=1)
    max_questions_overrides: dict[str, int] = Field(default_factory=dict)
    restricted_nationalities: list[str] = Field(default_factory=list)
    question_window_minutes: int = Field(default=60, ge=1)

    def ceiling_for(self, flow_key: str) -> int:
        """Return the question ceiling configured for ``flow_key``."""

        return self.max_questions_overrides.get(flow_key, self.max_questions)


class QueueSettings(BaseAppSettings):
    """Job queue and worker pool configuration."""

    model_config = SettingsConfigDict(
        env_prefix="queue_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    poll_interval_seconds: float = Field(default=5.0, gt=0)
    batch_size: int = Field(default=10, ge=1)
    worker_count: int = Field(default=2, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    lease_timeout_seconds: int = Field(default=300, ge=1)
    sweep_interval_seconds: int = Field(default=60, ge=1)
    backoff_base_seconds: float = Field(default=2.0, gt=0)
    backoff_max_seconds: float = Field(default=300.0, gt=0)


class DispatchSettings(BaseAppSettings):
    """Conversation lease and outbound reconciliation configuration."""

    model_config = SettingsConfigDict(
        env_prefix="dispatch_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    lock_ttl_seconds: int = Field(default=30, ge=1)
    lock_wait_seconds: float = Field(default=2.0, ge=0)
    lock_poll_seconds: float = Field(default=0.2, gt=0)
    outbound_reconcile_after_seconds: int = Field(default=600, ge=1)


class AppSettings(BaseAppSettings):
    """Top level settings object used by services."""

    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    resolution: ResolutionSettings = Field(default_factory=ResolutionSettings)
    flow: FlowSettings = Field(default_factory=FlowSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)

    @classmethod
    def load(cls, **kwargs: Any) -> AppSettings:
        """Helper factory that mirrors BaseSettings semantics."""

        return cls(**kwargs)
