"""Application settings loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env(key: str, default: str = "") -> str:
    return os.environ.get(key, default)


def _env_float(key: str, default: float) -> float:
    raw = _env(key)
    return float(raw) if raw else default


def _env_int(key: str, default: int) -> int:
    raw = _env(key)
    return int(raw) if raw else default


@dataclass(frozen=True)
class CosmosConfig:
    endpoint: str = field(default_factory=lambda: _env("COSMOS_ENDPOINT"))
    key: str = field(default_factory=lambda: _env("COSMOS_KEY"))
    database: str = field(default_factory=lambda: _env("COSMOS_DATABASE", "fiscal-report"))


@dataclass(frozen=True)
class OpenAIConfig:
    """Credentials for the openai provider.

    When ``endpoint`` is set, models are served from an Azure OpenAI resource
    and the model id is used as the deployment name.
    """

    api_key: str = field(default_factory=lambda: _env("OPENAI_API_KEY"))
    endpoint: str = field(default_factory=lambda: _env("AZURE_OPENAI_ENDPOINT"))

    @property
    def is_azure(self) -> bool:
        return bool(self.endpoint)


@dataclass(frozen=True)
class GoogleConfig:
    api_key: str = field(default_factory=lambda: _env("GOOGLE_API_KEY"))


@dataclass(frozen=True)
class ServiceBusConfig:
    connection_string: str = field(
        default_factory=lambda: _env("AZURE_SERVICEBUS_CONNECTION_STRING")
    )
    topic_name: str = field(
        default_factory=lambda: _env("SERVICEBUS_TOPIC_NAME", "report-events")
    )


@dataclass(frozen=True)
class MonitorConfig:
    connection_string: str = field(
        default_factory=lambda: _env("APPLICATIONINSIGHTS_CONNECTION_STRING")
    )


@dataclass(frozen=True)
class PipelineConfig:
    """Tunables for stage execution, snapshot allocation and text matching."""

    model_timeout_s: float = field(
        default_factory=lambda: _env_float("MODEL_TIMEOUT_SECONDS", 300.0)
    )
    fuzzy_prefix_length: int = field(
        default_factory=lambda: _env_int("FUZZY_PREFIX_LENGTH", 50)
    )
    fuzzy_max_ratio: float = field(
        default_factory=lambda: _env_float("FUZZY_MAX_RATIO", 2.0)
    )
    max_append_retries: int = field(
        default_factory=lambda: _env_int("MAX_APPEND_RETRIES", 5)
    )
    job_poll_interval_s: float = field(
        default_factory=lambda: _env_float("JOB_POLL_INTERVAL_SECONDS", 2.0)
    )
    job_sweep_interval_s: float = field(
        default_factory=lambda: _env_float("JOB_SWEEP_INTERVAL_SECONDS", 300.0)
    )


@dataclass(frozen=True)
class AppConfig:
    env: str = field(default_factory=lambda: _env("APP_ENV", "development"))
    log_level: str = field(default_factory=lambda: _env("LOG_LEVEL", "INFO"))

    @property
    def is_development(self) -> bool:
        return self.env == "development"


@dataclass(frozen=True)
class Settings:
    cosmos: CosmosConfig = field(default_factory=CosmosConfig)
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    google: GoogleConfig = field(default_factory=GoogleConfig)
    servicebus: ServiceBusConfig = field(default_factory=ServiceBusConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    app: AppConfig = field(default_factory=AppConfig)


def load_settings() -> Settings:
    """Build settings from the current process environment."""
    return Settings()
