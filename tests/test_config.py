"""Tests for configuration module."""

from fiscal_report.config import (
    AppConfig,
    CosmosConfig,
    OpenAIConfig,
    PipelineConfig,
    ServiceBusConfig,
    Settings,
    _env,
    _env_float,
    _env_int,
    load_settings,
)


def test_env_returns_value(monkeypatch):
    monkeypatch.setenv("TEST_KEY", "hello")
    assert _env("TEST_KEY") == "hello"


def test_env_returns_default_when_missing(monkeypatch):
    monkeypatch.delenv("TEST_KEY", raising=False)
    assert _env("TEST_KEY", "fallback") == "fallback"


def test_env_returns_empty_string_default(monkeypatch):
    monkeypatch.delenv("TEST_KEY", raising=False)
    assert _env("TEST_KEY") == ""


def test_env_float_and_int_parse_values(monkeypatch):
    monkeypatch.setenv("TEST_FLOAT", "1.5")
    monkeypatch.setenv("TEST_INT", "7")
    assert _env_float("TEST_FLOAT", 0.0) == 1.5
    assert _env_int("TEST_INT", 0) == 7


def test_env_float_and_int_fall_back_when_empty(monkeypatch):
    monkeypatch.setenv("TEST_FLOAT", "")
    monkeypatch.delenv("TEST_INT", raising=False)
    assert _env_float("TEST_FLOAT", 2.5) == 2.5
    assert _env_int("TEST_INT", 3) == 3


def test_app_config_is_development_true():
    config = AppConfig.__new__(AppConfig)
    object.__setattr__(config, "env", "development")
    assert config.is_development is True


def test_app_config_is_development_false():
    config = AppConfig.__new__(AppConfig)
    object.__setattr__(config, "env", "production")
    assert config.is_development is False


def test_cosmos_config_defaults(monkeypatch):
    monkeypatch.setenv("COSMOS_ENDPOINT", "https://cosmos.example.com")
    monkeypatch.setenv("COSMOS_KEY", "secret")
    monkeypatch.delenv("COSMOS_DATABASE", raising=False)
    config = CosmosConfig()
    assert config.endpoint == "https://cosmos.example.com"
    assert config.key == "secret"
    assert config.database == "fiscal-report"


def test_openai_config_is_azure_with_endpoint(monkeypatch):
    monkeypatch.setenv("AZURE_OPENAI_ENDPOINT", "https://oai.example.com")
    config = OpenAIConfig()
    assert config.endpoint == "https://oai.example.com"
    assert config.is_azure is True


def test_openai_config_plain_without_endpoint(monkeypatch):
    monkeypatch.delenv("AZURE_OPENAI_ENDPOINT", raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    config = OpenAIConfig()
    assert config.api_key == "sk-test"
    assert config.is_azure is False


def test_servicebus_config_default_topic(monkeypatch):
    monkeypatch.delenv("SERVICEBUS_TOPIC_NAME", raising=False)
    assert ServiceBusConfig().topic_name == "report-events"


def test_pipeline_config_defaults(monkeypatch):
    for key in (
        "MODEL_TIMEOUT_SECONDS",
        "FUZZY_PREFIX_LENGTH",
        "FUZZY_MAX_RATIO",
        "MAX_APPEND_RETRIES",
        "JOB_POLL_INTERVAL_SECONDS",
        "JOB_SWEEP_INTERVAL_SECONDS",
    ):
        monkeypatch.delenv(key, raising=False)
    config = PipelineConfig()
    assert config.model_timeout_s == 300.0
    assert config.fuzzy_prefix_length == 50
    assert config.fuzzy_max_ratio == 2.0
    assert config.max_append_retries == 5
    assert config.job_poll_interval_s == 2.0
    assert config.job_sweep_interval_s == 300.0


def test_pipeline_config_reads_timeout(monkeypatch):
    monkeypatch.setenv("MODEL_TIMEOUT_SECONDS", "42")
    assert PipelineConfig().model_timeout_s == 42.0


def test_load_settings_returns_settings():
    settings = load_settings()
    assert isinstance(settings, Settings)
    assert isinstance(settings.pipeline, PipelineConfig)
