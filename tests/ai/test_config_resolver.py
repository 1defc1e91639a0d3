"""Tests for AIConfigResolver merging, validation and clamping."""

import logging

import pytest

from fiscal_report.ai.config_resolver import (
    DEEP_RESEARCH_MODEL,
    PROVIDER_MAX_LIMITS,
    AIConfigResolver,
    infer_provider,
)
from fiscal_report.errors import ConfigurationMissingError
from fiscal_report.models.ai_config import AiConfig, PromptConfig, Provider, StageConfig


@pytest.fixture
def resolver() -> AIConfigResolver:
    return AIConfigResolver()


@pytest.fixture
def global_config() -> AiConfig:
    return AiConfig(model="gemini-2.5-pro", temperature=0.3, max_output_tokens=8192, top_p=0.9)


class TestResolveForStage:
    """Verify stage resolution rules."""

    def test_no_config_at_all_raises(self, resolver: AIConfigResolver) -> None:
        """A stage without stage or global config cannot run."""
        with pytest.raises(ConfigurationMissingError):
            resolver.resolve_for_stage("3_generatie", None, None)

    def test_global_config_used_when_no_override(
        self, resolver: AIConfigResolver, global_config: AiConfig
    ) -> None:
        config = resolver.resolve_for_stage("1a_informatiecheck", None, global_config)

        assert config.model == "gemini-2.5-pro"
        assert config.provider is Provider.GOOGLE

    def test_stage_override_wins_per_field(
        self, resolver: AIConfigResolver, global_config: AiConfig
    ) -> None:
        """Set stage fields win; unset ones fall back to the global config."""
        stage = StageConfig(prompt="x", ai_config=AiConfig(model="gpt-4o", temperature=0.0))

        config = resolver.resolve_for_stage("4a_BronnenSpecialist", stage, global_config)

        assert config.model == "gpt-4o"
        assert config.temperature == 0.0
        assert config.top_p == 0.9
        assert config.max_output_tokens == 8192
        assert config.provider is Provider.OPENAI

    def test_incomplete_merged_config_names_missing_fields(self, resolver: AIConfigResolver) -> None:
        stage = StageConfig(prompt="x", ai_config=AiConfig(model="gemini-2.5-pro"))

        with pytest.raises(ConfigurationMissingError) as exc_info:
            resolver.resolve_for_stage("2_complexiteitscheck", stage, None)

        assert exc_info.value.missing_fields == ["temperature", "max_output_tokens"]

    def test_explicit_provider_is_kept(self, resolver: AIConfigResolver) -> None:
        stage = StageConfig(
            prompt="x",
            ai_config=AiConfig(
                provider=Provider.OPENAI,
                model="custom-deployment",
                temperature=0.1,
                max_output_tokens=100,
            ),
        )

        config = resolver.resolve_for_stage("6_eindcontrole", stage, None)

        assert config.provider is Provider.OPENAI

    def test_clamps_to_provider_limit_with_warning(
        self, resolver: AIConfigResolver, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Verify an over-limit token budget is reduced and logged."""
        global_config = AiConfig(model="gemini-2.5-pro", temperature=0.2, max_output_tokens=100000)

        with caplog.at_level(logging.WARNING, logger="fiscal_report.ai.config_resolver"):
            config = resolver.resolve_for_stage("1a_informatiecheck", None, global_config)

        assert config.max_output_tokens == PROVIDER_MAX_LIMITS[Provider.GOOGLE]
        assert "clamped" in caplog.text

    def test_custom_limits(self) -> None:
        resolver = AIConfigResolver(limits={Provider.GOOGLE: 1000, Provider.OPENAI: 2000})
        global_config = AiConfig(model="gemini-2.5-flash", temperature=0.2, max_output_tokens=5000)

        config = resolver.resolve_for_stage("1a_informatiecheck", None, global_config)

        assert config.max_output_tokens == 1000

    def test_camel_case_config_is_accepted(self, resolver: AIConfigResolver) -> None:
        """Configs stored with camelCase keys resolve like snake_case ones."""
        global_config = AiConfig.model_validate(
            {"model": "gemini-2.5-pro", "temperature": 0.2, "maxOutputTokens": 4096, "topK": 20}
        )

        config = resolver.resolve_for_stage("1a_informatiecheck", None, global_config)

        assert config.max_output_tokens == 4096
        assert config.top_k == 20


class TestDeepResearch:
    """Verify deep research is enabled only for draft generation on the capable model."""

    def _config(self, model: str = DEEP_RESEARCH_MODEL) -> AiConfig:
        return AiConfig(model=model, temperature=1.0, max_output_tokens=32000)

    def test_enabled_for_generation_stage(self, resolver: AIConfigResolver) -> None:
        stage = StageConfig(prompt="x", polish_prompt="Polijst")

        config = resolver.resolve_for_stage("3_generatie", stage, self._config())

        assert config.use_deep_research is True
        assert config.use_grounding is True
        assert config.polish_prompt == "Polijst"

    def test_not_enabled_for_other_stages(self, resolver: AIConfigResolver) -> None:
        config = resolver.resolve_for_stage("4a_BronnenSpecialist", None, self._config())

        assert config.use_deep_research is None

    def test_not_enabled_for_other_models(self, resolver: AIConfigResolver) -> None:
        config = resolver.resolve_for_stage("3_generatie", None, self._config("gemini-2.5-pro"))

        assert config.use_deep_research is None

    def test_stage_can_opt_out(self, resolver: AIConfigResolver) -> None:
        stage = StageConfig(prompt="x", ai_config=AiConfig(use_deep_research=False))

        config = resolver.resolve_for_stage("3_generatie", stage, self._config())

        assert config.use_deep_research is not True


class TestResolveForOperation:
    """Verify helper operation resolution."""

    def test_operation_config_used_whole(self, resolver: AIConfigResolver, global_config: AiConfig) -> None:
        prompt_config = PromptConfig(
            name="p",
            stages={
                "editor": StageConfig(
                    prompt="x",
                    ai_config=AiConfig(model="gpt-4o", temperature=0.0, max_output_tokens=500),
                )
            },
            ai_config=global_config,
        )

        config = resolver.resolve_for_operation("editor", prompt_config)

        assert config.model == "gpt-4o"
        assert config.top_p is None
        assert config.provider is Provider.OPENAI

    def test_falls_back_to_global(self, resolver: AIConfigResolver, global_config: AiConfig) -> None:
        prompt_config = PromptConfig(name="p", stages={}, ai_config=global_config)

        config = resolver.resolve_for_operation("adjustment", prompt_config)

        assert config.model == "gemini-2.5-pro"

    def test_missing_raises(self, resolver: AIConfigResolver) -> None:
        with pytest.raises(ConfigurationMissingError):
            resolver.resolve_for_operation("adjustment", PromptConfig(name="p"))


@pytest.mark.parametrize(
    ("model", "provider"),
    [
        ("gpt-4o", Provider.OPENAI),
        ("o3-mini", Provider.OPENAI),
        ("o4-mini", Provider.OPENAI),
        ("gemini-2.5-pro", Provider.GOOGLE),
    ],
)
def test_infer_provider(model: str, provider: Provider) -> None:
    assert infer_provider(model) is provider
