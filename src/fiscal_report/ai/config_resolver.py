"""Single point of resolution for the model configuration a stage runs with.

There are no built-in defaults: a stage with neither a stage-level nor a
global model configuration cannot run.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fiscal_report.errors import ConfigurationMissingError
from fiscal_report.models.ai_config import AiConfig, PromptConfig, Provider, StageConfig
from fiscal_report.models.stage import StageId

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

PROVIDER_MAX_LIMITS: dict[Provider, int] = {
    Provider.GOOGLE: 65536,
    Provider.OPENAI: 200000,
}

_OPENAI_MODEL_PREFIXES = ("gpt", "o1", "o3", "o4")
_REQUIRED_FIELDS = ("model", "temperature", "max_output_tokens")
_MERGED_FIELDS = (
    "provider",
    "model",
    "temperature",
    "top_p",
    "top_k",
    "max_output_tokens",
    "thinking_level",
    "reasoning_effort",
    "verbosity",
)

DEEP_RESEARCH_STAGE = StageId.GENERATIE
DEEP_RESEARCH_MODEL = "gemini-3-pro-preview"


def infer_provider(model: str) -> Provider:
    return Provider.OPENAI if model.startswith(_OPENAI_MODEL_PREFIXES) else Provider.GOOGLE


class AIConfigResolver:
    """Merge, validate and clamp model configuration for stages and helper operations."""

    def __init__(self, limits: Mapping[Provider, int] | None = None) -> None:
        self._limits = dict(limits or PROVIDER_MAX_LIMITS)

    def resolve_for_stage(
        self,
        stage_name: str,
        stage_config: StageConfig | None,
        global_config: AiConfig | None,
        job_id: str | None = None,
    ) -> AiConfig:
        """Resolve the effective config for one pipeline stage."""
        stage_override = stage_config.ai_config if stage_config else None
        if stage_override is None and global_config is None:
            raise ConfigurationMissingError(
                f"No model configuration for stage {stage_name}",
                missing_fields=["ai_config"],
            )

        merged = self._merge(stage_override, global_config)
        self._validate(merged, stage_name)
        provider = merged.provider or infer_provider(merged.model or "")
        resolved = self._clamp(merged.model_copy(update={"provider": provider}), stage_name)
        resolved = self.enable_deep_research(
            resolved,
            stage_name,
            stage_override,
            stage_config.polish_prompt if stage_config else None,
        )

        logger.info(
            "Model config resolved — job=%s stage=%s provider=%s model=%s source=%s",
            job_id,
            stage_name,
            resolved.provider,
            resolved.model,
            "stage" if stage_override else "global",
        )
        return resolved

    def resolve_for_operation(
        self,
        operation_key: str,
        prompt_config: PromptConfig,
        job_id: str | None = None,
    ) -> AiConfig:
        """Resolve config for a helper operation such as ``adjustment`` or ``editor``.

        An operation-specific config is used whole when it names a model,
        otherwise the global config applies.
        """
        operation = prompt_config.stages.get(operation_key)
        candidate = operation.ai_config if operation else None
        config = candidate if candidate is not None and candidate.model else prompt_config.ai_config
        if config is None or not config.model:
            raise ConfigurationMissingError(
                f"No model configuration for operation {operation_key}",
                missing_fields=["ai_config.model"],
            )

        self._validate(config, operation_key)
        provider = config.provider or infer_provider(config.model)
        resolved = self._clamp(config.model_copy(update={"provider": provider}), operation_key)
        logger.info(
            "Model config resolved — job=%s operation=%s provider=%s model=%s",
            job_id,
            operation_key,
            resolved.provider,
            resolved.model,
        )
        return resolved

    def enable_deep_research(
        self,
        config: AiConfig,
        stage_name: str,
        stage_override: AiConfig | None,
        polish_prompt: str | None,
    ) -> AiConfig:
        """Switch the draft-generation stage to deep research on the capable model.

        A stage override with ``use_deep_research`` set to False opts out.
        """
        if stage_name != DEEP_RESEARCH_STAGE or config.model != DEEP_RESEARCH_MODEL:
            return config
        if stage_override is not None and stage_override.use_deep_research is False:
            return config

        grounding = stage_override.use_grounding if stage_override else None
        return config.model_copy(
            update={
                "use_deep_research": True,
                "use_grounding": True if grounding is None else grounding,
                "max_questions": stage_override.max_questions if stage_override else None,
                "parallel_executors": stage_override.parallel_executors if stage_override else None,
                "polish_prompt": polish_prompt,
            }
        )

    @staticmethod
    def _merge(stage_override: AiConfig | None, global_config: AiConfig | None) -> AiConfig:
        if stage_override is None:
            return global_config.model_copy() if global_config else AiConfig()
        if global_config is None:
            return stage_override.model_copy()
        merged = {}
        for name in _MERGED_FIELDS:
            value = getattr(stage_override, name)
            merged[name] = value if value is not None else getattr(global_config, name)
        return AiConfig.model_validate(merged)

    @staticmethod
    def _validate(config: AiConfig, context: str) -> None:
        missing = [name for name in _REQUIRED_FIELDS if getattr(config, name) in (None, "")]
        if missing:
            raise ConfigurationMissingError(
                f"Model configuration for {context} is incomplete",
                missing_fields=missing,
            )

    def _clamp(self, config: AiConfig, context: str) -> AiConfig:
        provider = config.provider or Provider.GOOGLE
        limit = self._limits[provider]
        requested = config.max_output_tokens or 0
        if requested <= limit:
            return config
        logger.warning(
            "max_output_tokens clamped — context=%s provider=%s requested=%d limit=%d",
            context,
            provider,
            requested,
            limit,
        )
        return config.model_copy(update={"max_output_tokens": limit})
