"""Model configuration and prompt configuration documents."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from fiscal_report.models.base import DocumentBase


class Provider(StrEnum):
    GOOGLE = "google"
    OPENAI = "openai"


class AiConfig(BaseModel):
    """Model parameters; every field is optional until resolved for a stage."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    provider: Provider | None = None
    model: str | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_output_tokens: int | None = None
    thinking_level: str | None = None
    reasoning_effort: str | None = None
    verbosity: str | None = None
    use_deep_research: bool | None = None
    use_grounding: bool | None = None
    max_questions: int | None = None
    parallel_executors: int | None = None
    polish_prompt: str | None = None


class StageConfig(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    prompt: str = ""
    ai_config: AiConfig | None = None
    polish_prompt: str | None = None


class PromptConfig(DocumentBase):
    """A named set of per-stage prompt templates with a default model config."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    name: str
    is_active: bool = False
    stages: dict[str, StageConfig] = Field(default_factory=dict)
    ai_config: AiConfig | None = None
