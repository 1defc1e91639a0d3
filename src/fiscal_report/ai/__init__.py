"""Model configuration, prompt rendering and provider invocation."""

from fiscal_report.ai.config_resolver import AIConfigResolver
from fiscal_report.ai.factory import ModelInvoker, ModelResponse
from fiscal_report.ai.prompts import render_prompt

__all__ = ["AIConfigResolver", "ModelInvoker", "ModelResponse", "render_prompt"]
