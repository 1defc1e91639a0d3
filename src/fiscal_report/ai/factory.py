"""Model invocation — one call signature over the OpenAI and Google providers."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from agent_framework import Agent
from agent_framework.azure import AzureOpenAIChatClient
from agent_framework.openai import OpenAIChatClient
from azure.identity import DefaultAzureCredential
from google import genai
from google.genai import types

from fiscal_report.errors import ConfigurationMissingError, ModelInvocationError, ModelTimeoutError
from fiscal_report.models.ai_config import Provider

if TYPE_CHECKING:
    from fiscal_report.config import GoogleConfig, OpenAIConfig, Settings
    from fiscal_report.models.ai_config import AiConfig

logger = logging.getLogger(__name__)

JSON_FORMAT = "json"


@dataclass(frozen=True)
class ModelResponse:
    content: str
    usage: dict[str, int] | None = None


class ModelHandler(Protocol):
    """A provider backend able to turn a prompt into text."""

    async def generate(
        self,
        config: AiConfig,
        prompt: str,
        *,
        response_format: str | None = None,
    ) -> ModelResponse: ...


def normalize_usage(raw: dict[str, Any] | None) -> dict[str, int] | None:
    """Translate provider token counters to input/output/total tokens."""
    if not raw:
        return None
    input_tokens = int(raw.get("input_token_count") or raw.get("prompt_token_count") or 0)
    output_tokens = int(raw.get("output_token_count") or raw.get("candidates_token_count") or 0)
    total = int(raw.get("total_token_count") or 0) or input_tokens + output_tokens
    if not (input_tokens or output_tokens or total):
        return None
    return {"input_tokens": input_tokens, "output_tokens": output_tokens, "total_tokens": total}


class OpenAIHandler:
    """Chat completions through agent-framework, on Azure OpenAI or openai.com."""

    def __init__(self, config: OpenAIConfig) -> None:
        self._config = config
        self._clients: dict[str, AzureOpenAIChatClient | OpenAIChatClient] = {}

    def _client_for(self, model: str) -> AzureOpenAIChatClient | OpenAIChatClient:
        if model not in self._clients:
            if self._config.is_azure:
                if self._config.api_key:
                    client = AzureOpenAIChatClient(
                        endpoint=self._config.endpoint,
                        deployment_name=model,
                        api_key=self._config.api_key,
                    )
                else:
                    client = AzureOpenAIChatClient(
                        endpoint=self._config.endpoint,
                        deployment_name=model,
                        credential=DefaultAzureCredential(),
                    )
            elif self._config.api_key:
                client = OpenAIChatClient(model_id=model, api_key=self._config.api_key)
            else:
                raise ConfigurationMissingError(
                    "OpenAI provider is not configured",
                    missing_fields=["OPENAI_API_KEY", "AZURE_OPENAI_ENDPOINT"],
                )
            logger.info(
                "Chat client created — provider=openai model=%s azure=%s",
                model,
                self._config.is_azure,
            )
            self._clients[model] = client
        return self._clients[model]

    async def generate(
        self,
        config: AiConfig,
        prompt: str,
        *,
        response_format: str | None = None,
    ) -> ModelResponse:
        model = config.model or ""
        agent = Agent(client=self._client_for(model), name="report-stage")
        options: dict[str, Any] = {"max_tokens": config.max_output_tokens}
        if config.temperature is not None:
            options["temperature"] = config.temperature
        if config.top_p is not None:
            options["top_p"] = config.top_p
        if config.reasoning_effort:
            options["reasoning"] = {"effort": config.reasoning_effort}
        if response_format == JSON_FORMAT:
            options["response_format"] = {"type": "json_object"}

        response = await agent.run(prompt, options=options)
        usage = getattr(response, "usage_details", None)
        return ModelResponse(
            content=getattr(response, "text", None) or "",
            usage=normalize_usage(dict(usage) if usage else None),
        )


class GoogleHandler:
    """Gemini models through the google-genai async client."""

    def __init__(self, config: GoogleConfig) -> None:
        self._config = config
        self._client: genai.Client | None = None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self._config.api_key:
                raise ConfigurationMissingError(
                    "Google provider is not configured",
                    missing_fields=["GOOGLE_API_KEY"],
                )
            self._client = genai.Client(api_key=self._config.api_key)
            logger.info("Chat client created — provider=google")
        return self._client

    @staticmethod
    def _build_config(config: AiConfig, response_format: str | None) -> types.GenerateContentConfig:
        options: dict[str, Any] = {
            "temperature": config.temperature,
            "max_output_tokens": config.max_output_tokens,
            "top_p": config.top_p,
            "top_k": config.top_k,
        }
        if response_format == JSON_FORMAT:
            options["response_mime_type"] = "application/json"
        if config.thinking_level:
            options["thinking_config"] = types.ThinkingConfig(thinking_level=config.thinking_level)
        if config.use_grounding:
            options["tools"] = [types.Tool(google_search=types.GoogleSearch())]
        return types.GenerateContentConfig(**options)

    async def generate(
        self,
        config: AiConfig,
        prompt: str,
        *,
        response_format: str | None = None,
    ) -> ModelResponse:
        response = await self._get_client().aio.models.generate_content(
            model=config.model or "",
            contents=prompt,
            config=self._build_config(config, response_format),
        )
        metadata = getattr(response, "usage_metadata", None)
        usage = metadata.model_dump() if metadata is not None else None
        return ModelResponse(content=response.text or "", usage=normalize_usage(usage))


class ModelInvoker:
    """Dispatch a resolved model config to its provider under a hard deadline."""

    def __init__(self, handlers: dict[Provider, ModelHandler]) -> None:
        self._handlers = handlers

    @classmethod
    def from_settings(cls, settings: Settings) -> ModelInvoker:
        return cls(
            {
                Provider.OPENAI: OpenAIHandler(settings.openai),
                Provider.GOOGLE: GoogleHandler(settings.google),
            }
        )

    async def call_model(
        self,
        config: AiConfig,
        prompt: str,
        *,
        timeout_s: float,
        job_id: str | None = None,
        response_format: str | None = None,
    ) -> ModelResponse:
        """Call the configured model and return its text.

        The deadline severs the wait; the remote request is not cancelled.
        Raises ``ModelTimeoutError`` on deadline and ``ModelInvocationError``
        on any other provider failure or an empty response.
        """
        provider = config.provider or Provider.GOOGLE
        model = config.model or ""
        handler = self._handlers.get(provider)
        if handler is None:
            raise ConfigurationMissingError(f"No handler registered for provider {provider}")

        started = time.monotonic()
        logger.info(
            "Model call started — job=%s provider=%s model=%s prompt_chars=%d",
            job_id,
            provider,
            model,
            len(prompt),
        )
        try:
            response = await asyncio.wait_for(
                handler.generate(config, prompt, response_format=response_format),
                timeout=timeout_s,
            )
        except TimeoutError as exc:
            logger.warning(
                "Model call timed out — job=%s provider=%s model=%s timeout=%ss",
                job_id,
                provider,
                model,
                timeout_s,
            )
            raise ModelTimeoutError(timeout_s, provider=provider, model=model) from exc
        except (ConfigurationMissingError, ModelInvocationError):
            raise
        except Exception as exc:
            logger.warning(
                "Model call failed — job=%s provider=%s model=%s",
                job_id,
                provider,
                model,
                exc_info=True,
            )
            raise ModelInvocationError(
                str(exc) or type(exc).__name__, provider=provider, model=model
            ) from exc

        if not response.content.strip():
            raise ModelInvocationError(
                "Model returned an empty response", provider=provider, model=model
            )

        logger.info(
            "Model call complete — job=%s provider=%s model=%s elapsed=%.1fs usage=%s",
            job_id,
            provider,
            model,
            time.monotonic() - started,
            response.usage,
        )
        return response
