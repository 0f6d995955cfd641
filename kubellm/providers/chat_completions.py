"""
Chat Completions adapters (OpenAI and Groq).

Both vendors ship Stainless-generated async SDKs with the same client
surface and exception hierarchy, so one base class handles request shaping
and error classification; subclasses pick the SDK module and client type.
SDK-level retries are disabled: the orchestrator owns retry policy.
"""

import abc
import logging
import re
import time
from types import ModuleType
from typing import Any

import groq
import openai
from groq import AsyncGroq
from openai import AsyncOpenAI

from kubellm.config import ProviderConfig
from kubellm.errors import ProviderError, TransientError

from .base import (
    AdapterResponse,
    GenerationParams,
    TokenUsage,
    classify_status,
    parse_retry_after,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 2048
DEFAULT_TEMPERATURE = 0.5

_REASONING_MODEL = re.compile(r"^(gpt-5|o\d)")


class ChatCompletionsAdapter(abc.ABC):
    """
    Base adapter for vendors exposing chat.completions.create.

    Subclasses set `sdk` (the vendor module, for its exception classes)
    and implement `_create_client`.
    """

    sdk: ModuleType
    display_name: str = "provider"

    def __init__(
        self,
        config: ProviderConfig,
        client: Any | None = None,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
        default_temperature: float = DEFAULT_TEMPERATURE,
    ) -> None:
        self.provider_id = config.provider_id
        self._config = config
        self._client = client
        self._default_max_tokens = default_max_tokens
        self._default_temperature = default_temperature

    @abc.abstractmethod
    def _create_client(self) -> Any:
        """Build the vendor SDK client for this adapter's config."""

    @property
    def client(self) -> Any:
        """SDK client (lazy initialization)."""
        if self._client is None:
            self._client = self._create_client()
            logger.debug(f"Initialized {self.display_name} client")
        return self._client

    def build_request(self, prompt: str, model: str, params: GenerationParams) -> dict[str, Any]:
        """Translate a generic request into chat.completions.create kwargs."""
        temperature = params.temperature
        if temperature is None:
            temperature = self._default_temperature
        return {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": params.max_tokens or self._default_max_tokens,
            "temperature": temperature,
        }

    def classify(self, exc: Exception) -> ProviderError:
        """Map an SDK exception onto the error taxonomy."""
        if isinstance(exc, self.sdk.APITimeoutError):
            return TransientError(f"{self.display_name} request timed out", provider=self.provider_id)
        if isinstance(exc, self.sdk.APIConnectionError):
            return TransientError(
                f"{self.display_name} connection failed: {exc}", provider=self.provider_id
            )
        if isinstance(exc, self.sdk.APIStatusError):
            return classify_status(
                exc.status_code,
                str(exc.message),
                provider=self.provider_id,
                retry_after=parse_retry_after(exc.response.headers.get("retry-after")),
            )
        return TransientError(
            f"{self.display_name} call failed: {exc}", provider=self.provider_id
        )

    async def submit(
        self,
        prompt: str,
        model: str,
        params: GenerationParams,
        timeout: float,
    ) -> AdapterResponse:
        start_time = time.perf_counter()
        try:
            response = await self.client.chat.completions.create(
                **self.build_request(prompt, model, params),
                timeout=timeout,
            )
        except self.sdk.APIError as e:
            raise self.classify(e) from e

        if not response.choices:
            raise TransientError(
                f"{self.display_name} returned no choices", provider=self.provider_id
            )

        text = response.choices[0].message.content or ""
        usage = response.usage
        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"{self.display_name} call completed: model={model}, latency={latency_ms:.0f}ms"
        )

        return AdapterResponse(
            text=text,
            model=response.model if isinstance(response.model, str) else model,
            usage=TokenUsage(
                input_tokens=usage.prompt_tokens if usage else 0,
                output_tokens=usage.completion_tokens if usage else 0,
            ),
        )

    async def list_models(self) -> list[str]:
        try:
            page = await self.client.models.list()
        except self.sdk.APIError as e:
            raise self.classify(e) from e
        return sorted(model.id for model in page.data)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


class OpenAIAdapter(ChatCompletionsAdapter):
    """
    OpenAI Chat Completions.

    Reasoning-family models (gpt-5*, o1/o3/o4...) reject max_tokens and a
    non-default temperature; they get max_completion_tokens instead.
    """

    sdk = openai
    display_name = "OpenAI"

    def _create_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=self._config.api_key.get_secret_value(),
            base_url=self._config.base_url,
            timeout=self._config.timeout_seconds,
            max_retries=0,
        )

    def build_request(self, prompt: str, model: str, params: GenerationParams) -> dict[str, Any]:
        request = super().build_request(prompt, model, params)
        if _REASONING_MODEL.match(model):
            request["max_completion_tokens"] = request.pop("max_tokens")
            request.pop("temperature")
        return request


class GroqAdapter(ChatCompletionsAdapter):
    """Groq Chat Completions (OpenAI-compatible)."""

    sdk = groq
    display_name = "Groq"

    def _create_client(self) -> AsyncGroq:
        return AsyncGroq(
            api_key=self._config.api_key.get_secret_value(),
            base_url=self._config.base_url,
            timeout=self._config.timeout_seconds,
            max_retries=0,
        )
