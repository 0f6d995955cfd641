"""
Anthropic Messages API adapter.

Speaks the vendor wire protocol directly over httpx:
POST {base_url}/messages with x-api-key and anthropic-version headers.
"""

import logging
import time
from typing import Any

import httpx

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

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 1024
DEFAULT_TEMPERATURE = 0.5


def _error_message(response: httpx.Response) -> str:
    """Extract the vendor error message, falling back to the raw body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return f"{error.get('type', 'error')}: {error['message']}"
    return response.text[:500]


class AnthropicAdapter:
    """
    Adapter for Anthropic-style providers.

    The httpx client is created lazily so that constructing the registry
    never opens sockets; tests inject a client built on httpx.MockTransport.
    """

    def __init__(
        self,
        config: ProviderConfig,
        client: httpx.AsyncClient | None = None,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
        default_temperature: float = DEFAULT_TEMPERATURE,
    ) -> None:
        self.provider_id = config.provider_id
        self._config = config
        self._client = client
        self._default_max_tokens = default_max_tokens
        self._default_temperature = default_temperature

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.timeout_seconds)
            logger.debug("Initialized Anthropic HTTP client")
        return self._client

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._config.api_key.get_secret_value(),
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    def build_payload(self, prompt: str, model: str, params: GenerationParams) -> dict[str, Any]:
        """Translate a generic request into a Messages API body."""
        temperature = params.temperature
        if temperature is None:
            temperature = self._default_temperature
        return {
            "model": model,
            "max_tokens": params.max_tokens or self._default_max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }

    async def _request(self, method: str, path: str, timeout: float, **kwargs: Any) -> httpx.Response:
        url = f"{self._config.base_url}{path}"
        try:
            response = await self.client.request(
                method, url, headers=self._headers(), timeout=timeout, **kwargs
            )
        except httpx.TimeoutException as e:
            raise TransientError(
                f"Anthropic request timed out after {timeout:.1f}s", provider=self.provider_id
            ) from e
        except httpx.TransportError as e:
            raise TransientError(
                f"Anthropic connection failed: {e}", provider=self.provider_id
            ) from e

        if response.is_success:
            return response

        raise classify_status(
            response.status_code,
            _error_message(response),
            provider=self.provider_id,
            retry_after=parse_retry_after(response.headers.get("retry-after")),
        )

    async def submit(
        self,
        prompt: str,
        model: str,
        params: GenerationParams,
        timeout: float,
    ) -> AdapterResponse:
        start_time = time.perf_counter()
        response = await self._request(
            "POST", "/messages", timeout, json=self.build_payload(prompt, model, params)
        )

        try:
            data = response.json()
        except ValueError as e:
            raise TransientError(
                "Anthropic returned a non-JSON body", provider=self.provider_id
            ) from e

        blocks = data.get("content") or []
        text = "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        )
        usage = data.get("usage") or {}
        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"Anthropic call completed: model={model}, "
            f"latency={latency_ms:.0f}ms, stop_reason={data.get('stop_reason')}"
        )

        return AdapterResponse(
            text=text,
            model=data.get("model", model),
            usage=TokenUsage(
                input_tokens=usage.get("input_tokens", 0),
                output_tokens=usage.get("output_tokens", 0),
            ),
        )

    async def list_models(self) -> list[str]:
        response = await self._request("GET", "/models", self._config.timeout_seconds)
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                "Anthropic returned a non-JSON model list", provider=self.provider_id
            ) from e
        return [item["id"] for item in data.get("data", []) if "id" in item]

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
