"""
Providers module: one adapter per vendor wire protocol.

Adapters form a closed set keyed by ProviderConfig.kind:
- anthropic: Messages API over httpx
- openai: Chat Completions via the openai SDK
- groq: Chat Completions via the groq SDK

Adapters only translate and classify errors; they never retry.
"""

from kubellm.providers.anthropic_adapter import AnthropicAdapter
from kubellm.providers.base import (
    AdapterResponse,
    GenerationParams,
    ProviderAdapter,
    TokenUsage,
    classify_status,
)
from kubellm.providers.chat_completions import (
    ChatCompletionsAdapter,
    GroqAdapter,
    OpenAIAdapter,
)

ADAPTER_TYPES: dict[str, type] = {
    "anthropic": AnthropicAdapter,
    "openai": OpenAIAdapter,
    "groq": GroqAdapter,
}

__all__ = [
    "ADAPTER_TYPES",
    "AdapterResponse",
    "AnthropicAdapter",
    "ChatCompletionsAdapter",
    "GenerationParams",
    "GroqAdapter",
    "OpenAIAdapter",
    "ProviderAdapter",
    "TokenUsage",
    "classify_status",
]
