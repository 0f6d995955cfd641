"""
Provider Registry

Maps provider identifiers to adapter instances. The registry is built once
at process start from the validated ProviderConfig set and never changes
afterwards, so concurrent lookups need no locking.

Each entry includes:
- The adapter that speaks the vendor protocol
- The ProviderConfig it was built from (models, default model, timeout)
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType
from typing import Any

from kubellm.config import ProviderConfig
from kubellm.errors import ConfigurationError, UnknownModelError, UnknownProviderError
from kubellm.providers import ADAPTER_TYPES, ProviderAdapter

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[ProviderConfig], ProviderAdapter]


class ProviderRegistry:
    """
    Immutable registry of provider adapters.

    Identifiers are matched case-insensitively, so "Anthropic" and
    "anthropic" resolve to the same adapter.

    Attributes:
        _adapters: Read-only mapping of normalized provider ID to adapter
        _configs: Read-only mapping of normalized provider ID to its config
    """

    def __init__(
        self,
        adapters: Mapping[str, ProviderAdapter],
        configs: Mapping[str, ProviderConfig],
    ) -> None:
        missing = set(adapters) ^ set(configs)
        if missing:
            raise ConfigurationError(
                f"Adapters and configs disagree on providers: {', '.join(sorted(missing))}"
            )
        self._adapters = MappingProxyType({k.lower(): v for k, v in adapters.items()})
        self._configs = MappingProxyType({k.lower(): v for k, v in configs.items()})

    @staticmethod
    def _normalize(provider_id: str) -> str:
        return provider_id.strip().lower()

    def resolve(self, provider_id: str) -> ProviderAdapter:
        """
        Look up the adapter for a provider.

        Raises:
            UnknownProviderError: If no adapter is registered under the ID.
        """
        adapter = self._adapters.get(self._normalize(provider_id))
        if adapter is None:
            raise UnknownProviderError(provider_id, self.list())
        return adapter

    def config(self, provider_id: str) -> ProviderConfig:
        config = self._configs.get(self._normalize(provider_id))
        if config is None:
            raise UnknownProviderError(provider_id, self.list())
        return config

    def resolve_model(self, provider_id: str, model: str | None) -> str:
        """
        Pick the model a request will run against.

        Args:
            provider_id: Provider the request targets
            model: Requested model, or None for the provider default

        Raises:
            UnknownProviderError: Provider not registered
            UnknownModelError: Model not configured for the provider
        """
        config = self.config(provider_id)
        if model is None or not model.strip():
            return config.default_model
        if model not in config.models:
            raise UnknownModelError(
                f"Unknown model {model!r} for provider {config.provider_id}. "
                f"Supported models: {', '.join(config.models)}",
                provider=config.provider_id,
            )
        return model

    def describe(self) -> list[dict[str, Any]]:
        """Non-secret provider metadata, sorted by provider ID."""
        return [
            {
                "provider": config.provider_id,
                "kind": config.kind,
                "base_url": config.base_url,
                "models": list(config.models),
                "default_model": config.default_model,
                "timeout_seconds": config.timeout_seconds,
            }
            for _, config in sorted(self._configs.items())
        ]

    def list(self) -> frozenset[str]:
        """Return the set of known provider identifiers."""
        return frozenset(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)

    def __contains__(self, provider_id: object) -> bool:
        return isinstance(provider_id, str) and self._normalize(provider_id) in self._adapters

    async def aclose(self) -> None:
        """Release every adapter's network client."""
        for adapter in self._adapters.values():
            await adapter.aclose()


def _default_factory(config: ProviderConfig) -> ProviderAdapter:
    adapter_type = ADAPTER_TYPES.get(config.kind)
    if adapter_type is None:
        raise ConfigurationError(f"No adapter for provider kind: {config.kind}")
    return adapter_type(config)


def build_registry(
    configs: Iterable[ProviderConfig],
    factory: AdapterFactory | None = None,
) -> ProviderRegistry:
    """
    Build the registry from validated provider configs.

    Args:
        configs: ProviderConfig values, typically Settings.provider_configs()
        factory: Adapter constructor; defaults to the built-in adapter for
                 each config's kind. Tests pass a factory returning stubs.

    Returns:
        A ready-to-use, immutable ProviderRegistry.

    Raises:
        ConfigurationError: Duplicate provider IDs or an unknown kind.
    """
    factory = factory or _default_factory
    adapters: dict[str, ProviderAdapter] = {}
    by_id: dict[str, ProviderConfig] = {}

    for config in configs:
        key = config.provider_id.lower()
        if key in by_id:
            raise ConfigurationError(f"Duplicate provider ID: {config.provider_id}")
        by_id[key] = config
        adapters[key] = factory(config)
        logger.debug(f"Registered provider {config.provider_id} ({config.kind})")

    if not adapters:
        raise ConfigurationError("At least one provider must be configured")

    logger.info(f"Provider registry ready: {', '.join(sorted(adapters))}")
    return ProviderRegistry(adapters, by_id)
