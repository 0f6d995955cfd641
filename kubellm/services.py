"""
Service wiring shared by the REST API and the CLI.

Builds the registry, prompt store, metrics store and orchestrator from one
Settings value so both front ends run the same core with the same policy.
"""

import logging
from dataclasses import dataclass, field

from kubellm.config import ProviderConfig, Settings
from kubellm.dispatcher import DispatchOrchestrator
from kubellm.metrics import MetricsStore
from kubellm.providers import ADAPTER_TYPES, ProviderAdapter
from kubellm.registry import AdapterFactory, ProviderRegistry, build_registry
from kubellm.storage import PromptStore, create_prompt_store

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a front end needs to serve requests."""

    settings: Settings
    registry: ProviderRegistry
    store: PromptStore
    orchestrator: DispatchOrchestrator
    metrics: MetricsStore = field(default_factory=MetricsStore)

    async def aclose(self) -> None:
        await self.registry.aclose()
        await self.store.close()


def settings_adapter_factory(settings: Settings) -> AdapterFactory:
    """Adapter factory applying the generation defaults from settings."""

    def factory(config: ProviderConfig) -> ProviderAdapter:
        return ADAPTER_TYPES[config.kind](
            config,
            default_max_tokens=settings.default_max_tokens,
            default_temperature=settings.default_temperature,
        )

    return factory


def build_services(
    settings: Settings,
    store: PromptStore | None = None,
    factory: AdapterFactory | None = None,
) -> Services:
    """
    Wire the dispatch core from settings.

    Args:
        settings: Validated application settings
        store: Prompt store to use instead of the one DATABASE_URL names
        factory: Adapter factory; tests pass one that returns stubs

    Returns:
        Services with a shared MetricsStore plugged into the orchestrator.
    """
    registry = build_registry(
        settings.provider_configs(), factory or settings_adapter_factory(settings)
    )
    if store is None:
        store = create_prompt_store(
            settings.database_url,
            max_connections=settings.db_max_connections,
            acquire_timeout=settings.db_acquire_timeout,
        )
    metrics = MetricsStore()
    orchestrator = DispatchOrchestrator(
        registry,
        store,
        policy=settings.retry_policy(),
        metrics=metrics,
        default_timeout=settings.dispatch_timeout,
    )
    logger.debug(f"Services built with {len(registry)} providers")
    return Services(
        settings=settings,
        registry=registry,
        store=store,
        orchestrator=orchestrator,
        metrics=metrics,
    )
