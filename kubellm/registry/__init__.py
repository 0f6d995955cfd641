"""
Registry module: provider identifier to adapter mapping.

Public API:
- ProviderRegistry: Immutable lookup of adapters and provider configs
- build_registry: Construct a registry from ProviderConfig values
"""

from kubellm.registry.providers import AdapterFactory, ProviderRegistry, build_registry

__all__ = [
    "AdapterFactory",
    "ProviderRegistry",
    "build_registry",
]
