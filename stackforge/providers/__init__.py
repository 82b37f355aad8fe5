"""
Provider plugins and the registry that maps binding types to them.
"""

from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping

from stackforge.exceptions import ConfigurationError
from stackforge.models.stack import ProviderBinding
from stackforge.providers.base import (
    ApplyContext,
    ApplyResult,
    ObservedResource,
    ObservedState,
    Provider,
)
from stackforge.providers.local_state import LocalStateProvider
from stackforge.providers.terraform import TerraformProvider

ProviderFactory = Callable[[ProviderBinding, Mapping[str, Any], Path], Provider]


class ProviderRegistry:
    """Maps a provider binding type to a factory building the provider."""

    def __init__(self):
        self._factories: Dict[str, ProviderFactory] = {}

    def register(self, provider_type: str, factory: ProviderFactory) -> None:
        self._factories[provider_type] = factory

    def types(self) -> List[str]:
        return sorted(self._factories)

    def has(self, provider_type: str) -> bool:
        return provider_type in self._factories

    def create(
        self,
        binding: ProviderBinding,
        credentials: Mapping[str, Any],
        workdir: Path,
    ) -> Provider:
        """
        Build the provider for a binding.

        Raises:
            ConfigurationError: If no provider is registered for the type
        """
        factory = self._factories.get(binding.type)
        if factory is None:
            raise ConfigurationError(
                f"Unknown provider type: {binding.type}",
                context=f"Registered providers: {', '.join(self.types()) or 'none'}",
            )
        return factory(binding, credentials, workdir)


def default_registry() -> ProviderRegistry:
    """Registry with the built-in providers."""
    registry = ProviderRegistry()
    registry.register(LocalStateProvider.name, LocalStateProvider)
    registry.register(TerraformProvider.name, TerraformProvider)
    return registry


__all__ = [
    "ApplyContext",
    "ApplyResult",
    "LocalStateProvider",
    "ObservedResource",
    "ObservedState",
    "Provider",
    "ProviderRegistry",
    "TerraformProvider",
    "default_registry",
]
