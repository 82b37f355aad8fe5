"""
Stack Models

Dataclass models for parsed stack definitions.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Tuple


@dataclass(frozen=True)
class ProviderBinding:
    """Which provider plugin applies a stack, and how it is configured."""

    type: str
    config: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        return f"ProviderBinding(type={self.type})"


@dataclass(frozen=True)
class ResourceSpec:
    """A single managed resource in a stack's desired state."""

    name: str
    type: str
    config: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        return f"ResourceSpec(name={self.name}, type={self.type})"


@dataclass(frozen=True)
class StackSpec:
    """A named, independently deployable unit of infrastructure."""

    name: str
    source_path: Path
    provider: ProviderBinding
    dependencies: Tuple[str, ...] = ()
    resources: Tuple[ResourceSpec, ...] = ()
    schema_version: str = "1.0"

    @property
    def stack_dir(self) -> Path:
        """Directory holding the stack definition."""
        return self.source_path.parent

    @property
    def resource_names(self) -> Tuple[str, ...]:
        return tuple(resource.name for resource in self.resources)

    def depends_on(self, stack_name: str) -> bool:
        return stack_name in self.dependencies

    def __repr__(self) -> str:
        deps = ",".join(self.dependencies) or "-"
        return (
            f"StackSpec(name={self.name}, provider={self.provider.type}, "
            f"deps={deps}, resources={len(self.resources)})"
        )
