"""
Provider interface

A provider applies one stack's desired state to some backend. The orchestrator
only ever talks to providers through this interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from stackforge.cancellation import CancelToken
from stackforge.logger import RunLogger, null_logger
from stackforge.models.preview import ResourceChange
from stackforge.models.stack import ProviderBinding, ResourceSpec, StackSpec


@dataclass(frozen=True)
class ObservedResource:
    """A resource as the provider currently sees it."""

    type: str
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ObservedState:
    """Current state of a stack according to its provider."""

    resources: Mapping[str, ObservedResource] = field(default_factory=dict)
    outputs: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "resources", MappingProxyType(dict(self.resources)))
        object.__setattr__(self, "outputs", MappingProxyType(dict(self.outputs)))

    @classmethod
    def empty(cls) -> "ObservedState":
        return cls()

    def __repr__(self) -> str:
        return f"ObservedState(resources={len(self.resources)}, outputs={len(self.outputs)})"


@dataclass(frozen=True)
class ApplyResult:
    """What an apply did, and the outputs it produced."""

    outputs: Mapping[str, Any] = field(default_factory=dict)
    operations: Tuple[ResourceChange, ...] = ()


@dataclass
class ApplyContext:
    """Everything a provider needs to apply one stack."""

    stack: StackSpec
    resources: Tuple[ResourceSpec, ...]
    credentials: Mapping[str, Any]
    token: CancelToken
    dependency_outputs: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    logger: RunLogger = field(default_factory=null_logger)

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def checkpoint(self) -> None:
        """Raise OperationCancelled if cancellation was requested."""
        self.token.raise_if_cancelled()


class Provider(ABC):
    """Base class for provider plugins."""

    name = "base"

    def __init__(self, binding: ProviderBinding, credentials: Mapping[str, Any], workdir: Path):
        """
        Args:
            binding: Provider binding from the stack definition
            credentials: Provider configuration with placeholders resolved
            workdir: Workspace root
        """
        self.binding = binding
        self.credentials = credentials
        self.workdir = Path(workdir)

    @abstractmethod
    def query_state(self, stack: StackSpec) -> ObservedState:
        """Read the current state of a stack without changing anything."""

    def refresh(self, stack: StackSpec) -> ObservedState:
        """Reconcile the provider's state cache with reality and return it."""
        return self.query_state(stack)

    @abstractmethod
    def apply(self, stack: StackSpec, context: ApplyContext) -> ApplyResult:
        """
        Converge the stack to its desired state.

        Implementations call ``context.checkpoint()`` at each resource group
        boundary.
        """

    def differs(self, desired: ResourceSpec, observed: ObservedResource) -> bool:
        """Whether applying ``desired`` would change ``observed``."""
        return desired.type != observed.type or desired.config != observed.config

    def option(self, key: str, default: Optional[Any] = None) -> Any:
        return self.credentials.get(key, default)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(type={self.binding.type})"
