"""Dry-run change detection"""

from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from stackforge.core.references import ReferenceResolver
from stackforge.exceptions import ProviderQueryError
from stackforge.logger import RunLogger, null_logger
from stackforge.models.preview import OperationKind, PreviewResult, ResourceChange
from stackforge.models.secrets import Profile, SecretBundle
from stackforge.models.stack import ResourceSpec, StackSpec
from stackforge.providers import ObservedState, Provider, ProviderRegistry


class PreviewEngine:
    """
    Computes what an apply would do, without doing it.

    Each stack's desired resources are compared with the state its provider
    reports (or with the cached refresh result when one is given).
    """

    def __init__(self, providers: ProviderRegistry, workdir: Path, logger: Optional[RunLogger] = None):
        self.providers = providers
        self.workdir = Path(workdir)
        self.logger = logger or null_logger()

    def provider_for(self, spec: StackSpec, resolver: ReferenceResolver) -> Provider:
        """Build the provider of a stack with its configuration resolved."""
        credentials = resolver.resolve(spec.provider.config, spec.name)
        return self.providers.create(spec.provider, credentials, self.workdir)

    @staticmethod
    def resolve_resources(spec: StackSpec, resolver: ReferenceResolver) -> Tuple[ResourceSpec, ...]:
        """Desired resources with placeholders substituted."""
        return tuple(
            ResourceSpec(
                name=resource.name,
                type=resource.type,
                config=resolver.resolve(resource.config, spec.name),
            )
            for resource in spec.resources
        )

    @staticmethod
    def observe(spec: StackSpec, provider: Provider) -> ObservedState:
        """
        Read the current state of a stack.

        Raises:
            ProviderQueryError: If the provider cannot read the state
        """
        try:
            return provider.query_state(spec)
        except ProviderQueryError:
            raise
        except Exception as e:
            raise ProviderQueryError(spec.name, e) from e

    @staticmethod
    def diff(
        stack_name: str,
        desired: Sequence[ResourceSpec],
        state: ObservedState,
        provider: Provider,
    ) -> PreviewResult:
        """Classify every desired and observed resource."""
        changes = []
        wanted = set()
        for resource in desired:
            wanted.add(resource.name)
            current = state.resources.get(resource.name)
            if current is None:
                kind = OperationKind.CREATE
            elif provider.differs(resource, current):
                kind = OperationKind.UPDATE
            else:
                kind = OperationKind.NO_OP
            changes.append(ResourceChange(resource.name, kind))

        for name in state.resources:
            if name not in wanted:
                changes.append(ResourceChange(name, OperationKind.DELETE))

        return PreviewResult.from_changes(stack_name, changes)

    def preview(
        self,
        stacks: Sequence[StackSpec],
        profile: Optional[Profile],
        secrets: Mapping[str, SecretBundle],
        observed: Optional[Mapping[str, ObservedState]] = None,
    ) -> List[PreviewResult]:
        """
        Compute one PreviewResult per stack, in input order.

        Args:
            stacks: Stacks in dependency order
            profile: Loaded profile
            secrets: Decrypted bundles by stack name
            observed: Refreshed state by stack name; stacks missing from it
                are queried

        Raises:
            ProviderQueryError: If a provider cannot read a stack's state
            CredentialError: If a secret or credential placeholder is unresolved
        """
        observed = observed or {}
        outputs: Dict[str, Dict] = {}
        results = []

        for spec in stacks:
            resolver = ReferenceResolver(profile, secrets, outputs, allow_unresolved_outputs=True)
            provider = self.provider_for(spec, resolver)
            if spec.name in observed:
                state = observed[spec.name]
            else:
                state = self.observe(spec, provider)
            outputs[spec.name] = dict(state.outputs)

            result = self.diff(spec.name, self.resolve_resources(spec, resolver), state, provider)
            results.append(result)
            self.logger.event("preview.computed", stack=spec.name, summary=result.summary)

        return results
