"""Placeholder resolution for stack definitions"""

import re
from typing import Any, Mapping, Optional, Set

from stackforge.exceptions import CredentialError, ProviderError
from stackforge.models.secrets import Profile, SecretBundle

# ${secret:NAME}, ${auth:NAME}, ${stack:OTHER.PATH}
PLACEHOLDER = re.compile(r"\$\{(secret|auth|stack):([^}]+)\}")

_MISSING = object()


def stack_references(value: Any) -> Set[str]:
    """Names of the stacks referenced through ``${stack:...}`` placeholders."""
    found: Set[str] = set()
    if isinstance(value, str):
        for kind, target in PLACEHOLDER.findall(value):
            if kind == "stack":
                found.add(target.strip().split(".", 1)[0])
    elif isinstance(value, dict):
        for item in value.values():
            found |= stack_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            found |= stack_references(item)
    return found


def _dig(data: Any, path: str) -> Any:
    current = data
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


class ReferenceResolver:
    """
    Substitutes placeholders in stack configuration.

    A string that is exactly one placeholder is replaced by the referenced
    value as-is (which may be a mapping or a number); embedded placeholders are
    interpolated as text.
    """

    def __init__(
        self,
        profile: Optional[Profile],
        secrets: Mapping[str, SecretBundle],
        outputs: Optional[Mapping[str, Mapping[str, Any]]] = None,
        allow_unresolved_outputs: bool = False,
    ):
        """
        Args:
            profile: Loaded profile (supplies fallback credentials)
            secrets: Decrypted bundles by stack name
            outputs: Outputs of other stacks by stack name
            allow_unresolved_outputs: Leave unknown stack outputs verbatim
                instead of failing (used when previewing)
        """
        self.profile = profile
        self.secrets = secrets
        self.outputs = outputs or {}
        self.allow_unresolved_outputs = allow_unresolved_outputs

    def resolve(self, value: Any, stack_name: str) -> Any:
        """Resolve placeholders recursively through dicts, lists and strings."""
        if isinstance(value, str):
            return self._resolve_string(value, stack_name)
        if isinstance(value, dict):
            return {key: self.resolve(item, stack_name) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.resolve(item, stack_name) for item in value]
        return value

    def _resolve_string(self, value: str, stack_name: str) -> Any:
        whole = PLACEHOLDER.fullmatch(value.strip())
        if whole:
            return self._lookup(whole.group(1), whole.group(2).strip(), stack_name, whole.group(0))

        def substitute(match):
            resolved = self._lookup(match.group(1), match.group(2).strip(), stack_name, match.group(0))
            return str(resolved)

        return PLACEHOLDER.sub(substitute, value)

    def _lookup(self, kind: str, target: str, stack_name: str, raw: str) -> Any:
        if kind == "secret":
            bundle = self.secrets.get(stack_name)
            if bundle is None or not bundle.has(target):
                raise CredentialError(
                    f"Unresolved secret '{target}' in stack '{stack_name}'",
                    context="Add it to the stack's secrets.yaml and re-encrypt",
                )
            return bundle.get(target)

        if kind == "auth":
            bundle = self.secrets.get(stack_name)
            if bundle is not None and target in bundle.auth:
                return bundle.auth[target]
            if self.profile is not None and target in self.profile.credentials:
                return self.profile.credentials[target]
            raise CredentialError(
                f"Unresolved credential '{target}' in stack '{stack_name}'",
                context="Define it under auth in the stack secrets or credentials in the profile",
            )

        other, _, path = target.partition(".")
        value = _MISSING
        if other in self.outputs:
            value = _dig(self.outputs[other], path) if path else self.outputs[other]
        if value is _MISSING:
            if self.allow_unresolved_outputs:
                return raw
            raise ProviderError(
                f"Unresolved output '{target}' in stack '{stack_name}'",
                context=f"Stack '{other}' has not produced this output",
            )
        return value
