"""
Secret Models

Dataclass models for profiles and decrypted secret bundles.
"""

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional


def _freeze(data: Optional[Mapping]) -> Mapping:
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class Profile:
    """Named credential/config bundle loaded once per process."""

    name: str
    project_name: str
    public_key: str
    private_key: Any = field(repr=False, compare=False)
    key_reference: str = "inline"
    credentials: Mapping[str, Any] = field(default_factory=dict, repr=False)
    config_path: Optional[Path] = None

    def __post_init__(self):
        object.__setattr__(self, "credentials", _freeze(self.credentials))

    @property
    def fingerprint(self) -> str:
        from stackforge.core.ciphers import fingerprint

        return fingerprint(self.public_key)

    def credential(self, name: str, default: Any = None) -> Any:
        return self.credentials.get(name, default)


@dataclass(frozen=True)
class SecretBundle:
    """Decrypted secrets of one stack, held only in memory."""

    stack_name: str
    path: Path
    values: Mapping[str, Any] = field(default_factory=dict, repr=False)
    auth: Mapping[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "values", _freeze(self.values))
        object.__setattr__(self, "auth", _freeze(self.auth))

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def has(self, key: str) -> bool:
        return key in self.values

    def __len__(self) -> int:
        return len(self.values)

    def __repr__(self) -> str:
        return f"SecretBundle(stack={self.stack_name}, values={len(self.values)}, auth={len(self.auth)})"
