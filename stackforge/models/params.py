"""
Request Parameter Models

Immutable request-scoped parameters, validated at construction.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Tuple

from stackforge.exceptions import ConfigurationError


def _normalize_stacks(stacks: Iterable[str]) -> Tuple[str, ...]:
    if isinstance(stacks, str):
        raise ConfigurationError(
            "Stack selector must be a list of names, not a string",
            context=f"Got: {stacks!r}",
        )
    names = []
    for name in stacks:
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError(f"Invalid stack name: {name!r}")
        name = name.strip()
        if name not in names:
            names.append(name)
    return tuple(names)


@dataclass(frozen=True)
class ProvisionOptions:
    """Closed set of recognized provisioning options."""

    skip_refresh: bool = False
    skip_preview: bool = False

    def __post_init__(self):
        for option in fields(self):
            value = getattr(self, option.name)
            if not isinstance(value, bool):
                raise ConfigurationError(
                    f"Option '{option.name}' must be a boolean",
                    context=f"Got: {value!r}",
                )

    @classmethod
    def from_mapping(cls, options: Optional[Mapping[str, Any]]) -> "ProvisionOptions":
        """
        Build options from a mapping, rejecting unknown names.

        Accepts both snake_case and the CamelCase names used by older
        front ends (``SkipRefresh``, ``SkipPreview``).
        """
        if not options:
            return cls()

        aliases = {
            "skiprefresh": "skip_refresh",
            "skippreview": "skip_preview",
        }
        values = {}
        unknown = []
        for key, value in options.items():
            canonical = aliases.get(str(key).replace("-", "").replace("_", "").lower())
            if canonical is None:
                unknown.append(str(key))
                continue
            values[canonical] = value

        if unknown:
            raise ConfigurationError(
                f"Unknown provision option(s): {', '.join(sorted(unknown))}",
                context="Recognized options: skip_refresh, skip_preview",
            )
        return cls(**values)


@dataclass(frozen=True)
class InitParams:
    """Parameters bound once by Orchestrator.init()."""

    profile: str
    project_root: Optional[Path] = None
    stacks_dir: Optional[Path] = None
    options: ProvisionOptions = field(default_factory=ProvisionOptions)

    def __post_init__(self):
        if not isinstance(self.profile, str) or not self.profile.strip():
            raise ConfigurationError("Profile name is required")
        if self.project_root is not None:
            object.__setattr__(self, "project_root", Path(self.project_root))
        if self.stacks_dir is not None:
            object.__setattr__(self, "stacks_dir", Path(self.stacks_dir))
        if not isinstance(self.options, ProvisionOptions):
            raise ConfigurationError("options must be a ProvisionOptions instance")


@dataclass(frozen=True)
class StackParams:
    """Stack selector: target stack names (empty means all)."""

    stacks: Tuple[str, ...] = ()
    profile: Optional[str] = None
    stacks_dir: Optional[Path] = None

    def __post_init__(self):
        object.__setattr__(self, "stacks", _normalize_stacks(self.stacks))
        if self.stacks_dir is not None:
            object.__setattr__(self, "stacks_dir", Path(self.stacks_dir))

    @property
    def selects_all(self) -> bool:
        return not self.stacks

    def matches(self, stack_name: str) -> bool:
        return self.selects_all or stack_name in self.stacks


@dataclass(frozen=True)
class ProvisionParams:
    """Parameters of one provision or preview invocation."""

    stacks: Tuple[str, ...] = ()
    profile: Optional[str] = None
    stacks_dir: Optional[Path] = None
    options: ProvisionOptions = field(default_factory=ProvisionOptions)

    def __post_init__(self):
        object.__setattr__(self, "stacks", _normalize_stacks(self.stacks))
        if self.stacks_dir is not None:
            object.__setattr__(self, "stacks_dir", Path(self.stacks_dir))
        if isinstance(self.options, Mapping):
            object.__setattr__(self, "options", ProvisionOptions.from_mapping(self.options))
        elif not isinstance(self.options, ProvisionOptions):
            raise ConfigurationError("options must be a ProvisionOptions instance")

    @property
    def skip_refresh(self) -> bool:
        return self.options.skip_refresh

    @property
    def skip_preview(self) -> bool:
        return self.options.skip_preview

    def stack_params(self) -> StackParams:
        return StackParams(stacks=self.stacks, profile=self.profile, stacks_dir=self.stacks_dir)
