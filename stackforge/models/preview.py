"""
Preview Models

Dataclass models for dry-run results.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Tuple


class OperationKind(str, Enum):
    """What an apply would do to a single resource."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NO_OP = "no-op"


# Order used when rendering summaries
SUMMARY_ORDER = (OperationKind.CREATE, OperationKind.UPDATE, OperationKind.DELETE)

SUMMARY_LABELS = {
    OperationKind.CREATE: "to create",
    OperationKind.UPDATE: "to update",
    OperationKind.DELETE: "to delete",
}


@dataclass(frozen=True)
class ResourceChange:
    """Classification of one resource."""

    resource: str
    kind: OperationKind


def render_summary(counts: Mapping[OperationKind, int]) -> str:
    """Render non-zero operation counts in a fixed order."""
    parts = [
        f"{counts.get(kind, 0)} {SUMMARY_LABELS[kind]}"
        for kind in SUMMARY_ORDER
        if counts.get(kind, 0)
    ]
    return ", ".join(parts) if parts else "no changes"


@dataclass(frozen=True)
class PreviewResult:
    """Per-stack outcome of a dry run."""

    stack_name: str
    counts: Mapping[OperationKind, int]
    summary: str
    changes: Tuple[ResourceChange, ...] = field(default_factory=tuple)

    @classmethod
    def from_changes(cls, stack_name: str, changes) -> "PreviewResult":
        """Build a result, deriving counts and summary from the changes."""
        ordered = tuple(sorted(changes, key=lambda change: change.resource))
        counts = {kind: 0 for kind in OperationKind}
        for change in ordered:
            counts[change.kind] += 1
        return cls(
            stack_name=stack_name,
            counts=MappingProxyType(counts),
            summary=render_summary(counts),
            changes=ordered,
        )

    def count(self, kind: OperationKind) -> int:
        return self.counts.get(OperationKind(kind), 0)

    def counts_by_name(self) -> dict:
        """Counts keyed by plain operation names, for display and JSON."""
        return {kind.value: self.counts.get(kind, 0) for kind in OperationKind}

    def to_dict(self) -> dict:
        return {
            "stack": self.stack_name,
            "counts": self.counts_by_name(),
            "summary": self.summary,
            "changes": [
                {"resource": change.resource, "operation": change.kind.value}
                for change in self.changes
            ],
        }

    @property
    def has_changes(self) -> bool:
        return any(self.counts.get(kind, 0) for kind in SUMMARY_ORDER)

    @property
    def total_changes(self) -> int:
        return sum(self.counts.get(kind, 0) for kind in SUMMARY_ORDER)

    def __repr__(self) -> str:
        return f"PreviewResult(stack={self.stack_name}, summary='{self.summary}')"
