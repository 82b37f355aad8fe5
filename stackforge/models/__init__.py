"""
Stackforge Models

Dataclass models for stacks, parameters, secrets, previews and runs.
"""

from .params import InitParams, ProvisionOptions, ProvisionParams, StackParams
from .preview import OperationKind, PreviewResult, ResourceChange
from .results import ExecutionResult
from .run import ProvisionRun, RunPhase, RunReport, RunStatus, StackOutcome, StackStatus
from .secrets import Profile, SecretBundle
from .stack import ProviderBinding, ResourceSpec, StackSpec

__all__ = [
    "ExecutionResult",
    "InitParams",
    "OperationKind",
    "PreviewResult",
    "Profile",
    "ProviderBinding",
    "ProvisionOptions",
    "ProvisionParams",
    "ProvisionRun",
    "ResourceChange",
    "ResourceSpec",
    "RunPhase",
    "RunReport",
    "RunStatus",
    "SecretBundle",
    "StackOutcome",
    "StackParams",
    "StackSpec",
    "StackStatus",
]
