"""Core orchestration: secrets, stack loading, preview and provisioning"""

from stackforge.core.cryptor import SecretStore
from stackforge.core.orchestrator import Orchestrator
from stackforge.core.preview_engine import PreviewEngine
from stackforge.core.references import ReferenceResolver, stack_references
from stackforge.core.stack_loader import StackLoader

__all__ = [
    "Orchestrator",
    "PreviewEngine",
    "ReferenceResolver",
    "SecretStore",
    "StackLoader",
    "stack_references",
]
