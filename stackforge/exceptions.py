"""
Stackforge Exception Hierarchy

Clean exception hierarchy for consistent error handling across the orchestrator.
"""

from typing import Optional, Sequence


class StackforgeError(Exception):
    """Base exception for all Stackforge errors."""

    def __init__(self, message: str, context: Optional[str] = None):
        self.message = message
        self.context = context
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with optional context."""
        if self.context:
            return f"{self.message}\nContext: {self.context}"
        return self.message


class ConfigurationError(StackforgeError):
    """Raised when configuration is invalid or missing."""

    pass


class CredentialError(StackforgeError):
    """Raised when secrets or key material are missing or unusable."""

    pass


class ProviderError(StackforgeError):
    """Raised when a provider call fails."""

    pass


class DeploymentError(StackforgeError):
    """Raised when provisioning operations fail."""

    pass


class StateError(StackforgeError):
    """Raised when run state transitions are invalid."""

    pass


class ProfileNotFound(ConfigurationError):
    """Raised when the profile configuration file does not exist."""

    def __init__(self, profile: str, path: str):
        self.profile = profile
        self.path = path
        message = f"Profile '{profile}' not found at {path}"
        context = f"Run: stackforge secrets init-profile {profile}"
        super().__init__(message, context)


class StackNotFound(ConfigurationError):
    """Raised when a stack does not exist in the stacks root."""

    def __init__(
        self,
        stack_name: str,
        available_stacks: Sequence[str],
        referenced_by: Optional[str] = None,
    ):
        self.stack_name = stack_name
        self.available_stacks = list(available_stacks)
        self.referenced_by = referenced_by
        if referenced_by:
            message = f"Stack '{referenced_by}' depends on unknown stack '{stack_name}'"
        else:
            message = f"Stack '{stack_name}' not found"
        context = f"Available stacks: {', '.join(self.available_stacks) or 'none'}"
        super().__init__(message, context)


class ParseError(ConfigurationError):
    """Raised when a stack or profile definition is malformed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to parse {path}", reason)


class AlreadyInitialized(ConfigurationError):
    """Raised when re-initializing with different parameters."""

    pass


class NotInitialized(ConfigurationError):
    """Raised when an operation runs before init."""

    def __init__(self, operation: str):
        super().__init__(
            f"Cannot run '{operation}' before the orchestrator is initialized",
            context="Call Orchestrator.init() first",
        )


class DependencyCycle(StackforgeError):
    """Raised when stack dependencies form a cycle."""

    def __init__(self, members: Sequence[str]):
        self.members = list(members)
        chain = " -> ".join(self.members + self.members[:1])
        super().__init__(f"Circular dependency detected: {chain}")


class KeyLoadError(CredentialError):
    """Raised when key material is present but unreadable."""

    pass


class DecryptionError(CredentialError):
    """Raised when a secret bundle cannot be decrypted or was tampered with."""

    def __init__(self, bundle: str, reason: str):
        self.bundle = bundle
        self.reason = reason
        super().__init__(f"Failed to decrypt secret bundle {bundle}", reason)


class ProviderQueryError(ProviderError):
    """Raised when a provider cannot read the current state of a stack."""

    def __init__(self, stack_name: str, cause: Exception):
        self.stack_name = stack_name
        self.cause = cause
        super().__init__(
            f"Failed to query state of stack '{stack_name}'",
            context=f"{type(cause).__name__}: {cause}",
        )


class OperationCancelled(StackforgeError):
    """Raised at a cancellation checkpoint once cancellation was requested."""

    pass


class RunInProgress(DeploymentError):
    """Raised when another run already covers the requested stacks."""

    def __init__(self, stacks: Sequence[str]):
        self.stacks = list(stacks)
        super().__init__(
            "A provision run is already in progress for these stacks",
            context=f"Stacks: {', '.join(self.stacks)}",
        )


class NoActiveRun(DeploymentError):
    """Raised when cancel finds nothing pending or running."""

    def __init__(self, selector: Sequence[str]):
        self.selector = list(selector)
        target = ", ".join(self.selector) if self.selector else "all stacks"
        super().__init__(f"No pending or running stacks match: {target}")


class ProvisionFailed(DeploymentError):
    """Raised when at least one stack failed or was skipped due to a failure."""

    def __init__(self, report):
        self.report = report
        super().__init__("Provisioning finished with failures", context=report.summary())


class ProvisionCancelled(StackforgeError):
    """Raised when a run ended cancelled (a distinct outcome, not a failure)."""

    def __init__(self, report):
        self.report = report
        super().__init__("Provisioning was cancelled", context=report.summary())
