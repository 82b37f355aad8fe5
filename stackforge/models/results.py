"""
Result Models

Dataclass models for external command results.
"""

from dataclasses import dataclass


@dataclass
class ExecutionResult:
    """Result of a subprocess execution."""

    returncode: int
    stdout: str = ""
    stderr: str = ""
    command: str = ""
    interrupted: bool = False

    @property
    def is_success(self) -> bool:
        """Check if execution succeeded."""
        return self.returncode == 0 and not self.interrupted

    @property
    def is_failure(self) -> bool:
        """Check if execution failed."""
        return not self.is_success

    @property
    def output(self) -> str:
        """Get combined output (stdout + stderr)."""
        return f"{self.stdout}\n{self.stderr}".strip()

    def __repr__(self) -> str:
        return f"ExecutionResult(returncode={self.returncode}, command='{self.command[:50]}...')"
