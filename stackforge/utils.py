"""
Workspace Utilities

Workspace root discovery and path helpers.
"""

from pathlib import Path
from typing import Optional

from stackforge.constants import CONFIG_DIR, PROFILE_FILE_TEMPLATE, STACKS_DIR, STATE_DIR


class WorkspaceUtils:
    """Utilities for locating the workspace and its well-known directories."""

    @staticmethod
    def detect_workspace_root(start: Optional[Path] = None) -> Path:
        """
        Find the workspace root.

        Walks up from ``start`` (defaults to the current directory) to the
        nearest directory holding a ``.git`` entry. Falls back to ``start``
        when no repository is found.

        Args:
            start: Directory to start from

        Returns:
            Path to the workspace root
        """
        current = Path(start or Path.cwd()).resolve()
        for candidate in (current, *current.parents):
            if (candidate / ".git").exists():
                return candidate
        return current

    @staticmethod
    def config_dir(root: Path) -> Path:
        return Path(root) / CONFIG_DIR

    @staticmethod
    def default_stacks_dir(root: Path) -> Path:
        return Path(root) / CONFIG_DIR / STACKS_DIR

    @staticmethod
    def state_dir(root: Path) -> Path:
        return Path(root) / CONFIG_DIR / STATE_DIR

    @staticmethod
    def profile_path(root: Path, profile: str) -> Path:
        return Path(root) / CONFIG_DIR / PROFILE_FILE_TEMPLATE.format(profile=profile)


def detect_workspace_root(start: Optional[Path] = None) -> Path:
    """Find the workspace root (module-level shortcut)."""
    return WorkspaceUtils.detect_workspace_root(start)


def resolve_path(root: Path, value: str) -> Path:
    """Resolve a user-supplied path against the workspace root."""
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = Path(root) / path
    return path
