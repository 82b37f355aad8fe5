"""
Base Command Class

Abstract base for all Stackforge CLI commands.
Provides common functionality and structure.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console

from stackforge.constants import CONFIG_DIR, LOGS_DIR
from stackforge.exceptions import (
    ConfigurationError,
    CredentialError,
    DependencyCycle,
    ProvisionCancelled,
    ProvisionFailed,
    StackforgeError,
)
from stackforge.logger import RunLogger
from stackforge.ui_components import show_header
from stackforge.utils import detect_workspace_root

# Exit codes by error kind
EXIT_CODES = (
    (ProvisionCancelled, 130),
    (ProvisionFailed, 1),
    (ConfigurationError, 2),
    (DependencyCycle, 2),
    (CredentialError, 3),
)


class BaseCommand(ABC):
    """
    Abstract base command class.

    Provides:
    - Logger initialization
    - Header display
    - Confirmation prompt
    - Error handling and exit codes
    - JSON output support
    """

    def __init__(
        self,
        verbose: bool = False,
        json_output: bool = False,
        project_root: Optional[Path] = None,
        console: Optional[Console] = None,
    ):
        self.verbose = verbose
        self.json_output = json_output
        self.console = console or Console()
        self.project_root = Path(project_root) if project_root else detect_workspace_root()
        self.logger: Optional[RunLogger] = None

    def init_logger(self, command_name: str) -> RunLogger:
        """
        Initialize command logger (console-silent in JSON mode).

        Args:
            command_name: Command name

        Returns:
            RunLogger writing to .sc/logs
        """
        self.logger = RunLogger(
            command_name,
            log_dir=self.project_root / CONFIG_DIR / LOGS_DIR,
            verbose=self.verbose,
            quiet=self.json_output,
            console=self.console,
        )
        return self.logger

    def output_json(self, data: Dict[str, Any], exit_code: int = 0) -> None:
        """
        Output data as JSON and exit.

        Args:
            data: Data to output as JSON
            exit_code: Exit code (0 for success, non-zero for error)
        """
        self.console.print_json(json.dumps(data))
        if exit_code != 0:
            raise SystemExit(exit_code)

    def show_header(
        self,
        title: str,
        subtitle: Optional[str] = None,
        profile: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        """Show command header (skip in JSON or verbose mode)."""
        if not self.verbose and not self.json_output:
            show_header(
                title=title,
                subtitle=subtitle,
                profile=profile,
                details=details,
                console=self.console,
            )

    def print_success(self, message: str) -> None:
        """Print success message (skip in JSON mode)."""
        if not self.json_output:
            self.console.print(f"[green]✓ {message}[/green]")

    def print_error(self, message: str) -> None:
        """Print error message (skip in JSON mode)."""
        if not self.json_output:
            self.console.print(f"[red]✗ {message}[/red]")

    def print_dim(self, message: str) -> None:
        """Print dim message (skip in JSON mode)."""
        if not self.json_output:
            self.console.print(f"[dim]{message}[/dim]")

    def confirm(self, question: str, default: bool = False) -> bool:
        """
        Ask for user confirmation.

        Args:
            question: Question to ask
            default: Default answer

        Returns:
            True if confirmed
        """
        default_str = "y" if default else "n"
        self.console.print(
            f"{question} [bold bright_white]\\[y/n][/bold bright_white] [dim]({default_str})[/dim]: ",
            end="",
        )
        answer = input().strip().lower()

        if not answer:
            return default

        return answer in ["y", "yes"]

    def _logs_hint(self):
        if self.logger and self.logger.log_path:
            self.console.print(f"[dim]Logs saved to:[/dim] {self.logger.log_path}\n")

    @staticmethod
    def exit_code_for(error: StackforgeError) -> int:
        for kind, code in EXIT_CODES:
            if isinstance(error, kind):
                return code
        return 1

    @abstractmethod
    def execute(self, **kwargs) -> None:
        """
        Execute command logic.

        Must be implemented by subclasses.
        """
        pass

    def on_interrupt(self) -> None:
        """Hook run on Ctrl-C before exiting."""

    def run(self, **kwargs) -> None:
        """
        Run command with error handling.

        Args:
            **kwargs: Command arguments
        """
        try:
            self.execute(**kwargs)
        except KeyboardInterrupt:
            self.on_interrupt()
            self.console.print("\n[yellow]⚠️  Operation cancelled by user[/yellow]")
            self._logs_hint()
            raise SystemExit(130)
        except SystemExit:
            raise
        except StackforgeError as e:
            if self.logger:
                self.logger.log_error(e.message, context=e.context)
            else:
                self.print_error(e.message)
                if e.context:
                    self.print_dim(e.context)
            self._logs_hint()
            raise SystemExit(self.exit_code_for(e))
        except Exception as e:
            error_type = type(e).__name__
            self.console.print(f"\n[bold red]✗ {error_type}:[/bold red] {e}\n")
            if self.logger:
                self.logger.log_error(f"{error_type}: {e}")
            self._logs_hint()
            raise SystemExit(1)
        finally:
            if self.logger:
                self.logger.close()
