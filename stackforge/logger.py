"""
Logging system for Stackforge
Provides real-time logging to files with clean console output
"""

import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, TextIO

from rich.console import Console

from stackforge.constants import LOG_DATE_FORMAT, LOG_TIME_FORMAT

ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")

EVENT_STYLES = {
    "stack.started": "color(214)",
    "stack.succeeded": "green",
    "stack.failed": "red",
    "stack.cancelled": "yellow",
    "stack.skipped": "dim",
}


class RunLogger:
    """
    Manages logging for orchestrator operations
    - Writes all output to log files in real-time
    - Shows clean progress UI in console (unless quiet)
    - Emits structured lifecycle events
    """

    def __init__(
        self,
        operation: str,
        log_dir: Optional[Path] = None,
        verbose: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
    ):
        """
        Initialize logger

        Args:
            operation: Operation name (e.g., 'provision', 'preview')
            log_dir: Root directory for log files (None disables the file)
            verbose: If True, show debug lines in console
            quiet: If True, never print to console
            console: Rich console to print to
        """
        self.operation = operation
        self.verbose = verbose
        self.quiet = quiet
        self.console = console or Console()
        self.log_file: Optional[TextIO] = None
        self.log_path: Optional[Path] = None
        self.current_step = ""
        self.has_errors = False
        self._lock = threading.Lock()

        if log_dir is not None:
            # Structure: {log_dir}/{date}/{time}_{operation}.log
            now = datetime.now()
            day_dir = Path(log_dir) / now.strftime(LOG_DATE_FORMAT)
            day_dir.mkdir(parents=True, exist_ok=True)
            self.log_path = day_dir / f"{now.strftime(LOG_TIME_FORMAT)}_{operation}.log"

            # Line buffered for real-time tailing
            self.log_file = open(self.log_path, "w", buffering=1)
            self._write_log_header()

    def _write_log_header(self):
        """Write log file header"""
        header = f"""
{"=" * 80}
Stackforge Log
{"=" * 80}
Operation: {self.operation}
Started: {datetime.now().isoformat()}
{"=" * 80}

"""
        self.log_file.write(header)
        self.log_file.flush()

    def _print(self, markup: str):
        if not self.quiet:
            self.console.print(markup)

    def _write(self, line: str):
        if self.log_file:
            self.log_file.write(ANSI_ESCAPE.sub("", line))

    def log(self, message: str, level: str = "INFO"):
        """
        Log a message to file and optionally console

        Args:
            message: Message to log
            level: Log level (INFO, WARNING, ERROR, DEBUG)
        """
        timestamp = datetime.now().strftime("%H:%M:%S")
        with self._lock:
            self._write(f"[{timestamp}] [{level}] {message}\n")

            if self.verbose:
                if level == "ERROR":
                    self._print(f"[red]{message}[/red]")
                elif level == "WARNING":
                    self._print(f"[yellow]{message}[/yellow]")
                elif level == "DEBUG":
                    self._print(f"[dim]{message}[/dim]")
                else:
                    self._print(message)

    def debug(self, message: str):
        self.log(message, "DEBUG")

    def event(self, event: str, stack: Optional[str] = None, **fields):
        """
        Emit a structured lifecycle event.

        Args:
            event: Event name (e.g., 'stack.started', 'run.finished')
            stack: Stack the event refers to
            **fields: Extra key=value pairs
        """
        parts = [event]
        if stack is not None:
            parts.append(f"stack={stack}")
        for key in sorted(fields):
            value = fields[key]
            if value is None:
                continue
            text = str(value).replace("\n", " ")
            if " " in text:
                text = f'"{text}"'
            parts.append(f"{key}={text}")
        line = " ".join(parts)

        level = "ERROR" if event.endswith(".failed") else "INFO"
        self.log(line, level)

        style = EVENT_STYLES.get(event)
        if style and stack is not None and not self.verbose:
            status = event.split(".", 1)[1]
            with self._lock:
                self._print(f"  [{style}]●[/{style}] {stack} [dim]{status}[/dim]")

    def log_error(self, error: str, context: Optional[str] = None):
        """
        Log an error with context

        Args:
            error: Error message
            context: Additional context (e.g., stack that failed)
        """
        with self._lock:
            self.has_errors = True

            error_block = f"""
{"!" * 80}
ERROR OCCURRED
{"!" * 80}
{error}
"""
            if context:
                error_block += f"\nContext: {context}\n"
            error_block += f"{'!' * 80}\n\n"
            self._write(error_block)

            self._print(f"[bold red]✗ {error}[/bold red]")
            if context:
                self._print(f"  [color(208)]{context}[/color(208)]")

    def step(self, step_name: str):
        """
        Start a new step

        Args:
            step_name: Name of the step
        """
        if self.current_step and not self.verbose:
            self._print("")

        self.current_step = step_name
        self.log(f"Step: {step_name}", "INFO")

        if not self.verbose:
            self._print(f"[color(214)]▶[/color(214)] [white]{step_name}[/white]")

    def success(self, message: str):
        """Log a success message"""
        self.log(message, "INFO")

        if not self.verbose:
            self._print(f"  [dim]✓ {message}[/dim]")

    def warning(self, message: str):
        """Log a warning message"""
        self.log(message, "WARNING")

        if not self.verbose:
            self._print(f"  [yellow]⚠[/yellow] [dim]{message}[/dim]")

    def close(self):
        """Close log file"""
        with self._lock:
            if self.log_file:
                footer = f"""
{"=" * 80}
Completed: {datetime.now().isoformat()}
Status: {"FAILED" if self.has_errors else "SUCCESS"}
{"=" * 80}
"""
                self.log_file.write(footer)
                self.log_file.close()
                self.log_file = None

    def __enter__(self):
        """Context manager entry"""
        return self

    def __exit__(self, exc_type, exc_val, _exc_tb):
        """Context manager exit"""
        if exc_type is not None and exc_type != SystemExit:
            self.log_error(
                str(exc_val) if exc_val else "Operation failed",
                context=f"{exc_type.__name__}",
            )
        self.close()
        return False  # Don't suppress exceptions


def null_logger() -> RunLogger:
    """Console-silent, file-less logger used when the caller supplies none."""
    return RunLogger("orchestrator", quiet=True)
