"""Stackforge CLI - Preview command (like terraform plan)"""

from pathlib import Path
from typing import Optional, Sequence

import click

from stackforge.base import BaseCommand
from stackforge.constants import DEFAULT_PROFILE
from stackforge.core.orchestrator import Orchestrator
from stackforge.models.params import InitParams, ProvisionParams
from stackforge.ui_components import print_previews


class PreviewCommand(BaseCommand):
    """Show what provisioning would change."""

    def __init__(
        self,
        stacks: Sequence[str] = (),
        profile: str = DEFAULT_PROFILE,
        stacks_dir: Optional[str] = None,
        verbose: bool = False,
        json_output: bool = False,
        project_root: Optional[Path] = None,
    ):
        super().__init__(verbose=verbose, json_output=json_output, project_root=project_root)
        self.stacks = tuple(stacks)
        self.profile = profile
        self.stacks_dir = stacks_dir

    def execute(self) -> None:
        self.show_header(
            title="Preview",
            subtitle="Comparing desired and current state",
            profile=self.profile,
        )

        logger = self.init_logger("preview")
        orchestrator = Orchestrator(logger=logger)
        orchestrator.init(
            InitParams(
                profile=self.profile,
                project_root=self.project_root,
                stacks_dir=Path(self.stacks_dir) if self.stacks_dir else None,
            )
        )

        logger.step("Computing changes")
        results = orchestrator.preview_provision(ProvisionParams(stacks=self.stacks))

        if self.json_output:
            self.output_json({"stacks": [result.to_dict() for result in results]})
            return

        print_previews(results, console=self.console)
        changed = sum(1 for result in results if result.has_changes)
        if changed:
            logger.success(f"{changed} stack(s) with changes")
            self.console.print("\n[bold]To apply these changes:[/bold]")
            self.console.print("  [cyan]stackforge provision[/cyan]\n")
        else:
            logger.success("Infrastructure is up to date")


@click.command()
@click.argument("stacks", nargs=-1)
@click.option("--profile", "-p", default=DEFAULT_PROFILE, show_default=True, help="Profile to use")
@click.option("--stacks-dir", help="Stacks root (defaults to .sc/stacks)")
@click.option("--json", "json_output", is_flag=True, help="Output in JSON format")
@click.option("--verbose", "-v", is_flag=True, help="Show all output")
def preview(stacks, profile, stacks_dir, json_output, verbose):
    """
    Show what provisioning would change, without changing anything

    Examples:
        stackforge preview                 # All stacks
        stackforge preview app --json      # JSON output for CI/CD
    """
    cmd = PreviewCommand(
        stacks=stacks,
        profile=profile,
        stacks_dir=stacks_dir,
        verbose=verbose,
        json_output=json_output,
    )
    cmd.run()
