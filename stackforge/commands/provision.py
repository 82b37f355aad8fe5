"""Stackforge CLI - Provision command"""

from pathlib import Path
from typing import List, Optional, Sequence

import click

from stackforge.base import BaseCommand
from stackforge.constants import DEFAULT_MAX_PARALLEL, DEFAULT_PROFILE
from stackforge.core.orchestrator import Orchestrator
from stackforge.exceptions import NoActiveRun, ProvisionCancelled, ProvisionFailed
from stackforge.models.params import InitParams, ProvisionOptions, ProvisionParams, StackParams
from stackforge.models.preview import PreviewResult
from stackforge.ui_components import print_previews, print_report


class ProvisionCommand(BaseCommand):
    """Refresh, preview, confirm and apply stacks."""

    def __init__(
        self,
        stacks: Sequence[str] = (),
        profile: str = DEFAULT_PROFILE,
        stacks_dir: Optional[str] = None,
        skip_refresh: bool = False,
        skip_preview: bool = False,
        yes: bool = False,
        parallel: int = DEFAULT_MAX_PARALLEL,
        verbose: bool = False,
        json_output: bool = False,
        project_root: Optional[Path] = None,
    ):
        super().__init__(verbose=verbose, json_output=json_output, project_root=project_root)
        self.stacks = tuple(stacks)
        self.profile = profile
        self.stacks_dir = stacks_dir
        self.options = ProvisionOptions(skip_refresh=skip_refresh, skip_preview=skip_preview)
        self.yes = yes or json_output
        self.parallel = parallel
        self.orchestrator: Optional[Orchestrator] = None

    def confirm_previews(self, results: List[PreviewResult]) -> bool:
        """Preview gate: show the changes and ask before applying."""
        if not self.json_output:
            print_previews(results, console=self.console)
        if not any(result.has_changes for result in results):
            self.print_dim("No changes to apply")
            return True
        if self.yes:
            return True
        return self.confirm("Apply these changes?")

    def on_interrupt(self) -> None:
        if self.orchestrator is None or not self.orchestrator.is_initialized:
            return
        try:
            self.orchestrator.cancel(StackParams())
        except NoActiveRun:
            pass

    def execute(self) -> None:
        self.show_header(
            title="Provision Stacks",
            subtitle=", ".join(self.stacks) if self.stacks else "All stacks",
            profile=self.profile,
        )

        logger = self.init_logger("provision")
        self.orchestrator = Orchestrator(
            logger=logger,
            confirm=self.confirm_previews,
            max_parallel=self.parallel,
        )
        self.orchestrator.init(
            InitParams(
                profile=self.profile,
                project_root=self.project_root,
                stacks_dir=Path(self.stacks_dir) if self.stacks_dir else None,
            )
        )

        logger.step("Provisioning")
        try:
            report = self.orchestrator.provision(
                ProvisionParams(stacks=self.stacks, options=self.options)
            )
        except (ProvisionFailed, ProvisionCancelled) as e:
            if self.json_output:
                self.output_json(e.report.to_dict())
            else:
                print_report(e.report, console=self.console)
            raise

        if self.json_output:
            self.output_json(report.to_dict())
            return

        print_report(report, console=self.console)
        logger.success(f"Provisioned {len(report.succeeded)} stack(s)")


@click.command()
@click.argument("stacks", nargs=-1)
@click.option("--profile", "-p", default=DEFAULT_PROFILE, show_default=True, help="Profile to use")
@click.option("--stacks-dir", help="Stacks root (defaults to .sc/stacks)")
@click.option("--skip-refresh", is_flag=True, help="Do not refresh provider state first")
@click.option("--skip-preview", is_flag=True, help="Apply without previewing or confirming")
@click.option("--yes", "-y", is_flag=True, help="Apply without asking for confirmation")
@click.option(
    "--parallel",
    type=click.IntRange(min=1),
    default=DEFAULT_MAX_PARALLEL,
    show_default=True,
    help="Maximum stacks applied at once",
)
@click.option("--json", "json_output", is_flag=True, help="Output in JSON format")
@click.option("--verbose", "-v", is_flag=True, help="Show all output")
def provision(stacks, profile, stacks_dir, skip_refresh, skip_preview, yes, parallel, json_output, verbose):
    """
    Provision stacks - refresh, preview, confirm and apply

    Without STACKS every stack is provisioned. Named stacks bring their
    dependencies along.

    Examples:
        stackforge provision                    # Everything
        stackforge provision app --yes          # app and what it depends on
        stackforge provision --skip-preview     # No preview, no prompt
    """
    cmd = ProvisionCommand(
        stacks=stacks,
        profile=profile,
        stacks_dir=stacks_dir,
        skip_refresh=skip_refresh,
        skip_preview=skip_preview,
        yes=yes,
        parallel=parallel,
        verbose=verbose,
        json_output=json_output,
    )
    cmd.run()
