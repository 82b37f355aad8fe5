"""
Terraform Provider

Applies a stack through the Terraform configuration in its ``terraform``
subdirectory.
"""

import json
import os
import signal
import subprocess
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from stackforge.cancellation import CancelToken
from stackforge.constants import (
    TERRAFORM_CANCEL_GRACE_SECONDS,
    TERRAFORM_POLL_INTERVAL,
    TERRAFORM_SUBDIR,
    TERRAFORM_VARS_FILE,
)
from stackforge.exceptions import OperationCancelled, ProviderError, ProviderQueryError
from stackforge.models.results import ExecutionResult
from stackforge.models.stack import ResourceSpec, StackSpec
from stackforge.providers.base import (
    ApplyContext,
    ApplyResult,
    ObservedResource,
    ObservedState,
    Provider,
)


class TerraformProvider(Provider):
    """
    Manages Terraform operations for one stack.

    Responsibilities:
    - Initialize the working directory
    - Read state (show -json) and outputs (output -json)
    - Refresh-only and full applies
    - tfvars generation from the resolved resources
    """

    name = "terraform"

    def terraform_dir(self, stack: StackSpec) -> Path:
        return stack.stack_dir / self.option("dir", TERRAFORM_SUBDIR)

    def _env(self) -> Dict[str, str]:
        env = dict(os.environ)
        extra = self.option("env") or {}
        if not isinstance(extra, dict):
            raise ProviderError("Terraform provider option 'env' must be a mapping")
        env.update({str(key): str(value) for key, value in extra.items()})
        return env

    def _run_command(
        self,
        stack: StackSpec,
        args: List[str],
        check: bool = True,
        token: Optional[CancelToken] = None,
    ) -> ExecutionResult:
        """
        Run Terraform command.

        Args:
            stack: Stack whose terraform directory is the working directory
            args: Command arguments (e.g., ['show', '-json'])
            check: Whether to raise exception on failure
            token: Cancel token; when set, the process is interrupted with
                SIGINT and killed after the grace period

        Returns:
            ExecutionResult object

        Raises:
            ProviderError: If command fails and check=True
            OperationCancelled: If the command was interrupted by a cancel
        """
        cmd = ["terraform"] + args
        cmd_string = " ".join(cmd)
        cwd = self.terraform_dir(stack)

        try:
            if token is None:
                result = subprocess.run(
                    cmd,
                    cwd=cwd,
                    capture_output=True,
                    text=True,
                    check=False,
                    env=self._env(),
                )
                exec_result = ExecutionResult(
                    returncode=result.returncode,
                    stdout=result.stdout or "",
                    stderr=result.stderr or "",
                    command=cmd_string,
                )
            else:
                exec_result = self._run_interruptible(cmd, cwd, token)
        except OSError as e:
            raise ProviderError(
                "Failed to execute Terraform command",
                context=f"Command: {cmd_string}, Error: {str(e)}",
            ) from e

        if exec_result.interrupted:
            raise OperationCancelled(
                f"Terraform command interrupted: {cmd_string}",
                context=token.reason if token else None,
            )

        if check and exec_result.is_failure:
            raise ProviderError(
                f"Terraform command failed: {cmd_string}",
                context=f"Exit code: {exec_result.returncode}\nError: {exec_result.stderr}",
            )

        return exec_result

    def _run_interruptible(self, cmd: List[str], cwd: Path, token: CancelToken) -> ExecutionResult:
        process = subprocess.Popen(
            cmd,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=self._env(),
        )
        interrupted_at = None
        while True:
            try:
                stdout, stderr = process.communicate(timeout=TERRAFORM_POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                if token.cancelled and interrupted_at is None:
                    # Terraform stops gracefully on the first SIGINT
                    process.send_signal(signal.SIGINT)
                    interrupted_at = time.monotonic()
                elif interrupted_at is not None and (
                    time.monotonic() - interrupted_at > TERRAFORM_CANCEL_GRACE_SECONDS
                ):
                    process.kill()

        return ExecutionResult(
            returncode=process.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            command=" ".join(cmd),
            interrupted=interrupted_at is not None,
        )

    def init(self, stack: StackSpec) -> Optional[ExecutionResult]:
        """Initialize Terraform unless the working directory already is."""
        if (self.terraform_dir(stack) / ".terraform").exists():
            return None
        return self._run_command(stack, ["init", "-input=false", "-no-color"])

    def generate_tfvars(
        self,
        stack: StackSpec,
        resources,
        dependency_outputs: Optional[Dict[str, Any]] = None,
    ) -> Path:
        """
        Write the variables file Terraform picks up automatically.

        Returns:
            Path to generated tfvars file
        """
        tfvars = {
            "stack_name": stack.name,
            "resources": {
                resource.name: {"type": resource.type, "config": resource.config}
                for resource in resources
            },
            "dependency_outputs": {
                name: dict(values) for name, values in (dependency_outputs or {}).items()
            },
        }
        output_file = self.terraform_dir(stack) / TERRAFORM_VARS_FILE
        with open(output_file, "w") as f:
            json.dump(tfvars, f, indent=2)
        return output_file

    def get_outputs(self, stack: StackSpec) -> Dict[str, Any]:
        """Terraform outputs as plain values."""
        result = self._run_command(stack, ["output", "-json"])
        if not result.stdout.strip():
            return {}
        outputs = json.loads(result.stdout)
        return {key: body.get("value") for key, body in outputs.items()}

    def query_state(self, stack: StackSpec) -> ObservedState:
        try:
            self.init(stack)
            result = self._run_command(stack, ["show", "-json", "-no-color"])
            document = json.loads(result.stdout) if result.stdout.strip() else {}
        except (ProviderError, ValueError) as e:
            raise ProviderQueryError(stack.name, e) from e

        values = document.get("values") or {}
        resources = {}
        for item in (values.get("root_module") or {}).get("resources", []):
            if item.get("mode", "managed") != "managed":
                continue
            resources[item["name"]] = ObservedResource(
                type=item.get("type", ""), config=item.get("values") or {}
            )
        outputs = {
            key: body.get("value") for key, body in (values.get("outputs") or {}).items()
        }
        return ObservedState(resources=resources, outputs=outputs)

    def refresh(self, stack: StackSpec) -> ObservedState:
        try:
            self.init(stack)
            self._run_command(
                stack,
                ["apply", "-refresh-only", "-auto-approve", "-input=false", "-no-color"],
            )
        except ProviderError as e:
            raise ProviderQueryError(stack.name, e) from e
        return self.query_state(stack)

    def apply(self, stack: StackSpec, context: ApplyContext) -> ApplyResult:
        self.init(stack)
        context.checkpoint()

        var_file = self.generate_tfvars(stack, context.resources, context.dependency_outputs)
        context.logger.debug(f"{stack.name}: wrote {var_file}")
        context.checkpoint()

        self._run_command(
            stack,
            ["apply", "-input=false", "-no-color", "-compact-warnings", "-auto-approve"],
            token=context.token,
        )
        context.checkpoint()

        return ApplyResult(outputs=self.get_outputs(stack))

    def differs(self, desired: ResourceSpec, observed: ObservedResource) -> bool:
        """Terraform reports computed attributes too; only compare declared ones."""
        if desired.type != observed.type:
            return True
        return any(observed.config.get(key) != value for key, value in desired.config.items())
