"""Filesystem state backend provider"""

import json
from pathlib import Path
from typing import Any, Dict

from stackforge.exceptions import ProviderError, ProviderQueryError
from stackforge.models.preview import OperationKind, ResourceChange
from stackforge.models.stack import StackSpec
from stackforge.providers.base import (
    ApplyContext,
    ApplyResult,
    ObservedResource,
    ObservedState,
    Provider,
)
from stackforge.utils import WorkspaceUtils, resolve_path


class LocalStateProvider(Provider):
    """
    Keeps each stack's resources in a JSON file.

    State is written after every resource so an interrupted apply leaves
    a state file that matches what was actually applied.
    """

    name = "local"

    @property
    def state_dir(self) -> Path:
        configured = self.option("stateDir")
        if configured:
            return resolve_path(self.workdir, str(configured))
        return WorkspaceUtils.state_dir(self.workdir)

    def state_path(self, stack: StackSpec) -> Path:
        return self.state_dir / f"{stack.name}.json"

    def _read(self, stack: StackSpec) -> Dict[str, Any]:
        path = self.state_path(stack)
        if not path.exists():
            return {"resources": {}, "outputs": {}}
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ProviderQueryError(stack.name, e) from e
        if not isinstance(data, dict) or not isinstance(data.get("resources", {}), dict):
            raise ProviderQueryError(stack.name, ValueError(f"Malformed state file {path}"))
        data.setdefault("resources", {})
        data.setdefault("outputs", {})
        return data

    def _write(self, stack: StackSpec, data: Dict[str, Any]):
        path = self.state_path(stack)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            tmp_path.replace(path)
        except OSError as e:
            raise ProviderError(f"Failed to write state for stack '{stack.name}'", context=str(e)) from e

    def query_state(self, stack: StackSpec) -> ObservedState:
        data = self._read(stack)
        resources = {
            name: ObservedResource(type=body.get("type", ""), config=body.get("config") or {})
            for name, body in data["resources"].items()
        }
        return ObservedState(resources=resources, outputs=data["outputs"])

    def apply(self, stack: StackSpec, context: ApplyContext) -> ApplyResult:
        data = self._read(stack)
        current = data["resources"]
        operations = []

        for resource in context.resources:
            context.checkpoint()
            body = {"type": resource.type, "config": resource.config}
            existing = current.get(resource.name)
            if existing is None:
                kind = OperationKind.CREATE
            elif existing != body:
                kind = OperationKind.UPDATE
            else:
                kind = OperationKind.NO_OP

            if kind != OperationKind.NO_OP:
                current[resource.name] = body
                self._write(stack, data)
                context.logger.debug(f"{stack.name}: {kind.value} {resource.name}")
            operations.append(ResourceChange(resource.name, kind))

        desired = {resource.name for resource in context.resources}
        for name in sorted(set(current) - desired):
            context.checkpoint()
            del current[name]
            self._write(stack, data)
            context.logger.debug(f"{stack.name}: delete {name}")
            operations.append(ResourceChange(name, OperationKind.DELETE))

        data["outputs"] = {name: body["config"] for name, body in current.items()}
        self._write(stack, data)
        return ApplyResult(outputs=dict(data["outputs"]), operations=tuple(operations))
