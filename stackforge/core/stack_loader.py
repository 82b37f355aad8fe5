"""Stack loader with discovery and dependency ordering"""

import heapq
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

import yaml

from stackforge.constants import STACK_DEFINITION_FILE, SUPPORTED_SCHEMA_VERSIONS
from stackforge.core.references import stack_references
from stackforge.exceptions import (
    ConfigurationError,
    DependencyCycle,
    ParseError,
    StackNotFound,
)
from stackforge.models.stack import ProviderBinding, ResourceSpec, StackSpec


class StackLoader:
    """Discovers stack definitions and orders them by dependency"""

    def __init__(self, stacks_dir: Path):
        """
        Initialize the stack loader.

        Args:
            stacks_dir: Path to the stacks root directory
        """
        self.stacks_dir = Path(stacks_dir)

    def discover(self) -> List[str]:
        """
        List available stack names without parsing them.

        Raises:
            ConfigurationError: If the stacks root does not exist
        """
        if not self.stacks_dir.is_dir():
            raise ConfigurationError(
                f"Stacks directory not found: {self.stacks_dir}",
                context="Pass --stacks-dir or create .sc/stacks",
            )

        names = []
        for entry in sorted(self.stacks_dir.iterdir()):
            if not entry.is_dir() or entry.name.startswith((".", "_")):
                continue
            if (entry / STACK_DEFINITION_FILE).is_file():
                names.append(entry.name)
        return names

    def load_stack(self, stack_name: str) -> StackSpec:
        """
        Parse a single stack definition.

        Args:
            stack_name: Name of the stack directory

        Returns:
            Parsed StackSpec

        Raises:
            StackNotFound: If the stack has no definition file
            ParseError: If the definition is malformed
        """
        path = self.stacks_dir / stack_name / STACK_DEFINITION_FILE
        if not path.is_file():
            raise StackNotFound(stack_name, self.discover())

        document = self._load_yaml(path)
        return self._parse(stack_name, path, document)

    def load_stacks(self, selector: Iterable[str] = ()) -> List[StackSpec]:
        """
        Load the selected stacks plus their transitive dependencies.

        Args:
            selector: Stack names to load (empty means all)

        Returns:
            Stacks in dependency order, ties broken by name

        Raises:
            StackNotFound: If a selected or depended-on stack does not exist
            DependencyCycle: If dependencies form a cycle
            ParseError: If a definition is malformed
        """
        available = self.discover()
        wanted = list(selector) or list(available)

        for name in wanted:
            if name not in available:
                raise StackNotFound(name, available)

        specs: Dict[str, StackSpec] = {}
        queue = sorted(set(wanted))
        while queue:
            name = queue.pop(0)
            if name in specs:
                continue
            spec = self.load_stack(name)
            specs[name] = spec
            for dep in spec.dependencies:
                if dep not in available:
                    raise StackNotFound(dep, available, referenced_by=name)
                if dep not in specs:
                    queue.append(dep)

        return self._order(specs)

    def _order(self, specs: Dict[str, StackSpec]) -> List[StackSpec]:
        """
        Topologically sort stacks (Kahn's algorithm over a min-heap).

        Raises:
            DependencyCycle: If some stacks can never become ready
        """
        indegree = {name: len(spec.dependencies) for name, spec in specs.items()}
        dependents: Dict[str, List[str]] = {name: [] for name in specs}
        for name, spec in specs.items():
            for dep in spec.dependencies:
                dependents[dep].append(name)

        ready = [name for name, degree in indegree.items() if degree == 0]
        heapq.heapify(ready)

        ordered = []
        while ready:
            name = heapq.heappop(ready)
            ordered.append(specs[name])
            for dependent in dependents[name]:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    heapq.heappush(ready, dependent)

        if len(ordered) != len(specs):
            remaining = {name for name, degree in indegree.items() if degree > 0}
            raise DependencyCycle(self._find_cycle(specs, remaining))

        return ordered

    def _find_cycle(self, specs: Dict[str, StackSpec], remaining: Set[str]) -> List[str]:
        """
        Find the cycle through the smallest stack that lies on one.

        Returns:
            Cycle members in dependency order, starting from the smallest
        """
        for start in sorted(remaining):
            visited: Set[str] = set()

            def visit(node: str, chain: List[str]) -> Optional[List[str]]:
                for dep in sorted(specs[node].dependencies):
                    if dep not in remaining:
                        continue
                    if dep == start:
                        return chain
                    if dep in visited:
                        continue
                    visited.add(dep)
                    found = visit(dep, chain + [dep])
                    if found:
                        return found
                return None

            cycle = visit(start, [start])
            if cycle:
                return cycle

        return sorted(remaining)

    def _parse(self, stack_name: str, path: Path, document) -> StackSpec:
        """
        Validate a stack document and build its StackSpec.

        Raises:
            ParseError: If any field has the wrong shape
        """
        if not isinstance(document, dict):
            raise ParseError(str(path), "Stack definition must be a mapping")

        schema_version = str(document.get("schemaVersion", SUPPORTED_SCHEMA_VERSIONS[0]))
        if schema_version not in SUPPORTED_SCHEMA_VERSIONS:
            raise ParseError(
                str(path),
                f"Unsupported schemaVersion '{schema_version}' "
                f"(supported: {', '.join(SUPPORTED_SCHEMA_VERSIONS)})",
            )

        depends_on = document.get("dependsOn") or []
        if not isinstance(depends_on, list) or not all(isinstance(dep, str) for dep in depends_on):
            raise ParseError(str(path), "dependsOn must be a list of stack names")

        provider = document.get("provider")
        if not isinstance(provider, dict) or not isinstance(provider.get("type"), str):
            raise ParseError(str(path), "provider.type is required")
        provider_config = provider.get("config") or {}
        if not isinstance(provider_config, dict):
            raise ParseError(str(path), "provider.config must be a mapping")

        raw_resources = document.get("resources") or {}
        if not isinstance(raw_resources, dict):
            raise ParseError(str(path), "resources must be a mapping of name to resource")

        resources = []
        for name in sorted(raw_resources):
            body = raw_resources[name]
            if not isinstance(body, dict) or not isinstance(body.get("type"), str):
                raise ParseError(str(path), f"Resource '{name}' must declare a type")
            config = body.get("config") or {}
            if not isinstance(config, dict):
                raise ParseError(str(path), f"Resource '{name}' config must be a mapping")
            resources.append(ResourceSpec(name=str(name), type=body["type"], config=config))

        referenced = stack_references(provider_config)
        for resource in resources:
            referenced |= stack_references(resource.config)

        return StackSpec(
            name=stack_name,
            source_path=path,
            provider=ProviderBinding(type=provider["type"], config=provider_config),
            dependencies=tuple(sorted(set(depends_on) | referenced)),
            resources=tuple(resources),
            schema_version=schema_version,
        )

    def _load_yaml(self, file_path: Path):
        """
        Load and parse a YAML file.

        Raises:
            ParseError: If the YAML is invalid or the file unreadable
        """
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ParseError(str(file_path), f"Invalid YAML: {e}") from e
        except UnicodeDecodeError as e:
            raise ParseError(str(file_path), "File is not valid UTF-8") from e
        except OSError as e:
            raise ParseError(str(file_path), str(e)) from e
