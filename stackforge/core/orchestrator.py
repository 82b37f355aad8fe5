"""
Orchestrator

Entry point of the core: binds a workspace once, then previews, provisions
and cancels stacks across it.
"""

import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from stackforge.constants import DEFAULT_MAX_PARALLEL
from stackforge.core.cryptor import SecretStore
from stackforge.core.preview_engine import PreviewEngine
from stackforge.core.references import ReferenceResolver
from stackforge.core.stack_loader import StackLoader
from stackforge.exceptions import (
    AlreadyInitialized,
    NoActiveRun,
    NotInitialized,
    OperationCancelled,
    ProviderQueryError,
    ProvisionCancelled,
    ProvisionFailed,
    RunInProgress,
)
from stackforge.logger import RunLogger, null_logger
from stackforge.models.params import InitParams, ProvisionOptions, ProvisionParams, StackParams
from stackforge.models.preview import PreviewResult
from stackforge.models.run import ProvisionRun, RunPhase, RunReport, RunStatus, StackStatus
from stackforge.models.secrets import Profile
from stackforge.models.stack import StackSpec
from stackforge.providers import ApplyContext, ProviderRegistry, default_registry
from stackforge.utils import WorkspaceUtils, detect_workspace_root, resolve_path

ConfirmCallback = Callable[[List[PreviewResult]], bool]

TERMINAL_PHASES = {
    RunStatus.COMPLETED: RunPhase.COMPLETED,
    RunStatus.FAILED: RunPhase.FAILED,
    RunStatus.CANCELLED: RunPhase.CANCELLED,
}

STATUS_EVENTS = {
    StackStatus.SUCCEEDED: "stack.succeeded",
    StackStatus.FAILED: "stack.failed",
    StackStatus.CANCELLED: "stack.cancelled",
}


class Orchestrator:
    """
    Coordinates secret loading, stack loading, preview and apply.

    Responsibilities:
    - Bind the project root, profile and stacks root once (init)
    - Make secrets ready before any provider is touched
    - Run refresh, preview and the confirmation gate
    - Apply stacks in dependency order, independent ones concurrently
    - Cancel pending and running stacks of active runs
    """

    def __init__(
        self,
        providers: Optional[ProviderRegistry] = None,
        logger: Optional[RunLogger] = None,
        confirm: Optional[ConfirmCallback] = None,
        max_parallel: int = DEFAULT_MAX_PARALLEL,
        workspace_resolver: Callable[[], Path] = detect_workspace_root,
    ):
        """
        Initialize the orchestrator.

        Args:
            providers: Provider registry (defaults to the built-in providers)
            logger: Logger for lifecycle events (defaults to a silent one)
            confirm: Preview gate; receives the previews, returns approval
            max_parallel: Maximum number of stacks applied at once
            workspace_resolver: Finds the project root when init gets none
        """
        self.providers = providers or default_registry()
        self.logger = logger or null_logger()
        self.confirm = confirm
        self.max_parallel = max(1, int(max_parallel))
        self.workspace_resolver = workspace_resolver

        self.project_root: Optional[Path] = None
        self.profile_name: Optional[str] = None
        self.stacks_dir: Optional[Path] = None
        self.default_options = ProvisionOptions()

        self._params: Optional[InitParams] = None
        self._phase = RunPhase.IDLE
        self._lock = threading.RLock()
        self._stores: Dict[Tuple[str, str], SecretStore] = {}
        self._runs: Dict[str, ProvisionRun] = {}
        self.last_run: Optional[ProvisionRun] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def phase(self) -> RunPhase:
        with self._lock:
            if self._runs:
                return next(reversed(self._runs.values())).phase
            return self._phase

    @property
    def is_initialized(self) -> bool:
        return self._params is not None

    def init(self, params: InitParams) -> None:
        """
        Bind the project root, profile and stacks root.

        Raises:
            AlreadyInitialized: If already bound with different parameters
        """
        with self._lock:
            if self._params is not None:
                if params == self._params:
                    return
                raise AlreadyInitialized(
                    "Orchestrator is already initialized with different parameters",
                    context=f"Bound profile: {self.profile_name}, root: {self.project_root}",
                )

            self._phase = RunPhase.INITIALIZING
            root = Path(params.project_root) if params.project_root else Path(self.workspace_resolver())
            if params.stacks_dir:
                stacks_dir = resolve_path(root, str(params.stacks_dir))
            else:
                stacks_dir = WorkspaceUtils.default_stacks_dir(root)

            self.project_root = root
            self.profile_name = params.profile
            self.stacks_dir = stacks_dir
            self.default_options = params.options
            self._params = params
            self._phase = RunPhase.IDLE
            self.logger.log(f"Initialized: root={root} profile={params.profile} stacks={stacks_dir}")

    def _require_init(self, operation: str):
        if self._params is None:
            raise NotInitialized(operation)

    def _target(self, params: Union[StackParams, ProvisionParams]) -> Tuple[str, Path]:
        profile = params.profile or self.profile_name
        if params.stacks_dir:
            stacks_dir = resolve_path(self.project_root, str(params.stacks_dir))
        else:
            stacks_dir = self.stacks_dir
        return profile, stacks_dir

    def secret_store(self, profile: str, stacks_dir: Path) -> SecretStore:
        """
        Profile and secrets, loaded on first use and cached once loaded.

        Raises:
            ProfileNotFound, KeyLoadError, DecryptionError: If not ready
        """
        key = (profile, str(stacks_dir))
        with self._lock:
            store = self._stores.get(key)
        if store is not None:
            return store

        store = SecretStore(self.project_root, profile, stacks_dir, logger=self.logger)
        store.read_profile_config()
        store.read_secret_files()

        with self._lock:
            self._stores.setdefault(key, store)
            return self._stores[key]

    def _prepare(self, params) -> Tuple[SecretStore, List[StackSpec]]:
        profile, stacks_dir = self._target(params)
        with self._lock:
            self._phase = RunPhase.LOADING
        try:
            store = self.secret_store(profile, stacks_dir)
            specs = StackLoader(stacks_dir).load_stacks(params.stacks)
            self._check_credentials(specs, store)
        except Exception:
            with self._lock:
                self._phase = RunPhase.FAILED
            raise
        return store, specs

    @staticmethod
    def _check_credentials(specs: Sequence[StackSpec], store: SecretStore):
        """
        Resolve every secret and auth placeholder of the selected stacks.

        Stack output references stay unresolved until apply.

        Raises:
            CredentialError: If a secret or credential is missing
        """
        resolver = ReferenceResolver(store.read_profile_config(), store.secrets, allow_unresolved_outputs=True)
        for spec in specs:
            resolver.resolve(spec.provider.config, spec.name)
            for resource in spec.resources:
                resolver.resolve(resource.config, spec.name)

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------

    def preview_provision(self, params: Union[ProvisionParams, StackParams]) -> List[PreviewResult]:
        """
        Compute what provisioning would change, without changing anything.

        Only reads provider state; refresh and apply are never called.

        Returns:
            One PreviewResult per stack, in dependency order
        """
        self._require_init("preview_provision")
        store, specs = self._prepare(params)

        with self._lock:
            self._phase = RunPhase.PREVIEWING
        engine = PreviewEngine(self.providers, self.project_root, logger=self.logger)
        try:
            results = engine.preview(specs, store.read_profile_config(), store.secrets)
        except Exception:
            with self._lock:
                self._phase = RunPhase.FAILED
            raise
        with self._lock:
            self._phase = RunPhase.IDLE
        return results

    # ------------------------------------------------------------------
    # Provision
    # ------------------------------------------------------------------

    def _register(self, specs: Sequence[StackSpec]) -> ProvisionRun:
        with self._lock:
            names = [spec.name for spec in specs]
            overlapping = []
            for active in self._runs.values():
                overlapping.extend(active.covers(names))
            if overlapping:
                raise RunInProgress(sorted(set(overlapping)))
            run = ProvisionRun(specs)
            self._runs[run.run_id] = run
            self.last_run = run
            return run

    def _unregister(self, run: ProvisionRun):
        with self._lock:
            self._runs.pop(run.run_id, None)
            self._phase = run.phase

    def active_runs(self) -> List[ProvisionRun]:
        with self._lock:
            return list(self._runs.values())

    def provision(self, params: ProvisionParams) -> RunReport:
        """
        Refresh, preview, confirm and apply the selected stacks.

        Args:
            params: Stack selector, profile override and options

        Returns:
            RunReport when every stack succeeded

        Raises:
            ProvisionFailed: If any stack failed (carries the report)
            ProvisionCancelled: If the run was cancelled or declined at the
                confirmation gate (carries the report)
            RunInProgress: If an active run covers any of the same stacks
            CredentialError: If a secret or credential placeholder cannot be
                resolved (checked before any provider is called)
        """
        self._require_init("provision")
        skip_refresh = params.skip_refresh or self.default_options.skip_refresh
        skip_preview = params.skip_preview or self.default_options.skip_preview

        store, specs = self._prepare(params)
        profile = store.read_profile_config()
        run = self._register(specs)
        self.logger.event("run.started", run=run.run_id, stacks=",".join(run.names))
        engine = PreviewEngine(self.providers, self.project_root, logger=self.logger)

        try:
            try:
                if not skip_refresh:
                    run.set_phase(RunPhase.REFRESHING)
                    self._refresh(run, engine, profile, store)

                if not skip_preview:
                    run.set_phase(RunPhase.PREVIEWING)
                    run.previews = engine.preview(run.stacks, profile, store.secrets, observed=run.observed)
                    self._gate(run)
            except KeyboardInterrupt:
                run.request_cancel(StackParams(), reason="interrupted")
                self._finish(run)
                raise ProvisionCancelled(run.report())
            except ProvisionCancelled:
                raise
            except Exception:
                run.set_phase(RunPhase.FAILED)
                raise

            run.set_phase(RunPhase.APPLYING)
            self._apply_all(run, engine, profile, store)
            report = self._finish(run)
        finally:
            self._unregister(run)

        if report.status == RunStatus.COMPLETED:
            return report
        if report.status == RunStatus.FAILED:
            raise ProvisionFailed(report)
        raise ProvisionCancelled(report)

    def _finish(self, run: ProvisionRun) -> RunReport:
        report = run.report()
        run.set_phase(TERMINAL_PHASES[report.status])
        self.logger.event(
            "run.finished",
            run=run.run_id,
            status=report.status.value,
            succeeded=len(report.succeeded),
            failed=len(report.failed),
            skipped=len(report.skipped),
            cancelled=len(report.cancelled),
        )
        return report

    def _refresh(self, run: ProvisionRun, engine: PreviewEngine, profile: Profile, store: SecretStore):
        """
        Refresh each stack's provider state into the run's cache.

        Raises:
            ProviderQueryError: If any refresh fails; nothing is applied
        """
        outputs: Dict[str, Dict] = {}
        for spec in run.stacks:
            if run.token.cancelled:
                break
            resolver = ReferenceResolver(profile, store.secrets, outputs, allow_unresolved_outputs=True)
            provider = engine.provider_for(spec, resolver)
            try:
                state = provider.refresh(spec)
            except ProviderQueryError:
                raise
            except Exception as e:
                raise ProviderQueryError(spec.name, e) from e
            run.observed[spec.name] = state
            outputs[spec.name] = dict(state.outputs)
            self.logger.debug(f"Refreshed {spec.name}: {len(state.resources)} resource(s)")

    def _gate(self, run: ProvisionRun):
        """
        Ask for confirmation of the previews.

        Raises:
            ProvisionCancelled: If declined, or the run was cancelled meanwhile
        """
        for result in run.previews:
            self.logger.log(f"Preview {result.stack_name}: {result.summary}")

        approved = True if self.confirm is None else bool(self.confirm(list(run.previews)))
        if approved and not run.token.cancelled:
            return

        reason = "declined at confirmation" if not approved else "cancelled before apply"
        for name in run.cancel_pending(reason):
            self.logger.event("stack.cancelled", stack=name, reason=reason)
        self._finish(run)
        raise ProvisionCancelled(run.report())

    def _apply_all(self, run: ProvisionRun, engine: PreviewEngine, profile: Profile, store: SecretStore):
        """Apply stacks as their dependencies succeed, up to max_parallel at once."""
        order = {name: index for index, name in enumerate(run.names)}
        indegree = {spec.name: len(spec.dependencies) for spec in run.stacks}
        dependents: Dict[str, List[str]] = {name: [] for name in run.names}
        for spec in run.stacks:
            for dep in spec.dependencies:
                dependents[dep].append(spec.name)

        outputs: Dict[str, Dict] = {}
        outputs_lock = threading.Lock()
        ready = [name for name in run.names if indegree[name] == 0]
        futures = {}
        interrupted = False

        with ThreadPoolExecutor(max_workers=self.max_parallel, thread_name_prefix="stackforge") as executor:
            while ready or futures:
                for name in ready:
                    future = executor.submit(
                        self._apply_stack, run, name, engine, profile, store, outputs, outputs_lock
                    )
                    futures[future] = name
                ready = []

                try:
                    done, _ = wait(futures, return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    if not interrupted:
                        interrupted = True
                        self.logger.warning("Interrupted, cancelling all stacks")
                        run.request_cancel(StackParams(), reason="interrupted")
                    continue

                for future in done:
                    name = futures.pop(future)
                    status = future.result()
                    if status == StackStatus.SUCCEEDED:
                        for child in dependents[name]:
                            indegree[child] -= 1
                            if indegree[child] == 0:
                                ready.append(child)
                    else:
                        self._skip_dependents(run, name, status, dependents)
                ready.sort(key=order.get)

    def _skip_dependents(
        self,
        run: ProvisionRun,
        name: str,
        status: StackStatus,
        dependents: Dict[str, List[str]],
    ):
        reason = f"dependency '{name}' {status.value}"
        queue = list(dependents[name])
        seen = set()
        while queue:
            child = queue.pop(0)
            if child in seen:
                continue
            seen.add(child)
            if run.skip(child, reason):
                self.logger.event("stack.skipped", stack=child, reason=reason)
            queue.extend(dependents[child])

    def _apply_stack(
        self,
        run: ProvisionRun,
        name: str,
        engine: PreviewEngine,
        profile: Profile,
        store: SecretStore,
        outputs: Dict[str, Dict],
        outputs_lock: threading.Lock,
    ) -> StackStatus:
        """
        Apply one stack and record its outcome.

        Provider errors are recorded on the stack, never raised.

        Returns:
            The terminal status recorded for the stack
        """
        if not run.start(name):
            return run.status(name)

        spec = run.spec(name)
        self.logger.event("stack.started", stack=name, run=run.run_id)

        with outputs_lock:
            dependency_outputs = {dep: outputs[dep] for dep in spec.dependencies if dep in outputs}

        error = None
        try:
            resolver = ReferenceResolver(profile, store.secrets, dependency_outputs)
            provider = engine.provider_for(spec, resolver)
            context = ApplyContext(
                stack=spec,
                resources=engine.resolve_resources(spec, resolver),
                credentials=provider.credentials,
                token=run.token_for(name),
                dependency_outputs=dependency_outputs,
                logger=self.logger,
            )
            context.checkpoint()
            result = provider.apply(spec, context)
        except OperationCancelled:
            status = run.finish(name, StackStatus.CANCELLED)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            status = run.finish(name, StackStatus.FAILED, error=error)
        else:
            status = run.finish(name, StackStatus.SUCCEEDED, outputs=result.outputs)
            if status == StackStatus.SUCCEEDED:
                with outputs_lock:
                    outputs[name] = dict(result.outputs)

        self.logger.event(STATUS_EVENTS[status], stack=name, error=error)
        return status

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def cancel(self, params: StackParams) -> List[str]:
        """
        Cancel pending and running stacks of the active runs.

        Pending stacks are cancelled at once; running stacks stop at their
        next checkpoint. Finished stacks are not affected.

        Returns:
            Names of the affected stacks

        Raises:
            NoActiveRun: If no pending or running stack matches
        """
        self._require_init("cancel")
        affected = []
        for run in self.active_runs():
            for name in run.request_cancel(params, reason="cancelled by request"):
                affected.append(name)
                if run.status(name) == StackStatus.CANCELLED:
                    self.logger.event("stack.cancelled", stack=name)
                else:
                    self.logger.event("stack.cancelling", stack=name)

        if not affected:
            raise NoActiveRun(params.stacks)
        return affected
