"""
Provision Run Models

Live run state owned by the orchestrator, and the immutable report it
produces when the run ends.
"""

import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from stackforge.cancellation import CancelToken
from stackforge.exceptions import StateError
from stackforge.models.stack import StackSpec


class StackStatus(Enum):
    """Status of a stack within one run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self not in (StackStatus.PENDING, StackStatus.RUNNING)


ALLOWED_TRANSITIONS = {
    StackStatus.PENDING: {StackStatus.RUNNING, StackStatus.CANCELLED, StackStatus.SKIPPED},
    StackStatus.RUNNING: {StackStatus.SUCCEEDED, StackStatus.FAILED, StackStatus.CANCELLED},
}


class RunPhase(Enum):
    """Orchestrator state machine phases."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    LOADING = "loading"
    REFRESHING = "refreshing"
    PREVIEWING = "previewing"
    APPLYING = "applying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunStatus(Enum):
    """Terminal outcome of a run."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class StackOutcome:
    """Status of a single stack, with timing and cause."""

    name: str
    status: StackStatus = StackStatus.PENDING
    error: Optional[str] = None
    reason: Optional[str] = None
    cancel_requested: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    outputs: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def __repr__(self) -> str:
        return f"StackOutcome(name={self.name}, status={self.status.value})"


@dataclass(frozen=True)
class RunReport:
    """Immutable per-stack report of a finished run."""

    run_id: str
    status: RunStatus
    outcomes: Tuple[StackOutcome, ...]
    previews: Tuple[Any, ...] = ()

    def outcome(self, stack_name: str) -> StackOutcome:
        for item in self.outcomes:
            if item.name == stack_name:
                return item
        raise KeyError(stack_name)

    def _with_status(self, status: StackStatus) -> List[str]:
        return [item.name for item in self.outcomes if item.status == status]

    @property
    def succeeded(self) -> List[str]:
        return self._with_status(StackStatus.SUCCEEDED)

    @property
    def failed(self) -> Dict[str, Optional[str]]:
        return {
            item.name: item.error
            for item in self.outcomes
            if item.status == StackStatus.FAILED
        }

    @property
    def skipped(self) -> List[str]:
        return self._with_status(StackStatus.SKIPPED)

    @property
    def cancelled(self) -> List[str]:
        return self._with_status(StackStatus.CANCELLED)

    @property
    def statuses(self) -> Dict[str, StackStatus]:
        return {item.name: item.status for item in self.outcomes}

    @property
    def is_success(self) -> bool:
        return self.status == RunStatus.COMPLETED

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "stacks": [
                {
                    "name": item.name,
                    "status": item.status.value,
                    "error": item.error,
                    "reason": item.reason,
                    "duration_seconds": item.duration_seconds,
                }
                for item in self.outcomes
            ],
        }

    def summary(self) -> str:
        """One line per category, listing every stack by outcome."""
        lines = [f"Run {self.run_id}: {self.status.value}"]
        if self.succeeded:
            lines.append(f"succeeded: {', '.join(self.succeeded)}")
        for name, error in self.failed.items():
            lines.append(f"failed: {name} ({error})")
        for item in self.outcomes:
            if item.status == StackStatus.SKIPPED:
                lines.append(f"skipped: {item.name} ({item.reason})")
        if self.cancelled:
            lines.append(f"cancelled: {', '.join(self.cancelled)}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"RunReport(run={self.run_id}, status={self.status.value}, stacks={len(self.outcomes)})"


class ProvisionRun:
    """
    Live, mutable state of one provision invocation.

    Every status transition goes through a single run-scoped lock so that
    concurrently applied stacks and external cancel requests never interleave.
    Cancellation is monotonic: once a stack is marked cancelling it can only
    end cancelled or failed.
    """

    def __init__(self, stacks: Sequence[StackSpec], run_id: Optional[str] = None):
        self.run_id = run_id or uuid.uuid4().hex[:8]
        self.stacks: List[StackSpec] = list(stacks)
        self.index = 0
        self.phase = RunPhase.LOADING
        self.token = CancelToken(name=f"run:{self.run_id}")
        self.observed: Dict[str, Any] = {}
        self.previews: List[Any] = []
        self._lock = threading.RLock()
        self._outcomes: Dict[str, StackOutcome] = {
            spec.name: StackOutcome(name=spec.name) for spec in self.stacks
        }
        self._tokens: Dict[str, CancelToken] = {
            spec.name: self.token.child(spec.name) for spec in self.stacks
        }

    @property
    def names(self) -> List[str]:
        return [spec.name for spec in self.stacks]

    def covers(self, names: Sequence[str]) -> List[str]:
        """Stacks of this run that also appear in ``names``."""
        wanted = set(names)
        return [name for name in self.names if name in wanted]

    def spec(self, stack_name: str) -> StackSpec:
        for spec in self.stacks:
            if spec.name == stack_name:
                return spec
        raise KeyError(stack_name)

    def status(self, stack_name: str) -> StackStatus:
        with self._lock:
            return self._outcomes[stack_name].status

    def token_for(self, stack_name: str) -> CancelToken:
        return self._tokens[stack_name]

    def set_phase(self, phase: RunPhase) -> None:
        with self._lock:
            self.phase = phase

    def _transition(self, stack_name: str, new_status: StackStatus) -> StackOutcome:
        outcome = self._outcomes[stack_name]
        allowed = ALLOWED_TRANSITIONS.get(outcome.status, set())
        if new_status not in allowed:
            raise StateError(
                f"Invalid transition for stack '{stack_name}'",
                context=f"{outcome.status.value} -> {new_status.value}",
            )
        outcome.status = new_status
        if new_status == StackStatus.RUNNING:
            outcome.started_at = datetime.now()
        elif new_status.is_terminal:
            outcome.finished_at = datetime.now()
        return outcome

    def start(self, stack_name: str) -> bool:
        """
        Move a pending stack to running.

        Returns:
            False if the stack is no longer pending (e.g. cancelled meanwhile)
        """
        with self._lock:
            outcome = self._outcomes[stack_name]
            if outcome.status != StackStatus.PENDING or outcome.cancel_requested:
                return False
            self._transition(stack_name, StackStatus.RUNNING)
            self.index += 1
            return True

    def finish(
        self,
        stack_name: str,
        status: StackStatus,
        error: Optional[str] = None,
        outputs: Optional[Dict[str, Any]] = None,
    ) -> StackStatus:
        """
        Record the terminal state of a running stack.

        A stack that was asked to cancel never ends succeeded, even when the
        provider call itself completed.

        Returns:
            The status actually recorded
        """
        with self._lock:
            outcome = self._outcomes[stack_name]
            if status == StackStatus.SUCCEEDED and (
                outcome.cancel_requested or self._tokens[stack_name].cancelled
            ):
                status = StackStatus.CANCELLED
                error = None
            self._transition(stack_name, status)
            outcome.error = error
            if outputs:
                outcome.outputs = dict(outputs)
            return status

    def skip(self, stack_name: str, reason: str) -> bool:
        with self._lock:
            outcome = self._outcomes[stack_name]
            if outcome.status != StackStatus.PENDING:
                return False
            self._transition(stack_name, StackStatus.SKIPPED)
            outcome.reason = reason
            return True

    def request_cancel(self, selector, reason: str = "cancelled by request") -> List[str]:
        """
        Cancel pending and running stacks matching ``selector``.

        Pending stacks are cancelled immediately; running stacks have their
        token set and finish at their next checkpoint.

        Returns:
            Names of the affected stacks
        """
        affected = []
        with self._lock:
            for name in self.names:
                if not selector.matches(name):
                    continue
                outcome = self._outcomes[name]
                if outcome.status == StackStatus.PENDING:
                    outcome.cancel_requested = True
                    self._transition(name, StackStatus.CANCELLED)
                    outcome.reason = reason
                    affected.append(name)
                elif outcome.status == StackStatus.RUNNING and not outcome.cancel_requested:
                    outcome.cancel_requested = True
                    outcome.reason = reason
                    self._tokens[name].cancel(reason)
                    affected.append(name)
            if selector.selects_all:
                self.token.cancel(reason)
        return affected

    def cancel_pending(self, reason: str) -> List[str]:
        """Cancel every stack that has not started yet."""
        affected = []
        with self._lock:
            for name in self.names:
                outcome = self._outcomes[name]
                if outcome.status == StackStatus.PENDING:
                    outcome.cancel_requested = True
                    self._transition(name, StackStatus.CANCELLED)
                    outcome.reason = reason
                    affected.append(name)
        return affected

    def active(self) -> List[str]:
        with self._lock:
            return [
                name
                for name in self.names
                if not self._outcomes[name].status.is_terminal
            ]

    @property
    def is_finished(self) -> bool:
        return not self.active()

    def overall_status(self) -> RunStatus:
        with self._lock:
            statuses = [outcome.status for outcome in self._outcomes.values()]
        if any(status == StackStatus.FAILED for status in statuses):
            return RunStatus.FAILED
        if all(status == StackStatus.SUCCEEDED for status in statuses):
            return RunStatus.COMPLETED
        return RunStatus.CANCELLED

    def report(self) -> RunReport:
        with self._lock:
            outcomes = tuple(replace(self._outcomes[name]) for name in self.names)
        return RunReport(
            run_id=self.run_id,
            status=self.overall_status(),
            outcomes=outcomes,
            previews=tuple(self.previews),
        )

    def __repr__(self) -> str:
        return f"ProvisionRun(id={self.run_id}, phase={self.phase.value}, stacks={len(self.stacks)})"
