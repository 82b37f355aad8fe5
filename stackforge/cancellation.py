"""Cooperative cancellation tokens"""

import threading
from typing import Optional

from stackforge.exceptions import OperationCancelled


class CancelToken:
    """
    Cooperative, monotonic cancellation signal.

    A token may be linked to a parent token (the run); cancelling the parent
    cancels every child, but not the other way round. Once cancelled a token
    never resets.
    """

    def __init__(self, name: str = "", parent: Optional["CancelToken"] = None):
        self.name = name
        self.parent = parent
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancellation requested") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.parent is not None and self.parent.cancelled

    def raise_if_cancelled(self) -> None:
        """Checkpoint: raise OperationCancelled if cancellation was requested."""
        if self.cancelled:
            reason = self.reason or (self.parent.reason if self.parent else None)
            target = f" '{self.name}'" if self.name else ""
            raise OperationCancelled(f"Operation{target} cancelled", context=reason)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until cancelled or timeout.

        Returns:
            True if cancelled
        """
        if self.parent is None:
            return self._event.wait(timeout)

        # Poll so a parent cancel is observed too
        interval = 0.05
        remaining = timeout
        while not self.cancelled:
            step = interval if remaining is None else min(interval, remaining)
            if step <= 0:
                break
            self._event.wait(step)
            if remaining is not None:
                remaining -= step
        return self.cancelled

    def child(self, name: str) -> "CancelToken":
        return CancelToken(name=name, parent=self)

    def __repr__(self) -> str:
        return f"CancelToken(name={self.name}, cancelled={self.cancelled})"
