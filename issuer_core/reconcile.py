"""
issuer_core.reconcile
---------------------
Types shared by every reconciler: the pass context (cancellation), the
result of a pass and the terminal error marker.
"""

from __future__ import annotations
import threading
import weakref
from dataclasses import dataclass
from typing import Optional


class Cancelled(Exception):
    """The pass was cancelled; nothing may be written."""


class TerminalError(Exception):
    """Reconciliation failed and must not be retried with backoff."""

    def __init__(self, err: BaseException):
        super().__init__(str(err))
        self.err = err
        self.__cause__ = err


@dataclass
class Result:
    requeue: bool = False
    requeue_after: float = 0.0


class Context:
    """
    Cancellation token handed to every pass and down into check/sign.

    Cancelling a context cancels all of its children.
    """

    def __init__(self, parent: Optional["Context"] = None):
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._reason: Optional[str] = None
        self._children: "weakref.WeakSet[Context]" = weakref.WeakSet()
        if parent is not None:
            parent._attach(self)

    def _attach(self, child: "Context") -> None:
        with self._lock:
            if not self._done.is_set():
                self._children.add(child)
                return
            reason = self._reason
        child.cancel(reason)

    def child(self) -> "Context":
        return Context(self)

    def cancel(self, reason: str = "context canceled") -> None:
        with self._lock:
            if self._done.is_set():
                return
            self._reason = reason
            self._done.set()
            children = list(self._children)
        for c in children:
            c.cancel(reason)

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleep up to timeout; True if the context got cancelled."""
        return self._done.wait(timeout)

    def err(self) -> Optional[Cancelled]:
        if not self._done.is_set():
            return None
        return Cancelled(self._reason)

    def raise_if_done(self) -> None:
        err = self.err()
        if err is not None:
            raise err
