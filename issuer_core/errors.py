"""
issuer_core.errors
------------------
Error taxonomy for check/sign callbacks.

Callbacks raise; the reconcilers classify what they caught:

- PermanentError: cannot self-heal (bad credentials, malformed fixed
  configuration). The object is marked Failed and not retried until its
  generation changes.
- PendingError: not ready yet (an external async step is still running).
  Retried with backoff but never counted against the retry budget.
- IssuerError: raised from sign() when the failure is really about the
  trust anchor. The wrapped error is reported to the trust-anchor
  reconciler through the event registry.
- anything else: transient, retried and counted.

Wrappers may themselves be wrapped by intermediate layers
(``raise X from PermanentError(...)``); classification walks the chain.
"""

from __future__ import annotations
import enum
from typing import Iterator, Optional


class SignerError(Exception):
    """Base for the taxonomy wrappers; ``err`` is the wrapped cause."""

    def __init__(self, err: BaseException | str):
        if isinstance(err, str):
            err = Exception(err)
        super().__init__(str(err))
        self.err = err
        self.__cause__ = err

    def __str__(self) -> str:
        return str(self.err)


class PermanentError(SignerError):
    pass


class PendingError(SignerError):
    pass


class IssuerError(SignerError):
    pass


class Outcome(enum.Enum):
    INITIALIZING = "initializing"
    SUCCESS = "success"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    PENDING = "pending"
    ISSUER = "issuer"


def unwrap(err: Optional[BaseException]) -> Iterator[BaseException]:
    """Yield err and every error it wraps, outermost first."""
    seen = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        err = err.err if isinstance(err, SignerError) else err.__cause__


def classify(err: Optional[BaseException]) -> Outcome:
    """
    Map an error to an outcome by structural match.

    The first link of the chain that carries a marker decides. An
    IssuerError link stops the walk: whatever it wraps is about the trust
    anchor and gets classified again on that side.
    """
    if err is None:
        return Outcome.SUCCESS
    for link in unwrap(err):
        if isinstance(link, PermanentError):
            return Outcome.PERMANENT
        if isinstance(link, PendingError):
            return Outcome.PENDING
        if isinstance(link, IssuerError):
            return Outcome.ISSUER
    return Outcome.TRANSIENT


def find(err: Optional[BaseException], kind: type) -> Optional[BaseException]:
    """errors.As: the first link of the chain that is an instance of kind."""
    for link in unwrap(err):
        if isinstance(link, kind):
            return link
    return None
