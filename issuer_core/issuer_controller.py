"""
issuer_core.issuer_controller
-----------------------------
Reconciles one trust-anchor (issuer) kind.

Per pass:
  consume reported error → get → (absent: done) → (Failed for this
  generation: done) → (ignored: done) → (no Ready: Initializing, done) →
  reported error if currently Ready, otherwise check() → classify →
  Ready condition → status patch → done | backoff | terminal
"""

from __future__ import annotations
from typing import Optional, Tuple

from issuer_core import patch
from issuer_core.conditions import ISSUER_VOCABULARY, compute_ready_condition, is_failed_permanently
from issuer_core.constants import (
    CONDITION_TRUE, EVENT_CHECKED, EVENT_PERMANENT_ERROR, EVENT_RETRYABLE_ERROR,
    EVENT_TYPE_NORMAL, EVENT_TYPE_WARNING,
)
from issuer_core.errors import Outcome, classify
from issuer_core.event_source import EventSource
from issuer_core.logger import get_logger
from issuer_core.patch import IssuerStatus
from issuer_core.reconcile import Cancelled, Context, Result, TerminalError
from issuer_core.recorder import EventRecorder
from issuer_core.signer import Check, IgnoreIssuer
from issuer_core.storage.models import KindInfo, ObjectKey
from issuer_core.storage.provider import NotFoundError, ObjectStore
from issuer_core.utils import Clock

log = get_logger("Issuer.IssuerController")


class IssuerReconciler:
    def __init__(
        self,
        kind_info: KindInfo,
        store: ObjectStore,
        check: Check,
        event_source: EventSource,
        recorder: EventRecorder,
        field_owner: str,
        clock: Optional[Clock] = None,
        ignore_issuer: Optional[IgnoreIssuer] = None,
    ):
        self.kind_info = kind_info
        self.store = store
        self.check = check
        self.event_source = event_source
        self.recorder = recorder
        self.field_owner = field_owner
        self.clock = clock or Clock()
        self.ignore_issuer = ignore_issuer

    @property
    def kind(self) -> str:
        return self.kind_info.kind

    def reconcile(self, ctx: Context, key: ObjectKey) -> Result:
        log.debug(f"[ISSUER] starting reconcile {self.kind} {key}")

        result, status, reconcile_error = self._reconcile_status_patch(ctx, key)

        if status is None:
            if reconcile_error is not None:
                raise reconcile_error
            return result

        # a cancelled pass must not publish what it computed
        ctx.raise_if_done()

        target, body = patch.build_issuer_status_patch(self.kind_info, key.name, key.namespace, status)
        try:
            self.store.apply_status(target, body, self.field_owner, force=True)
        except NotFoundError:
            log.info(f"[ISSUER] {self.kind} {key} not found while patching. Ignoring.")
            return Result()

        if reconcile_error is not None:
            raise reconcile_error
        return result

    def _reconcile_status_patch(
        self, ctx: Context, key: ObjectKey
    ) -> Tuple[Result, Optional[IssuerStatus], Optional[BaseException]]:
        # consume first so the mailbox is always drained, even on early exits
        reported_error, has_reported = self.event_source.has_reported_error(self.kind, key)

        issuer = self.store.get(self.kind, key)
        if issuer is None:
            log.info(f"[ISSUER] {self.kind} {key} not found. Ignoring.")
            return Result(), None, None

        ready = issuer.ready_condition()

        if is_failed_permanently(ready, issuer.generation):
            log.info(f"[ISSUER] {self.kind} {key} is Failed permanently. Ignoring.")
            return Result(), None, None

        if self.ignore_issuer is not None and self.ignore_issuer(ctx, issuer):
            log.info(f"[ISSUER] ignore_issuer() returned true for {self.kind} {key}. Ignoring.")
            return Result(), None, None

        status = IssuerStatus()

        def set_ready(outcome: Outcome, err: Optional[BaseException] = None) -> str:
            _, message = compute_ready_condition(
                issuer.conditions, status.conditions, issuer.generation, outcome,
                self.clock.now(), ISSUER_VOCABULARY, err=err, field_owner=self.field_owner,
            )
            return message

        if ready is None:
            log.info(f"[ISSUER] initializing Ready condition for {self.kind} {key}")
            set_ready(Outcome.INITIALIZING)
            # the write re-triggers this key through the watch predicate
            return Result(), status, None

        err: Optional[BaseException] = None
        if ready.status == CONDITION_TRUE and has_reported:
            # a request found the CA broken while we still report Ready
            err = reported_error
        else:
            try:
                self.check(ctx, issuer)
            except Cancelled:
                raise
            except Exception as e:
                err = e

        outcome = classify(err)

        if outcome is Outcome.SUCCESS:
            log.info(f"[ISSUER] {self.kind} {key} checked successfully")
            message = set_ready(Outcome.SUCCESS)
            self.recorder.event(issuer, EVENT_TYPE_NORMAL, EVENT_CHECKED, message)
            return Result(), status, None

        if outcome is Outcome.PERMANENT:
            log.error(f"[ISSUER] permanent error for {self.kind} {key}. Marking as failed: {err}")
            message = set_ready(Outcome.PERMANENT, err)
            self.recorder.event(issuer, EVENT_TYPE_WARNING, EVENT_PERMANENT_ERROR, message)
            return Result(), status, TerminalError(err)

        log.warning(f"[ISSUER] retryable error for {self.kind} {key}: {err}")
        message = set_ready(Outcome.TRANSIENT, err)
        self.recorder.event(issuer, EVENT_TYPE_WARNING, EVENT_RETRYABLE_ERROR, message)
        return Result(), status, err
