"""
issuer_core.request_controller
------------------------------
Reconciles one signing-request kind against the trust-anchor kinds it may
reference.

Per pass:
  get → (absent: done) → (ignored: done) → (Issued, or Failed/Denied for
  this generation: done) → (not approved yet: done) → (no Ready:
  Initializing, done) → (denied: Denied, done) → wait for the trust anchor
  to exist, be current and be Ready → sign() → classify → Ready condition
  → status patch → done | backoff | terminal

Issuer-level sign failures are handed to the trust-anchor reconciler via
its EventSource; the request then waits for the trust anchor to recover.
Transient failures escalate to Failed once the request's own failure
incident outlasts max_retry_duration; Pending failures never do.
"""

from __future__ import annotations
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from issuer_core import patch
from issuer_core.conditions import REQUEST_VOCABULARY, compute_ready_condition, is_failed_permanently, set_condition
from issuer_core.constants import (
    CONDITION_FALSE, CONDITION_READY, CONDITION_TRUE, EVENT_DENIED, EVENT_ISSUED,
    EVENT_PERMANENT_ERROR, EVENT_RETRYABLE_ERROR, EVENT_TYPE_NORMAL, EVENT_TYPE_WARNING,
    REASON_DENIED, REASON_FAILED, REASON_ISSUED,
)
from issuer_core.errors import IssuerError, Outcome, classify, find
from issuer_core.event_source import EventSource
from issuer_core.logger import get_logger
from issuer_core.patch import RequestStatus
from issuer_core.reconcile import Cancelled, Context, Result, TerminalError
from issuer_core.recorder import EventRecorder
from issuer_core.retry import RetryTracker, should_escalate
from issuer_core.signer import IgnoreRequest, Sign
from issuer_core.storage.models import IssuerObject, KindInfo, ObjectKey, RequestObject
from issuer_core.storage.provider import DELETED, NotFoundError, ObjectStore
from issuer_core.utils import Clock

log = get_logger("Issuer.RequestController")

MESSAGE_OUTDATED = "Issuer is not Ready yet. Current ready condition is outdated. Waiting for it to become ready."
MESSAGE_NO_CONDITION = "Issuer is not Ready yet. No ready condition found. Waiting for it to become ready."
MESSAGE_DENIED = "The CertificateRequest was denied by an approval controller"


def issuer_not_ready_message(issuer: IssuerObject) -> Optional[str]:
    """None when the trust anchor is Ready for its current generation."""
    ready = issuer.ready_condition()
    if ready is None:
        return MESSAGE_NO_CONDITION
    if ready.observed_generation < issuer.generation:
        return MESSAGE_OUTDATED
    if ready.status != CONDITION_TRUE:
        return (
            f"Issuer is not Ready yet. Current ready condition is \"{ready.reason}\": "
            f"{ready.message}. Waiting for it to become ready."
        )
    return None


class RequestReconciler:
    def __init__(
        self,
        kind_info: KindInfo,
        store: ObjectStore,
        sign: Sign,
        issuer_kinds: Dict[str, KindInfo],
        event_source: EventSource,
        recorder: EventRecorder,
        field_owner: str,
        max_retry_duration: timedelta,
        retry_tracker: Optional[RetryTracker] = None,
        clock: Optional[Clock] = None,
        ignore_request: Optional[IgnoreRequest] = None,
    ):
        self.kind_info = kind_info
        self.store = store
        self.sign = sign
        self.issuer_kinds = issuer_kinds
        self.event_source = event_source
        self.recorder = recorder
        self.field_owner = field_owner
        self.max_retry_duration = max_retry_duration
        self.retry_tracker = retry_tracker or RetryTracker()
        self.clock = clock or Clock()
        self.ignore_request = ignore_request

    @property
    def kind(self) -> str:
        return self.kind_info.kind

    def reconcile(self, ctx: Context, key: ObjectKey) -> Result:
        log.debug(f"[REQUEST] starting reconcile {self.kind} {key}")

        result, status, reconcile_error = self._reconcile_status_patch(ctx, key)

        if status is None:
            if reconcile_error is not None:
                raise reconcile_error
            return result

        ctx.raise_if_done()

        target, body = patch.build_request_status_patch(self.kind_info, key.name, key.namespace, status)
        try:
            self.store.apply_status(target, body, self.field_owner, force=True)
        except NotFoundError:
            log.info(f"[REQUEST] {self.kind} {key} not found while patching. Ignoring.")
            self.retry_tracker.clear((self.kind, key))
            return Result()

        if reconcile_error is not None:
            raise reconcile_error
        return result

    def _issuer_kind_for(self, req: RequestObject) -> Optional[KindInfo]:
        info = self.issuer_kinds.get(req.issuer_ref.kind)
        if info is None or info.group != req.issuer_ref.group:
            return None
        return info

    def _reconcile_status_patch(
        self, ctx: Context, key: ObjectKey
    ) -> Tuple[Result, Optional[RequestStatus], Optional[BaseException]]:
        tracker_key = (self.kind, key)

        req = self.store.get(self.kind, key)
        if req is None:
            log.info(f"[REQUEST] {self.kind} {key} not found. Ignoring.")
            self.retry_tracker.clear(tracker_key)
            return Result(), None, None

        issuer_info = self._issuer_kind_for(req)
        if issuer_info is None:
            log.debug(f"[REQUEST] {self.kind} {key} references an unmanaged issuer kind. Ignoring.")
            return Result(), None, None
        issuer_key = req.issuer_key(issuer_info.namespaced)

        if self.ignore_request is not None and self.ignore_request(ctx, req, issuer_info.kind, issuer_key):
            log.info(f"[REQUEST] ignore_request() returned true for {self.kind} {key}. Ignoring.")
            return Result(), None, None

        ready = req.ready_condition()
        if ready is not None and ready.status == CONDITION_TRUE and ready.reason == REASON_ISSUED:
            log.debug(f"[REQUEST] {self.kind} {key} is already issued. Ignoring.")
            return Result(), None, None
        if is_failed_permanently(ready, req.generation, (REASON_FAILED, REASON_DENIED)):
            log.debug(f"[REQUEST] {self.kind} {key} is Failed or Denied. Ignoring.")
            return Result(), None, None

        if not req.is_approved() and not req.is_denied():
            log.debug(f"[REQUEST] {self.kind} {key} has not been approved yet. Ignoring.")
            return Result(), None, None

        status = RequestStatus()

        def set_ready(outcome: Outcome, err: Optional[BaseException] = None, message: Optional[str] = None) -> str:
            _, msg = compute_ready_condition(
                req.conditions, status.conditions, req.generation, outcome, self.clock.now(),
                REQUEST_VOCABULARY, err=err, message=message, field_owner=self.field_owner,
            )
            return msg

        if ready is None:
            log.info(f"[REQUEST] initializing Ready condition for {self.kind} {key}")
            set_ready(Outcome.INITIALIZING)
            return Result(), status, None

        if req.is_denied():
            log.info(f"[REQUEST] {self.kind} {key} was denied")
            set_condition(req.conditions, status.conditions, req.generation, CONDITION_READY,
                          CONDITION_FALSE, REASON_DENIED, MESSAGE_DENIED, self.clock.now())
            self.retry_tracker.clear(tracker_key)
            self.recorder.event(req, EVENT_TYPE_WARNING, EVENT_DENIED, MESSAGE_DENIED)
            return Result(), status, None

        issuer = self.store.get(issuer_info.kind, issuer_key)
        if issuer is None:
            set_ready(Outcome.PENDING, message=(
                f"Issuer is not Ready yet. {issuer_info.kind} {issuer_key} not found. "
                f"Waiting for it to be created."
            ))
            return Result(), status, None

        waiting = issuer_not_ready_message(issuer)
        if waiting is not None:
            log.debug(f"[REQUEST] {self.kind} {key} waiting for {issuer_info.kind} {issuer_key}")
            set_ready(Outcome.PENDING, message=waiting)
            return Result(), status, None

        err: Optional[BaseException] = None
        bundle = None
        try:
            bundle = self.sign(ctx, req, issuer)
            if bundle is None or not bundle.chain_pem:
                raise ValueError("sign returned no certificate chain")
        except Cancelled:
            raise
        except Exception as e:
            err = e

        outcome = classify(err)

        if outcome is Outcome.SUCCESS:
            log.info(f"[REQUEST] {self.kind} {key} issued")
            self.retry_tracker.observe(tracker_key, False, self.clock.monotonic())
            status.certificate = bundle.chain_pem
            status.ca = bundle.ca_pem
            message = set_ready(Outcome.SUCCESS)
            self.recorder.event(req, EVENT_TYPE_NORMAL, EVENT_ISSUED, message)
            return Result(), status, None

        if outcome is Outcome.ISSUER:
            issuer_err = find(err, IssuerError).err
            log.warning(f"[REQUEST] issuer error for {self.kind} {key}, reporting to {issuer_info.kind} {issuer_key}: {issuer_err}")
            self.event_source.report_error(issuer_info.kind, issuer_key, issuer_err)
            # the trust anchor's status change re-triggers this request
            set_ready(Outcome.PENDING, message=MESSAGE_OUTDATED)
            return Result(), status, None

        if outcome is Outcome.PENDING:
            log.info(f"[REQUEST] signing still in progress for {self.kind} {key}: {err}")
            message = set_ready(Outcome.PENDING, err)
            self.recorder.event(req, EVENT_TYPE_WARNING, EVENT_RETRYABLE_ERROR, message)
            return Result(), status, err

        if outcome is Outcome.TRANSIENT:
            elapsed = self.retry_tracker.observe(tracker_key, True, self.clock.monotonic())
            if should_escalate(elapsed, self.max_retry_duration):
                log.error(f"[REQUEST] {self.kind} {key} failing for {elapsed}, past max retry duration")
                outcome = Outcome.PERMANENT

        if outcome is Outcome.PERMANENT:
            log.error(f"[REQUEST] permanent error for {self.kind} {key}. Marking as failed: {err}")
            self.retry_tracker.clear(tracker_key)
            message = set_ready(Outcome.PERMANENT, err)
            self.recorder.event(req, EVENT_TYPE_WARNING, EVENT_PERMANENT_ERROR, message)
            return Result(), status, TerminalError(err)

        log.warning(f"[REQUEST] retryable error for {self.kind} {key}: {err}")
        message = set_ready(Outcome.TRANSIENT, err)
        self.recorder.event(req, EVENT_TYPE_WARNING, EVENT_RETRYABLE_ERROR, message)
        return Result(), status, err

    def requests_for_issuer(self, issuer_kind: str):
        """Watch mapper: trust-anchor event → keys of requests referencing it."""
        issuer_info = self.issuer_kinds[issuer_kind]

        def mapper(event_type, old, new) -> List[ObjectKey]:
            issuer = new if event_type != DELETED else old
            keys = []
            for req in self.store.list(self.kind):
                if self._issuer_kind_for(req) != issuer_info:
                    continue
                if req.issuer_key(issuer_info.namespaced) == issuer.key:
                    keys.append(req.key)
            return keys

        return mapper
