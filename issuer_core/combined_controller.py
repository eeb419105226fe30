"""
issuer_core.combined_controller
-------------------------------
Composition root: one trust-anchor controller per trust-anchor kind and
one request controller per request kind, all sharing one EventSource.
Holds no state of its own beyond the wiring; every mistake here is
reported as a ConfigurationError at setup time. Can be stopped and
started again.
"""

from __future__ import annotations
from typing import Dict, List, Optional, Sequence

from issuer_core.config import ConfigurationError, ControllerSettings
from issuer_core.controller import Controller, StoreSource
from issuer_core.event_source import EventSource
from issuer_core.issuer_controller import IssuerReconciler
from issuer_core.logger import get_logger
from issuer_core.predicates import issuer_predicate, linked_issuer_predicate, request_predicate
from issuer_core.reconcile import Context
from issuer_core.recorder import EventRecorder, recorder_factory
from issuer_core.request_controller import RequestReconciler
from issuer_core.retry import ItemExponentialFailureRateLimiter, RetryTracker
from issuer_core.signer import Check, IgnoreIssuer, IgnoreRequest, Sign
from issuer_core.storage.models import KindInfo
from issuer_core.storage.provider import ObjectStore
from issuer_core.utils import Clock

log = get_logger("Issuer.Combined")

CERTIFICATE_REQUEST = KindInfo(
    kind="CertificateRequest",
    plural="certificaterequests",
    namespaced=True,
    is_request=True,
    group="cert-manager.io",
    version="v1",
)


class CombinedController:
    def __init__(
        self,
        store: ObjectStore,
        check: Check,
        sign: Sign,
        issuer_types: Sequence[KindInfo] = (),
        cluster_issuer_types: Sequence[KindInfo] = (),
        request_types: Optional[Sequence[KindInfo]] = None,
        settings: Optional[ControllerSettings] = None,
        recorder: Optional[EventRecorder] = None,
        clock: Optional[Clock] = None,
        ignore_issuer: Optional[IgnoreIssuer] = None,
        ignore_request: Optional[IgnoreRequest] = None,
    ):
        self.store = store
        self.check = check
        self.sign = sign
        self.issuer_types = list(issuer_types)
        self.cluster_issuer_types = list(cluster_issuer_types)
        self.request_types = list(request_types) if request_types is not None else [CERTIFICATE_REQUEST]
        self.settings = settings or ControllerSettings()
        self.recorder = recorder or recorder_factory()
        self.clock = clock or Clock()
        self.ignore_issuer = ignore_issuer
        self.ignore_request = ignore_request

        self.event_source = EventSource()
        self.issuer_reconcilers: Dict[str, IssuerReconciler] = {}
        self.request_reconcilers: Dict[str, RequestReconciler] = {}
        self.controllers: List[Controller] = []
        self._ctx: Optional[Context] = None

    def _validate(self) -> Dict[str, KindInfo]:
        self.settings.validate()
        if not callable(self.check) or not callable(self.sign):
            raise ConfigurationError("check and sign callbacks are required")
        if not self.issuer_types and not self.cluster_issuer_types:
            raise ConfigurationError("at least one issuer or cluster issuer type is required")
        if not self.request_types:
            raise ConfigurationError("at least one request type is required")

        issuer_kinds: Dict[str, KindInfo] = {}
        for info in self.issuer_types + self.cluster_issuer_types:
            if info.is_request:
                raise ConfigurationError(f"{info.kind} is a request kind, not an issuer kind")
            if info.kind in issuer_kinds:
                raise ConfigurationError(f"issuer kind {info.kind} configured twice")
            issuer_kinds[info.kind] = info
        for info in self.issuer_types:
            if not info.namespaced:
                raise ConfigurationError(f"issuer type {info.kind} must be namespaced")
        for info in self.cluster_issuer_types:
            if info.namespaced:
                raise ConfigurationError(f"cluster issuer type {info.kind} must be cluster-scoped")

        seen = set()
        for info in self.request_types:
            if not info.is_request:
                raise ConfigurationError(f"{info.kind} is not a request kind")
            if info.kind in seen or info.kind in issuer_kinds:
                raise ConfigurationError(f"request kind {info.kind} configured twice")
            seen.add(info.kind)
        return issuer_kinds

    def _rate_limiter(self) -> ItemExponentialFailureRateLimiter:
        return ItemExponentialFailureRateLimiter(self.settings.backoff_min, self.settings.backoff_max)

    def setup(self) -> "CombinedController":
        if self.controllers:
            return self
        issuer_kinds = self._validate()
        s = self.settings

        for info in list(issuer_kinds.values()) + self.request_types:
            self.store.register_kind(info)

        for kind, info in issuer_kinds.items():
            reconciler = IssuerReconciler(
                kind_info=info,
                store=self.store,
                check=self.check,
                event_source=self.event_source,
                recorder=self.recorder,
                field_owner=s.field_owner,
                clock=self.clock,
                ignore_issuer=self.ignore_issuer,
            )
            self.issuer_reconcilers[kind] = reconciler
            controller = Controller(f"issuer-{kind.lower()}", reconciler, self._rate_limiter(), s.workers)
            controller.watch(StoreSource(self.store, kind, predicate=issuer_predicate))
            controller.watch(self.event_source.add_consumer(kind))
            self.controllers.append(controller)

        for info in self.request_types:
            reconciler = RequestReconciler(
                kind_info=info,
                store=self.store,
                sign=self.sign,
                issuer_kinds=issuer_kinds,
                event_source=self.event_source,
                recorder=self.recorder,
                field_owner=s.field_owner,
                max_retry_duration=s.max_retry_duration,
                retry_tracker=RetryTracker(),
                clock=self.clock,
                ignore_request=self.ignore_request,
            )
            self.request_reconcilers[info.kind] = reconciler
            controller = Controller(f"request-{info.kind.lower()}", reconciler, self._rate_limiter(), s.workers)
            controller.watch(StoreSource(self.store, info.kind, predicate=request_predicate))
            for issuer_kind in issuer_kinds:
                controller.watch(StoreSource(
                    self.store, issuer_kind,
                    predicate=linked_issuer_predicate,
                    mapper=reconciler.requests_for_issuer(issuer_kind),
                ))
            self.controllers.append(controller)

        log.info(
            f"[COMBINED] configured issuers={sorted(issuer_kinds)} "
            f"requests={[i.kind for i in self.request_types]} owner={s.field_owner}"
        )
        return self

    def start(self, ctx: Optional[Context] = None) -> None:
        self.setup()
        self._ctx = ctx or Context()
        for controller in self.controllers:
            controller.start(self._ctx)

    def stop(self) -> None:
        if self._ctx is not None:
            self._ctx.cancel("combined controller stopping")
        for controller in self.controllers:
            controller.stop()
        self._ctx = None

    def __enter__(self) -> "CombinedController":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()
