import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from issuer_core.constants import CONDITION_TRUE
from issuer_core.recorder import MemoryRecorder
from issuer_core.storage import (
    Condition, InMemoryObjectStore, IssuerObject, IssuerRef, KindInfo, ObjectMeta, RequestObject,
)

ISSUER = KindInfo("TestIssuer", "testissuers", namespaced=True)
CLUSTER_ISSUER = KindInfo("TestClusterIssuer", "testclusterissuers", namespaced=False)
REQUEST = KindInfo("CertificateRequest", "certificaterequests", namespaced=True, is_request=True,
                   group="cert-manager.io", version="v1")


class FakeClock:
    """Manually advanced clock; both wall and monotonic time move together."""

    def __init__(self, start=None):
        self._lock = threading.Lock()
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._mono = 1000.0

    def now(self):
        with self._lock:
            return self._now

    def monotonic(self):
        with self._lock:
            return self._mono

    def advance(self, seconds):
        with self._lock:
            self._now += timedelta(seconds=seconds)
            self._mono += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    s = InMemoryObjectStore([ISSUER, CLUSTER_ISSUER, REQUEST])
    yield s
    s.close()


@pytest.fixture
def recorder():
    return MemoryRecorder()


def make_issuer(name="ca", namespace="default", kind=ISSUER.kind, spec=None, conditions=None):
    return IssuerObject(
        kind=kind,
        metadata=ObjectMeta(name=name, namespace=namespace),
        spec=spec if spec is not None else {"url": "https://ca.example"},
        conditions=conditions or [],
    )


def make_request(name="req", namespace="default", issuer_name="ca", issuer_kind=ISSUER.kind,
                 approved=True, denied=False, conditions=None, csr=b"csr"):
    conds = list(conditions or [])
    if approved:
        conds.append(Condition("Approved", CONDITION_TRUE, "Test", "approved by test"))
    if denied:
        conds.append(Condition("Denied", CONDITION_TRUE, "Test", "denied by test"))
    return RequestObject(
        kind=REQUEST.kind,
        metadata=ObjectMeta(name=name, namespace=namespace),
        issuer_ref=IssuerRef(kind=issuer_kind, name=issuer_name),
        csr=csr,
        conditions=conds,
    )


def wait_for(predicate, timeout=5.0, interval=0.01):
    """Poll until predicate() is truthy; returns its last value."""
    deadline = time.monotonic() + timeout
    while True:
        value = predicate()
        if value or time.monotonic() > deadline:
            return value
        time.sleep(interval)
