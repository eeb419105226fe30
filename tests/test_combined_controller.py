import threading
import time
from datetime import timedelta

import pytest

from conftest import CLUSTER_ISSUER, ISSUER, REQUEST, make_issuer, make_request, wait_for
from issuer_core import CombinedController, IssuerError, PEMBundle, PermanentError
from issuer_core.config import ConfigurationError, ControllerSettings
from issuer_core.storage import KindInfo, ObjectKey

ISS = ObjectKey("default", "ca")
REQ = ObjectKey("default", "req")


def settings(**kw):
    base = dict(field_owner="test-owner", max_retry_duration=timedelta(minutes=5),
                backoff_min=0.2, backoff_max=5.0, workers=2)
    base.update(kw)
    return ControllerSettings(**base)


def ok_check(ctx, issuer):
    return None


def ok_sign(ctx, req, issuer):
    return PEMBundle(b"leaf", b"root")


def combined(store, recorder, check=ok_check, sign=ok_sign, **kw):
    return CombinedController(
        store, check, sign,
        issuer_types=[ISSUER], cluster_issuer_types=[CLUSTER_ISSUER], request_types=[REQUEST],
        settings=kw.pop("settings", settings()), recorder=recorder, **kw,
    )


def reason(store, kind, key):
    obj = store.get(kind, key)
    cond = obj.ready_condition() if obj is not None else None
    return cond.reason if cond is not None else None


def message(store, kind, key):
    obj = store.get(kind, key)
    cond = obj.ready_condition() if obj is not None else None
    return cond.message if cond is not None else ""


def ready_history(store, kind):
    seen = []

    def handler(event_type, old, new):
        cond = new.ready_condition() if new is not None else None
        if cond is not None and (not seen or seen[-1] != (cond.status, cond.reason)):
            seen.append((cond.status, cond.reason))

    store.watch(kind, handler)
    return seen


def test_issue_certificate_end_to_end(store, recorder):
    issuer_history = ready_history(store, ISSUER.kind)
    request_history = ready_history(store, REQUEST.kind)

    with combined(store, recorder):
        store.create(make_issuer())
        assert wait_for(lambda: reason(store, ISSUER.kind, ISS) == "Checked")
        store.create(make_request())
        assert wait_for(lambda: reason(store, REQUEST.kind, REQ) == "Issued")

    assert issuer_history[0] == ("Unknown", "Initializing")
    assert issuer_history[-1] == ("True", "Checked")
    assert request_history[0] == ("Unknown", "Initializing")
    assert store.get(REQUEST.kind, REQ).certificate == b"leaf"


def test_request_created_before_issuer_waits_then_issues(store, recorder):
    with combined(store, recorder):
        store.create(make_request())
        assert wait_for(lambda: "not found" in message(store, REQUEST.kind, REQ))
        store.create(make_issuer())
        assert wait_for(lambda: reason(store, REQUEST.kind, REQ) == "Issued")


def test_transient_check_failures_back_off_exponentially(store, recorder):
    calls = []

    def check(ctx, issuer):
        calls.append(time.monotonic())
        raise RuntimeError("ca unreachable")

    with combined(store, recorder, check=check):
        store.create(make_issuer())
        assert wait_for(lambda: len(calls) >= 3, timeout=5.0)

    gaps = [b - a for a, b in zip(calls, calls[1:])]
    assert gaps[0] == pytest.approx(0.2, abs=0.15)
    assert gaps[1] == pytest.approx(0.4, abs=0.15)
    assert reason(store, ISSUER.kind, ISS) == "Pending"


def test_issuer_recovers_after_backoff(store, recorder):
    calls = []
    history = ready_history(store, ISSUER.kind)

    def check(ctx, issuer):
        calls.append(time.monotonic())
        if len(calls) == 1:
            raise RuntimeError("not reachable yet")

    with combined(store, recorder, check=check):
        store.create(make_issuer())
        assert wait_for(lambda: reason(store, ISSUER.kind, ISS) == "Checked")

    assert history == [("Unknown", "Initializing"), ("False", "Pending"), ("True", "Checked")]
    assert calls[1] - calls[0] >= 0.15


def test_permanent_issuer_error_fails_trust_anchor(store, recorder):
    sign_calls = []

    def sign(ctx, req, issuer):
        sign_calls.append(req.key)
        raise IssuerError(PermanentError("CA key revoked"))

    with combined(store, recorder, sign=sign):
        store.create(make_issuer())
        assert wait_for(lambda: reason(store, ISSUER.kind, ISS) == "Checked")
        store.create(make_request())
        assert wait_for(lambda: reason(store, ISSUER.kind, ISS) == "Failed")
        assert wait_for(lambda: "\"Failed\"" in message(store, REQUEST.kind, REQ))

    issuer_ready = store.get(ISSUER.kind, ISS).ready_condition()
    assert issuer_ready.message == "Issuer has failed permanently: CA key revoked"
    req_ready = store.get(REQUEST.kind, REQ).ready_condition()
    assert req_ready.reason == "Pending"
    assert len(sign_calls) == 1


def test_failed_trust_anchor_recovers_after_generation_bump(store, recorder):
    sign_calls = []

    def sign(ctx, req, issuer):
        sign_calls.append(issuer.generation)
        if len(sign_calls) == 1:
            raise IssuerError(PermanentError("CA key revoked"))
        return PEMBundle(b"leaf", b"root")

    with combined(store, recorder, sign=sign):
        store.create(make_issuer())
        assert wait_for(lambda: reason(store, ISSUER.kind, ISS) == "Checked")
        store.create(make_request())
        assert wait_for(lambda: reason(store, ISSUER.kind, ISS) == "Failed")
        assert sign_calls == [1]

        store.update_spec(ISSUER.kind, ISS, {"url": "https://ca.example/rotated"})
        assert wait_for(lambda: reason(store, ISSUER.kind, ISS) == "Checked")
        assert wait_for(lambda: reason(store, REQUEST.kind, REQ) == "Issued")

    issuer_ready = store.get(ISSUER.kind, ISS).ready_condition()
    assert (issuer_ready.status, issuer_ready.observed_generation) == ("True", 2)
    assert sign_calls == [1, 2]
    assert store.get(REQUEST.kind, REQ).certificate == b"leaf"


def test_transient_issuer_error_recovers(store, recorder):
    attempts = []

    def sign(ctx, req, issuer):
        attempts.append(time.monotonic())
        if len(attempts) == 1:
            raise IssuerError(RuntimeError("CA temporarily unavailable"))
        return PEMBundle(b"leaf", b"root")

    with combined(store, recorder, sign=sign):
        store.create(make_issuer())
        assert wait_for(lambda: reason(store, ISSUER.kind, ISS) == "Checked")
        store.create(make_request())
        assert wait_for(lambda: reason(store, REQUEST.kind, REQ) == "Issued")

    assert len(attempts) == 2
    assert "RetryableError" in recorder.reasons(ISSUER.kind)


def test_spec_change_recovers_failed_issuer(store, recorder):
    def check(ctx, issuer):
        if issuer.spec.get("url") == "bad":
            raise PermanentError("invalid url")

    with combined(store, recorder, check=check):
        store.create(make_issuer(spec={"url": "bad"}))
        assert wait_for(lambda: reason(store, ISSUER.kind, ISS) == "Failed")
        store.update_spec(ISSUER.kind, ISS, {"url": "https://good"})
        assert wait_for(lambda: reason(store, ISSUER.kind, ISS) == "Checked")

    assert store.get(ISSUER.kind, ISS).ready_condition().observed_generation == 2


def test_same_key_never_reconciled_concurrently(store, recorder):
    active = []
    overlap = threading.Event()
    lock = threading.Lock()

    def check(ctx, issuer):
        with lock:
            if issuer.key in active:
                overlap.set()
            active.append(issuer.key)
        time.sleep(0.05)
        with lock:
            active.remove(issuer.key)
        raise RuntimeError("slow failure")

    with combined(store, recorder, check=check, settings=settings(workers=4, backoff_min=0.01, backoff_max=0.02)):
        store.create(make_issuer())
        for i in range(5):
            store.update_spec(ISSUER.kind, ISS, {"url": f"https://ca/{i}"})
            time.sleep(0.02)
        time.sleep(0.3)

    assert not overlap.is_set()


@pytest.mark.parametrize("kwargs", [
    dict(issuer_types=[], cluster_issuer_types=[]),
    dict(issuer_types=[ISSUER, ISSUER]),
    dict(issuer_types=[CLUSTER_ISSUER]),
    dict(cluster_issuer_types=[ISSUER]),
    dict(request_types=[ISSUER]),
    dict(issuer_types=[REQUEST]),
    dict(request_types=[]),
])
def test_invalid_configuration(store, recorder, kwargs):
    base = dict(issuer_types=[ISSUER], cluster_issuer_types=[], request_types=[REQUEST])
    base.update(kwargs)
    c = CombinedController(store, ok_check, ok_sign, recorder=recorder, **base)
    with pytest.raises(ConfigurationError):
        c.setup()


def test_missing_callbacks(store, recorder):
    with pytest.raises(ConfigurationError):
        CombinedController(store, None, ok_sign, issuer_types=[ISSUER], recorder=recorder).setup()


def test_default_request_kind(store, recorder):
    c = CombinedController(store, ok_check, ok_sign, issuer_types=[ISSUER], recorder=recorder).setup()
    assert list(c.request_reconcilers) == ["CertificateRequest"]
    assert c.event_source.pending(ISSUER.kind, ISS) is False
    assert len(c.controllers) == 2
    assert isinstance(store.kind_info("CertificateRequest"), KindInfo)


def test_deleted_request_drops_retry_state(store, recorder):
    def sign(ctx, req, issuer):
        raise RuntimeError("upstream 503")

    c = combined(store, recorder, sign=sign, settings=settings(backoff_min=5.0, backoff_max=5.0))
    with c:
        store.create(make_issuer())
        assert wait_for(lambda: reason(store, ISSUER.kind, ISS) == "Checked")
        store.create(make_request())
        tracker = c.request_reconcilers[REQUEST.kind].retry_tracker
        assert wait_for(lambda: len(tracker) == 1)
        store.delete(REQUEST.kind, REQ)
        assert wait_for(lambda: len(tracker) == 0, timeout=2.0)


def test_restart_after_stop(store, recorder):
    c = combined(store, recorder)
    with c:
        store.create(make_issuer())
        assert wait_for(lambda: reason(store, ISSUER.kind, ISS) == "Checked")
    with c:
        store.create(make_request())
        assert wait_for(lambda: reason(store, REQUEST.kind, REQ) == "Issued")
