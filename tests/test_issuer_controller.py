import pytest

from conftest import ISSUER, make_issuer
from issuer_core.errors import PendingError, PermanentError
from issuer_core.event_source import EventSource
from issuer_core.issuer_controller import IssuerReconciler
from issuer_core.reconcile import Cancelled, Context, Result, TerminalError
from issuer_core.storage import Condition, ObjectKey

KEY = ObjectKey("default", "ca")


class CheckStub:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def __call__(self, ctx, issuer):
        self.calls += 1
        result = self.results.pop(0) if self.results else None
        if result is not None:
            raise result


def reconciler(store, recorder, clock, check, event_source=None, **kw):
    es = event_source or EventSource()
    return IssuerReconciler(ISSUER, store, check, es, recorder, "test-owner", clock=clock, **kw)


def ready_of(store):
    return store.get(ISSUER.kind, KEY).ready_condition()


def initialized(store, clock, recorder, check):
    store.create(make_issuer())
    r = reconciler(store, recorder, clock, check)
    assert r.reconcile(Context(), KEY) == Result()
    return r


def test_first_pass_initializes_without_check(store, recorder, clock):
    check = CheckStub()
    initialized(store, clock, recorder, check)
    cond = ready_of(store)
    assert (cond.status, cond.reason) == ("Unknown", "Initializing")
    assert cond.message == "test-owner has started reconciling this Issuer"
    assert check.calls == 0


def test_check_success(store, recorder, clock):
    check = CheckStub()
    r = initialized(store, clock, recorder, check)
    r.reconcile(Context(), KEY)
    cond = ready_of(store)
    assert (cond.status, cond.reason, cond.message) == ("True", "Checked", "checked")
    assert cond.observed_generation == 1
    assert recorder.reasons() == ["Checked"]


def test_transient_error_is_raised_for_backoff(store, recorder, clock):
    r = initialized(store, clock, recorder, CheckStub(RuntimeError("ca unreachable")))
    with pytest.raises(RuntimeError):
        r.reconcile(Context(), KEY)
    cond = ready_of(store)
    assert (cond.status, cond.reason) == ("False", "Pending")
    assert cond.message == "Issuer is not ready yet: ca unreachable"
    assert recorder.reasons() == ["RetryableError"]


def test_pending_error_treated_as_transient(store, recorder, clock):
    r = initialized(store, clock, recorder, CheckStub(PendingError("warming up")))
    with pytest.raises(PendingError):
        r.reconcile(Context(), KEY)
    assert ready_of(store).reason == "Pending"


def test_permanent_error_is_terminal_until_generation_changes(store, recorder, clock):
    check = CheckStub(PermanentError("bad credentials"))
    r = initialized(store, clock, recorder, check)
    with pytest.raises(TerminalError):
        r.reconcile(Context(), KEY)
    cond = ready_of(store)
    assert (cond.status, cond.reason) == ("False", "Failed")
    assert cond.message == "Issuer has failed permanently: bad credentials"

    # further passes are no-ops
    assert r.reconcile(Context(), KEY) == Result()
    assert check.calls == 1

    store.update_spec(ISSUER.kind, KEY, {"url": "https://fixed"})
    r.reconcile(Context(), KEY)
    cond = ready_of(store)
    assert (cond.status, cond.observed_generation) == ("True", 2)
    assert check.calls == 2


def test_reported_error_overrides_ready(store, recorder, clock):
    es = EventSource()
    es.add_consumer(ISSUER.kind)
    store.create(make_issuer(conditions=[Condition("Ready", "True", "Checked", "checked", 1)]))
    check = CheckStub()
    r = reconciler(store, recorder, clock, check, event_source=es)

    es.deposit(ISSUER.kind, KEY, PermanentError("CA key revoked"))
    with pytest.raises(TerminalError):
        r.reconcile(Context(), KEY)
    assert check.calls == 0
    assert ready_of(store).reason == "Failed"
    assert not es.pending(ISSUER.kind, KEY)


def test_reported_error_ignored_when_not_ready(store, recorder, clock):
    es = EventSource()
    es.add_consumer(ISSUER.kind)
    store.create(make_issuer(conditions=[Condition("Ready", "False", "Pending", "x", 1)]))
    check = CheckStub()
    r = reconciler(store, recorder, clock, check, event_source=es)

    es.deposit(ISSUER.kind, KEY, RuntimeError("stale"))
    r.reconcile(Context(), KEY)
    assert check.calls == 1
    assert ready_of(store).status == "True"
    assert not es.pending(ISSUER.kind, KEY)


def test_transition_time_kept_while_status_unchanged(store, recorder, clock):
    r = initialized(store, clock, recorder, CheckStub(RuntimeError("a"), RuntimeError("b")))
    with pytest.raises(RuntimeError):
        r.reconcile(Context(), KEY)
    first = ready_of(store).last_transition_time
    clock.advance(60)
    with pytest.raises(RuntimeError):
        r.reconcile(Context(), KEY)
    cond = ready_of(store)
    assert cond.message.endswith(": b")
    assert cond.last_transition_time == first


def test_missing_object_is_done(store, recorder, clock):
    r = reconciler(store, recorder, clock, CheckStub())
    assert r.reconcile(Context(), KEY) == Result()


def test_ignored_issuer_untouched(store, recorder, clock):
    store.create(make_issuer())
    r = reconciler(store, recorder, clock, CheckStub(), ignore_issuer=lambda ctx, iss: True)
    r.reconcile(Context(), KEY)
    assert ready_of(store) is None


def test_cancelled_pass_writes_nothing(store, recorder, clock):
    ctx = Context()

    def check(c, issuer):
        ctx.cancel("shutdown")

    r = initialized(store, clock, recorder, check)
    with pytest.raises(Cancelled):
        r.reconcile(ctx, KEY)
    assert ready_of(store).reason == "Initializing"


def test_cancellation_from_check_propagates(store, recorder, clock):
    r = initialized(store, clock, recorder, CheckStub(Cancelled("stop")))
    with pytest.raises(Cancelled):
        r.reconcile(Context(), KEY)
    assert ready_of(store).reason == "Initializing"
