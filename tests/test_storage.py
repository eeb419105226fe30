import pytest

from conftest import ISSUER, CLUSTER_ISSUER, REQUEST, make_issuer, make_request
from issuer_core import patch
from issuer_core.patch import IssuerStatus, RequestStatus
from issuer_core.storage import (
    Condition, ConflictError, InMemoryObjectStore, KubeObjectStore, NotFoundError, ObjectKey,
    StoreError, load_storage_provider,
)
from issuer_core.storage.provider import ADDED, DELETED, MODIFIED
from issuer_core.storage.providers import kube_provider

KEY = ObjectKey("default", "ca")


def ready(status="True", reason="Checked", message="checked", generation=1):
    return Condition("Ready", status, reason, message, generation)


def apply(store, info, key, status, manager="issuer-core", force=True):
    target, body = patch.build(info, key.name, key.namespace, status)
    return store.apply_status(target, body, manager, force=force)


def test_create_get_list(store):
    store.create(make_issuer())
    got = store.get(ISSUER.kind, KEY)
    assert got.spec == {"url": "https://ca.example"}
    assert got.generation == 1
    assert got.metadata.resource_version
    assert [o.key for o in store.list(ISSUER.kind)] == [KEY]
    assert store.get(ISSUER.kind, ObjectKey("default", "missing")) is None


def test_create_twice_conflicts(store):
    store.create(make_issuer())
    with pytest.raises(ConflictError):
        store.create(make_issuer())


def test_unknown_kind(store):
    with pytest.raises(StoreError):
        store.get("Nope", KEY)


def test_reads_are_copies(store):
    store.create(make_issuer())
    got = store.get(ISSUER.kind, KEY)
    got.spec["url"] = "mutated"
    assert store.get(ISSUER.kind, KEY).spec["url"] == "https://ca.example"


def test_generation_bumps_on_spec_change_only(store):
    store.create(make_issuer())
    assert store.update_spec(ISSUER.kind, KEY, {"url": "https://other"}).generation == 2
    assert store.update_spec(ISSUER.kind, KEY, {"url": "https://other"}).generation == 2
    apply(store, ISSUER, KEY, IssuerStatus([ready()]))
    assert store.get(ISSUER.kind, KEY).generation == 2


def test_cluster_scoped_ignores_namespace(store):
    store.create(make_issuer(name="root", namespace="", kind=CLUSTER_ISSUER.kind))
    assert store.get(CLUSTER_ISSUER.kind, ObjectKey("anything", "root")) is not None
    target, body = patch.build(CLUSTER_ISSUER, "root", "default", IssuerStatus([ready()]))
    assert "namespace" not in body["metadata"]
    store.apply_status(target, body, "issuer-core")
    assert store.get(CLUSTER_ISSUER.kind, ObjectKey("", "root")).ready_condition().status == "True"


def test_apply_status_merges_conditions_by_type(store):
    store.create(make_request())
    key = ObjectKey("default", "req")
    apply(store, REQUEST, key, RequestStatus([ready("Unknown", "Initializing", "")]))
    obj = store.get(REQUEST.kind, key)
    assert {c.type for c in obj.conditions} == {"Approved", "Ready"}


def test_apply_status_removes_fields_no_longer_sent(store):
    store.create(make_request())
    key = ObjectKey("default", "req")
    apply(store, REQUEST, key, RequestStatus([ready()], certificate=b"cert", ca=b"ca"))
    assert store.get(REQUEST.kind, key).certificate == b"cert"

    apply(store, REQUEST, key, RequestStatus([ready("False", "Pending", "again")]))
    obj = store.get(REQUEST.kind, key)
    assert obj.certificate == b"" and obj.ca == b""
    assert obj.ready_condition().reason == "Pending"
    # Approved was not owned by this manager and survives
    assert any(c.type == "Approved" for c in obj.conditions)


def test_apply_status_conflict_without_force(store):
    store.create(make_issuer())
    apply(store, ISSUER, KEY, IssuerStatus([ready()]), manager="someone-else")
    with pytest.raises(ConflictError):
        apply(store, ISSUER, KEY, IssuerStatus([ready("False", "Pending")]), force=False)
    apply(store, ISSUER, KEY, IssuerStatus([ready("False", "Pending")]), force=True)
    assert store.get(ISSUER.kind, KEY).ready_condition().reason == "Pending"


def test_apply_status_missing_object(store):
    with pytest.raises(NotFoundError):
        apply(store, ISSUER, KEY, IssuerStatus([ready()]))


def test_identical_apply_is_noop(store):
    store.create(make_issuer())
    events = []
    store.watch(ISSUER.kind, lambda t, o, n: events.append(t))
    first = apply(store, ISSUER, KEY, IssuerStatus([ready()]))
    second = apply(store, ISSUER, KEY, IssuerStatus([ready()]))
    assert events == [ADDED, MODIFIED]
    assert first.metadata.resource_version == second.metadata.resource_version


def test_watch_replays_and_streams(store):
    store.create(make_issuer(name="existing"))
    events = []
    stop = store.watch(ISSUER.kind, lambda t, o, n: events.append((t, o, n)))
    store.create(make_issuer())
    store.update_spec(ISSUER.kind, KEY, {"url": "x"})
    store.delete(ISSUER.kind, KEY)

    kinds = [e[0] for e in events]
    assert kinds == [ADDED, ADDED, MODIFIED, DELETED]
    _, old, new = events[2]
    assert (old.generation, new.generation) == (1, 2)
    assert events[3][2] is None

    stop()
    store.create(make_issuer(name="after-stop"))
    assert len(events) == 4


def test_failing_watch_handler_is_logged(store, caplog):
    def boom(*_):
        raise RuntimeError("handler broke")

    store.watch(ISSUER.kind, boom)
    store.create(make_issuer())
    assert "watch handler failed" in caplog.text
    assert store.get(ISSUER.kind, KEY) is not None


def test_delete_missing(store):
    with pytest.raises(NotFoundError):
        store.delete(ISSUER.kind, KEY)


def test_patch_build_shape():
    target, body = patch.build(ISSUER, "ca", "default", IssuerStatus([ready()]))
    assert target.key == KEY
    assert body["apiVersion"] == "issuer.example.io/v1alpha1"
    assert body["kind"] == "TestIssuer"
    assert body["metadata"] == {"name": "ca", "namespace": "default"}
    assert body["status"]["conditions"][0]["type"] == "Ready"
    assert "spec" not in body


def test_patch_build_requires_name():
    with pytest.raises(ValueError):
        patch.build(ISSUER, "", "default", IssuerStatus())


def test_request_status_omits_empty_result():
    assert RequestStatus([]).to_dict() == {"conditions": []}
    d = RequestStatus([], certificate=b"c", ca=b"a").to_dict()
    assert set(d) == {"conditions", "certificate", "ca"}


def test_load_storage_provider(monkeypatch):
    monkeypatch.delenv("ISSUER_STORAGE_PROVIDER", raising=False)
    assert isinstance(load_storage_provider(), InMemoryObjectStore)

    loaded = []
    monkeypatch.setattr(kube_provider, "load_kube_config", lambda: loaded.append(True))
    monkeypatch.setenv("ISSUER_STORAGE_PROVIDER", "kube")
    monkeypatch.setenv("KUBE_WATCH_TIMEOUT", "60")
    kube = load_storage_provider()
    assert isinstance(kube, KubeObjectStore)
    assert kube.watch_timeout == 60
    assert loaded == [True]

    with pytest.raises(ValueError):
        load_storage_provider({"provider": "etcd"})
