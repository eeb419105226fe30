# issuer_core/storage/providers/kube_provider.py
import threading
from typing import Any, Callable, Dict, List, Optional

from kubernetes import client, config, watch
from kubernetes.client.exceptions import ApiException

from issuer_core.constants import APPLY_PATCH_CONTENT_TYPE
from issuer_core.logger import get_logger
from issuer_core.storage.models import KindInfo, ObjectKey, object_from_dict
from issuer_core.storage.provider import (
    ADDED, DELETED, MODIFIED,
    ConflictError, NotFoundError, ObjectStore, PatchTarget, StoreError, WatchHandler,
)

log = get_logger("Issuer.Store.Kube")


def load_kube_config() -> None:
    """In-cluster service account first, then the local kubeconfig."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


def _store_error(e: ApiException, what: str) -> StoreError:
    if e.status == 404:
        return NotFoundError(f"{what}: not found")
    if e.status == 409:
        return ConflictError(f"{what}: {e.reason}")
    log.error(f"[KUBE] {what} failed {e.status}: {e.reason}")
    return StoreError(f"{what}: {e.status} {e.reason}")


def _ident(data: Dict[str, Any]) -> str:
    meta = data.get("metadata") or {}
    return f"{meta.get('namespace', '')}/{meta.get('name', '')}"


class KubeObjectStore(ObjectStore):
    """
    Object store adapter for a Kubernetes API server, built on the
    kubernetes client's CustomObjectsApi.

    Features:
    - Status writes use server-side apply on the status subresource with a
      fixed field manager and force=true.
    - watch() runs a list-then-watch loop per kind on a daemon thread and
      replays events as (old, new) pairs from a local cache. Objects that
      cannot be decoded are logged and skipped; the loop keeps running.
    """

    def __init__(self, api: Optional[client.CustomObjectsApi] = None,
                 watch_factory: Callable[[], watch.Watch] = watch.Watch,
                 watch_timeout: int = 300, relist_delay: float = 1.0):
        if api is None:
            load_kube_config()
            api = client.CustomObjectsApi()
        self.api = api
        self.watch_factory = watch_factory
        self.watch_timeout = watch_timeout
        self.relist_delay = relist_delay
        self._kinds: Dict[str, KindInfo] = {}
        self._cancels: List[Callable[[], None]] = []

    def register_kind(self, kind_info: KindInfo) -> None:
        self._kinds[kind_info.kind] = kind_info

    def kind_info(self, kind: str) -> KindInfo:
        try:
            return self._kinds[kind]
        except KeyError:
            raise StoreError(f"unknown kind: {kind}") from None

    # ------------------------------------------------------------------
    # reads / writes
    # ------------------------------------------------------------------
    def _call(self, what: str, fn, **kwargs):
        try:
            return fn(**kwargs)
        except ApiException as e:
            raise _store_error(e, what) from e

    def _object_call(self, what: str, info: KindInfo, key: ObjectKey, namespaced_fn, cluster_fn, **kwargs):
        kwargs.update(group=info.group, version=info.version, plural=info.plural, name=key.name)
        if info.namespaced:
            return self._call(what, namespaced_fn, namespace=key.namespace, **kwargs)
        return self._call(what, cluster_fn, **kwargs)

    def get(self, kind: str, key: ObjectKey):
        info = self.kind_info(kind)
        try:
            data = self._object_call(
                f"get {kind} {key}", info, key,
                self.api.get_namespaced_custom_object, self.api.get_cluster_custom_object,
            )
        except NotFoundError:
            return None
        return object_from_dict(info, data)

    def _list_raw(self, info: KindInfo):
        body = self._call(
            f"list {info.kind}", self.api.list_cluster_custom_object,
            group=info.group, version=info.version, plural=info.plural,
        )
        return body.get("items", []), body.get("metadata", {}).get("resourceVersion", "")

    def list(self, kind: str):
        info = self.kind_info(kind)
        items, _ = self._list_raw(info)
        return [object_from_dict(info, item) for item in items]

    def create(self, obj):
        info = self.kind_info(obj.kind)
        data = obj.to_dict(info.api_version)
        for field in ("resourceVersion", "uid", "creationTimestamp"):
            data["metadata"].pop(field, None)
        what = f"create {obj.kind} {obj.key}"
        kwargs = dict(group=info.group, version=info.version, plural=info.plural, body=data)
        if info.namespaced:
            res = self._call(what, self.api.create_namespaced_custom_object, namespace=obj.key.namespace, **kwargs)
        else:
            res = self._call(what, self.api.create_cluster_custom_object, **kwargs)
        return object_from_dict(info, res)

    def update_spec(self, kind: str, key: ObjectKey, spec: Dict[str, Any]):
        info = self.kind_info(kind)
        res = self._object_call(
            f"update {kind} {key}", info, key,
            self.api.patch_namespaced_custom_object, self.api.patch_cluster_custom_object,
            body={"spec": spec},
        )
        return object_from_dict(info, res)

    def delete(self, kind: str, key: ObjectKey) -> None:
        info = self.kind_info(kind)
        self._object_call(
            f"delete {kind} {key}", info, key,
            self.api.delete_namespaced_custom_object, self.api.delete_cluster_custom_object,
        )

    def apply_status(self, target: PatchTarget, body: Dict[str, Any], field_manager: str, force: bool = True):
        info = target.kind_info
        log.debug(f"[KUBE APPLY] → {info.kind} {target.key}/status | manager={field_manager}")
        res = self._object_call(
            f"apply status {info.kind} {target.key}", info, target.key,
            self.api.patch_namespaced_custom_object_status, self.api.patch_cluster_custom_object_status,
            body=body, field_manager=field_manager, force=force,
            _content_type=APPLY_PATCH_CONTENT_TYPE,
        )
        return object_from_dict(info, res)

    # ------------------------------------------------------------------
    # watch
    # ------------------------------------------------------------------
    @staticmethod
    def _decode(info: KindInfo, data: Dict[str, Any]):
        try:
            return object_from_dict(info, data)
        except (KeyError, TypeError, ValueError) as e:
            log.warning(f"[KUBE WATCH] skipping undecodable {info.kind} {_ident(data)}: {e!r}")
            return None

    def _relist(self, info: KindInfo, handler: WatchHandler, cache: Dict[str, Any]) -> str:
        items, rv = self._list_raw(info)
        seen = set()
        for item in items:
            obj = self._decode(info, item)
            if obj is None:
                continue
            k = _ident(item)
            seen.add(k)
            old = cache.get(k)
            cache[k] = obj
            if old is None:
                handler(ADDED, None, obj)
            elif old != obj:
                handler(MODIFIED, old, obj)
        for k in [k for k in cache if k not in seen]:
            handler(DELETED, cache.pop(k), None)
        return rv

    def _dispatch(self, info: KindInfo, handler: WatchHandler, cache: Dict[str, Any], event: Dict[str, Any]) -> None:
        etype = event.get("type")
        data = event.get("object")
        if etype not in (ADDED, MODIFIED, DELETED) or not isinstance(data, dict):
            return
        obj = self._decode(info, data)
        if obj is None:
            return
        k = _ident(data)
        if etype == DELETED:
            handler(DELETED, cache.pop(k, obj), None)
            return
        old = cache.get(k)
        cache[k] = obj
        handler(ADDED if old is None else MODIFIED, old, obj)

    def _watch_loop(self, info: KindInfo, handler: WatchHandler, stop: threading.Event, w: watch.Watch) -> None:
        cache: Dict[str, Any] = {}
        while not stop.is_set():
            try:
                rv = self._relist(info, handler, cache)
                log.info(f"[KUBE WATCH] connected kind={info.kind} rv={rv}")
                for event in w.stream(
                    self.api.list_cluster_custom_object,
                    group=info.group, version=info.version, plural=info.plural,
                    resource_version=rv, timeout_seconds=self.watch_timeout,
                ):
                    if stop.is_set():
                        break
                    self._dispatch(info, handler, cache, event)
            except ApiException as e:
                # 410 Gone lands here as well: relist
                log.info(f"[KUBE WATCH] {info.kind} watch ended ({e.status}), relisting")
                stop.wait(self.relist_delay)
            except Exception as e:
                log.error(f"[KUBE WATCH] {info.kind} stream error: {e!r}")
                stop.wait(self.relist_delay)
        log.info(f"[KUBE WATCH] loop ended for {info.kind}")

    def watch(self, kind: str, handler: WatchHandler) -> Callable[[], None]:
        info = self.kind_info(kind)
        stop = threading.Event()
        w = self.watch_factory()
        t = threading.Thread(target=self._watch_loop, args=(info, handler, stop, w),
                             name=f"watch-{kind}", daemon=True)
        t.start()

        def cancel() -> None:
            stop.set()
            w.stop()

        self._cancels.append(cancel)
        return cancel

    def close(self) -> None:
        for cancel in self._cancels:
            cancel()
