from __future__ import annotations
import copy, itertools, threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from issuer_core.logger import get_logger
from issuer_core.storage.models import KindInfo, ObjectKey, object_from_dict
from issuer_core.storage.provider import (
    ADDED, DELETED, MODIFIED,
    ConflictError, NotFoundError, ObjectStore, PatchTarget, StoreError, WatchHandler,
)
from issuer_core.utils import new_id, to_rfc3339, utcnow

log = get_logger("Issuer.Store.Memory")

_Ref = Tuple[str, str, str]  # kind, namespace, name


def _condition_path(cond_type: str) -> str:
    return f"conditions[{cond_type}]"


class InMemoryObjectStore(ObjectStore):
    """
    Thread-safe stand-in for an API server.

    - per-object generation bumped on spec change only
    - monotonically increasing resourceVersion on every write
    - informer-style watch callbacks delivered with (old, new)
    - server-side-apply-lite for status: conditions are a map keyed by
      type, and fields a manager stops sending are removed
    """

    def __init__(self, kinds: Optional[List[KindInfo]] = None):
        self._lock = threading.RLock()
        self._kinds: Dict[str, KindInfo] = {}
        self._objects: Dict[_Ref, Dict[str, Any]] = {}
        self._owners: Dict[_Ref, Dict[str, str]] = {}
        self._watchers: Dict[str, Dict[str, WatchHandler]] = {}
        self._rv = itertools.count(1)
        for k in kinds or []:
            self.register_kind(k)

    # ------------------------------------------------------------------
    # kinds
    # ------------------------------------------------------------------
    def register_kind(self, kind_info: KindInfo) -> None:
        with self._lock:
            self._kinds[kind_info.kind] = kind_info

    def kind_info(self, kind: str) -> KindInfo:
        try:
            return self._kinds[kind]
        except KeyError:
            raise StoreError(f"unknown kind: {kind}") from None

    def _ref(self, kind: str, key: ObjectKey) -> _Ref:
        info = self.kind_info(kind)
        namespace = key.namespace if info.namespaced else ""
        return (kind, namespace, key.name)

    def _load(self, kind: str, data: Optional[Dict[str, Any]]):
        if data is None:
            return None
        return object_from_dict(self.kind_info(kind), copy.deepcopy(data))

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def get(self, kind: str, key: ObjectKey):
        with self._lock:
            return self._load(kind, self._objects.get(self._ref(kind, key)))

    def list(self, kind: str):
        with self._lock:
            return [self._load(kind, d) for (k, _, _), d in sorted(self._objects.items()) if k == kind]

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    def create(self, obj):
        info = self.kind_info(obj.kind)
        data = obj.to_dict(info.api_version)
        ref = self._ref(obj.kind, obj.key)
        with self._lock:
            if ref in self._objects:
                raise ConflictError(f"{obj.kind} {obj.key} already exists")
            data["metadata"]["resourceVersion"] = str(next(self._rv))
            data["metadata"]["uid"] = data["metadata"].get("uid") or new_id()
            data["metadata"]["creationTimestamp"] = to_rfc3339(utcnow())
            self._objects[ref] = data
            self._owners[ref] = {}
            new = self._load(obj.kind, data)
        log.debug(f"[STORE] created {obj.kind} {obj.key}")
        self._notify(obj.kind, ADDED, None, new)
        return new

    def update_spec(self, kind: str, key: ObjectKey, spec: Dict[str, Any]):
        ref = self._ref(kind, key)
        with self._lock:
            data = self._objects.get(ref)
            if data is None:
                raise NotFoundError(f"{kind} {key} not found")
            old = self._load(kind, data)
            if data.get("spec") != spec:
                data["spec"] = copy.deepcopy(spec)
                data["metadata"]["generation"] = int(data["metadata"].get("generation", 1)) + 1
            data["metadata"]["resourceVersion"] = str(next(self._rv))
            new = self._load(kind, data)
        self._notify(kind, MODIFIED, old, new)
        return new

    def delete(self, kind: str, key: ObjectKey) -> None:
        ref = self._ref(kind, key)
        with self._lock:
            data = self._objects.pop(ref, None)
            self._owners.pop(ref, None)
            if data is None:
                raise NotFoundError(f"{kind} {key} not found")
            old = self._load(kind, data)
        self._notify(kind, DELETED, old, None)

    def apply_status(self, target: PatchTarget, body: Dict[str, Any], field_manager: str, force: bool = True):
        kind = target.kind_info.kind
        ref = self._ref(kind, target.key)
        status = body.get("status") or {}
        with self._lock:
            data = self._objects.get(ref)
            if data is None:
                raise NotFoundError(f"{kind} {target.key} not found")
            owners = self._owners.setdefault(ref, {})
            current = data.setdefault("status", {})
            old = self._load(kind, data)

            applied: Dict[str, Any] = {}
            for name, value in status.items():
                if name == "conditions":
                    for cond in value:
                        applied[_condition_path(cond["type"])] = cond
                else:
                    applied[name] = value

            if not force:
                for path in applied:
                    owner = owners.get(path)
                    if owner and owner != field_manager:
                        raise ConflictError(f"{path} is owned by {owner}")

            # drop fields this manager owned but no longer sends
            for path, owner in list(owners.items()):
                if owner == field_manager and path not in applied:
                    del owners[path]
                    self._remove_path(current, path)

            conditions = current.setdefault("conditions", [])
            for path, value in applied.items():
                owners[path] = field_manager
                if path.startswith("conditions["):
                    for i, existing in enumerate(conditions):
                        if existing["type"] == value["type"]:
                            conditions[i] = copy.deepcopy(value)
                            break
                    else:
                        conditions.append(copy.deepcopy(value))
                else:
                    current[path] = copy.deepcopy(value)

            if old is not None and self._load(kind, data) == old:
                # identical apply is a no-op, no event and no new version
                return old
            data["metadata"]["resourceVersion"] = str(next(self._rv))
            new = self._load(kind, data)
        log.debug(f"[STORE] applied status {kind} {target.key} manager={field_manager}")
        self._notify(kind, MODIFIED, old, new)
        return new

    @staticmethod
    def _remove_path(status: Dict[str, Any], path: str) -> None:
        if path.startswith("conditions["):
            cond_type = path[len("conditions["):-1]
            status["conditions"] = [c for c in status.get("conditions", []) if c["type"] != cond_type]
        else:
            status.pop(path, None)

    # ------------------------------------------------------------------
    # watch
    # ------------------------------------------------------------------
    def watch(self, kind: str, handler: WatchHandler) -> Callable[[], None]:
        token = new_id()
        with self._lock:
            self.kind_info(kind)
            self._watchers.setdefault(kind, {})[token] = handler
            existing = [self._load(kind, d) for (k, _, _), d in self._objects.items() if k == kind]

        # informers replay the current state as ADDED on start
        for obj in existing:
            handler(ADDED, None, obj)

        def stop() -> None:
            with self._lock:
                self._watchers.get(kind, {}).pop(token, None)

        return stop

    def _notify(self, kind: str, event_type: str, old, new) -> None:
        with self._lock:
            handlers = list(self._watchers.get(kind, {}).values())
        for handler in handlers:
            try:
                handler(event_type, old, new)
            except Exception:
                log.exception(f"[STORE] watch handler failed kind={kind} event={event_type}")

    def close(self) -> None:
        with self._lock:
            self._watchers.clear()
