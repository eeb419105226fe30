# issuer_core/storage/models.py
"""
Storage-level representation of the two managed object families.

Objects travel through the store as plain dicts shaped like Kubernetes
resources (apiVersion/kind/metadata/spec/status) and are materialised into
these dataclasses on every read, so reconcilers never share a live
reference to a stored object.
"""

from __future__ import annotations
import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from issuer_core.constants import API_GROUP, API_VERSION, CONDITION_READY, CONDITION_TRUE
from issuer_core.utils import b64d, b64e, from_rfc3339, new_id, to_rfc3339, utcnow


@dataclass(frozen=True)
class ObjectKey:
    """Namespaced name; namespace is "" for cluster-scoped objects."""
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name


@dataclass(frozen=True)
class KindInfo:
    kind: str
    plural: str
    namespaced: bool = True
    is_request: bool = False
    group: str = API_GROUP
    version: str = API_VERSION

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version


@dataclass
class Condition:
    type: str
    status: str
    reason: str = ""
    message: str = ""
    observed_generation: int = 0
    last_transition_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
            "observedGeneration": self.observed_generation,
        }
        if self.last_transition_time is not None:
            d["lastTransitionTime"] = to_rfc3339(self.last_transition_time)
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        ltt = data.get("lastTransitionTime")
        return cls(
            type=data["type"],
            status=data["status"],
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            observed_generation=int(data.get("observedGeneration", 0)),
            last_transition_time=from_rfc3339(ltt) if ltt else None,
        )


def get_condition(conditions: List[Condition], condition_type: str = CONDITION_READY) -> Optional[Condition]:
    for c in conditions:
        if c.type == condition_type:
            return c
    return None


@dataclass
class ObjectMeta:
    name: str
    namespace: str = ""
    generation: int = 1
    resource_version: str = ""
    uid: str = field(default_factory=new_id)
    creation_timestamp: datetime = field(default_factory=utcnow)
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "name": self.name,
            "generation": self.generation,
            "resourceVersion": self.resource_version,
            "uid": self.uid,
            "creationTimestamp": to_rfc3339(self.creation_timestamp),
            "labels": dict(self.labels),
            "annotations": dict(self.annotations),
        }
        if self.namespace:
            d["namespace"] = self.namespace
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectMeta":
        created = data.get("creationTimestamp")
        return cls(
            name=data["name"],
            namespace=data.get("namespace", ""),
            generation=int(data.get("generation", 1)),
            resource_version=str(data.get("resourceVersion", "")),
            uid=data.get("uid") or new_id(),
            creation_timestamp=from_rfc3339(created) if created else utcnow(),
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
        )


@dataclass
class IssuerObject:
    """A trust anchor: one configured CA integration."""
    kind: str
    metadata: ObjectMeta
    spec: Dict[str, Any] = field(default_factory=dict)
    conditions: List[Condition] = field(default_factory=list)

    @property
    def key(self) -> ObjectKey:
        return self.metadata.key

    @property
    def generation(self) -> int:
        return self.metadata.generation

    def ready_condition(self) -> Optional[Condition]:
        return get_condition(self.conditions, CONDITION_READY)

    def to_dict(self, api_version: str = f"{API_GROUP}/{API_VERSION}") -> Dict[str, Any]:
        return {
            "apiVersion": api_version,
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
            "spec": copy.deepcopy(self.spec),
            "status": {"conditions": [c.to_dict() for c in self.conditions]},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IssuerObject":
        status = data.get("status") or {}
        return cls(
            kind=data["kind"],
            metadata=ObjectMeta.from_dict(data["metadata"]),
            spec=copy.deepcopy(data.get("spec") or {}),
            conditions=[Condition.from_dict(c) for c in status.get("conditions") or []],
        )


@dataclass
class IssuerRef:
    kind: str
    name: str
    group: str = API_GROUP

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "name": self.name, "group": self.group}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IssuerRef":
        return cls(kind=data["kind"], name=data["name"], group=data.get("group", API_GROUP))


@dataclass
class RequestObject:
    """A signing request against exactly one trust anchor."""
    kind: str
    metadata: ObjectMeta
    issuer_ref: IssuerRef
    csr: bytes = b""
    duration: Optional[float] = None  # seconds
    conditions: List[Condition] = field(default_factory=list)
    certificate: bytes = b""
    ca: bytes = b""

    @property
    def key(self) -> ObjectKey:
        return self.metadata.key

    @property
    def generation(self) -> int:
        return self.metadata.generation

    def ready_condition(self) -> Optional[Condition]:
        return get_condition(self.conditions, CONDITION_READY)

    def is_approved(self) -> bool:
        c = get_condition(self.conditions, "Approved")
        return c is not None and c.status == CONDITION_TRUE

    def is_denied(self) -> bool:
        c = get_condition(self.conditions, "Denied")
        return c is not None and c.status == CONDITION_TRUE

    def issuer_key(self, issuer_namespaced: bool) -> ObjectKey:
        return ObjectKey(self.metadata.namespace if issuer_namespaced else "", self.issuer_ref.name)

    def to_dict(self, api_version: str = f"{API_GROUP}/{API_VERSION}") -> Dict[str, Any]:
        spec: Dict[str, Any] = {"issuerRef": self.issuer_ref.to_dict(), "request": b64e(self.csr)}
        if self.duration is not None:
            spec["duration"] = self.duration
        status: Dict[str, Any] = {"conditions": [c.to_dict() for c in self.conditions]}
        if self.certificate:
            status["certificate"] = b64e(self.certificate)
        if self.ca:
            status["ca"] = b64e(self.ca)
        return {
            "apiVersion": api_version,
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
            "spec": spec,
            "status": status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequestObject":
        spec = data.get("spec") or {}
        status = data.get("status") or {}
        duration = spec.get("duration")
        return cls(
            kind=data["kind"],
            metadata=ObjectMeta.from_dict(data["metadata"]),
            issuer_ref=IssuerRef.from_dict(spec["issuerRef"]),
            csr=b64d(spec.get("request", "")),
            duration=float(duration) if duration is not None else None,
            conditions=[Condition.from_dict(c) for c in status.get("conditions") or []],
            certificate=b64d(status.get("certificate", "")),
            ca=b64d(status.get("ca", "")),
        )


def object_from_dict(kind_info: KindInfo, data: Dict[str, Any]):
    if kind_info.is_request:
        return RequestObject.from_dict(data)
    return IssuerObject.from_dict(data)
