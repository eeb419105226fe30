# issuer_core/patch.py
"""
Builds apply-style, status-only patches.

The body names only what this pass computed: the Ready condition, and for
requests the signed result. Applied with force=True under a fixed field
manager, so the engine and an object's owner (who writes spec) never
conflict, and a manager that stops sending a field gives it up.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from issuer_core.storage.models import Condition, KindInfo, ObjectKey
from issuer_core.storage.provider import PatchTarget
from issuer_core.utils import b64e


@dataclass
class IssuerStatus:
    conditions: List[Condition] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"conditions": [c.to_dict() for c in self.conditions]}


@dataclass
class RequestStatus:
    conditions: List[Condition] = field(default_factory=list)
    certificate: bytes = b""
    ca: bytes = b""

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"conditions": [c.to_dict() for c in self.conditions]}
        if self.certificate:
            d["certificate"] = b64e(self.certificate)
        if self.ca:
            d["ca"] = b64e(self.ca)
        return d


def build(kind_info: KindInfo, name: str, namespace: str, status) -> Tuple[PatchTarget, Dict[str, Any]]:
    if not name:
        raise ValueError("status patch needs an object name")
    namespace = namespace if kind_info.namespaced else ""
    metadata: Dict[str, Any] = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    body = {
        "apiVersion": kind_info.api_version,
        "kind": kind_info.kind,
        "metadata": metadata,
        "status": status.to_dict(),
    }
    return PatchTarget(kind_info, ObjectKey(namespace, name)), body


def build_issuer_status_patch(kind_info: KindInfo, name: str, namespace: str,
                              status: IssuerStatus) -> Tuple[PatchTarget, Dict[str, Any]]:
    return build(kind_info, name, namespace, status)


def build_request_status_patch(kind_info: KindInfo, name: str, namespace: str,
                               status: RequestStatus) -> Tuple[PatchTarget, Dict[str, Any]]:
    return build(kind_info, name, namespace, status)
