# issuer_core/storage/provider.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from issuer_core.storage.models import KindInfo, ObjectKey

# handler(event_type, old, new); event_type is ADDED | MODIFIED | DELETED
WatchHandler = Callable[[str, Any, Any], None]

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"


class StoreError(Exception):
    pass


class NotFoundError(StoreError):
    pass


class ConflictError(StoreError):
    pass


@dataclass(frozen=True)
class PatchTarget:
    """Identifies the status subresource an apply patch is aimed at."""
    kind_info: KindInfo
    key: ObjectKey


class ObjectStore:
    """
    Interface consumed by the reconcilers.

    get() returns None for a missing object; apply_status() raises
    NotFoundError so callers can treat a vanished object as done.
    """

    def register_kind(self, kind_info: KindInfo) -> None: ...
    def kind_info(self, kind: str) -> KindInfo: ...
    def get(self, kind: str, key: ObjectKey) -> Optional[Any]: ...
    def list(self, kind: str) -> List[Any]: ...
    def create(self, obj: Any) -> Any: ...
    def update_spec(self, kind: str, key: ObjectKey, spec: Dict[str, Any]) -> Any: ...
    def delete(self, kind: str, key: ObjectKey) -> None: ...
    def apply_status(self, target: PatchTarget, body: Dict[str, Any], field_manager: str, force: bool = True) -> Any: ...
    def watch(self, kind: str, handler: WatchHandler) -> Callable[[], None]: ...
    def close(self) -> None: ...
