# issuer_core/storage/__init__.py

from .models import Condition, IssuerObject, IssuerRef, KindInfo, ObjectKey, ObjectMeta, RequestObject
from .provider import ConflictError, NotFoundError, ObjectStore, PatchTarget, StoreError
from .providers.memory_provider import InMemoryObjectStore
from .providers.kube_provider import KubeObjectStore
import os


def load_storage_provider(config: dict | None = None) -> ObjectStore:
    """
    Factory resolver for selecting the runtime object store.

    For now:
        - memory (default)
        - kube
    """
    config = config or {}
    provider = config.get("provider") or os.getenv("ISSUER_STORAGE_PROVIDER", "memory")

    if provider == "memory":
        return InMemoryObjectStore()

    if provider == "kube":
        watch_timeout = int(config.get("kube_watch_timeout") or os.getenv("KUBE_WATCH_TIMEOUT", "300"))
        return KubeObjectStore(watch_timeout=watch_timeout)

    raise ValueError(f"Unknown storage provider: {provider}")


__all__ = [
    "Condition",
    "ConflictError",
    "IssuerObject",
    "IssuerRef",
    "KindInfo",
    "NotFoundError",
    "ObjectKey",
    "ObjectMeta",
    "ObjectStore",
    "PatchTarget",
    "RequestObject",
    "StoreError",
    "InMemoryObjectStore",
    "KubeObjectStore",
    "load_storage_provider",
]
