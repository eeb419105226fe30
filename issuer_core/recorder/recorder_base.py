from __future__ import annotations
from dataclasses import dataclass, asdict, field
from typing import Any, Dict

from issuer_core.utils import new_id, to_rfc3339, utcnow


@dataclass
class Event:
    """Human-readable event about one managed object."""
    kind: str
    object_key: str
    type: str          # Normal | Warning
    reason: str        # Checked | Issued | RetryableError | PermanentError | Denied
    message: str
    event_id: str = field(default_factory=new_id)
    ts: str = field(default_factory=lambda: to_rfc3339(utcnow()))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EventRecorder:
    """
    Sink for status-transition events.

    event() must never raise into the reconciler; recorders log their own
    delivery failures.
    """
    name: str = "base"

    def event(self, obj: Any, event_type: str, reason: str, message: str) -> Event:
        ev = Event(kind=obj.kind, object_key=str(obj.key), type=event_type, reason=reason, message=message)
        self.record(ev)
        return ev

    def record(self, ev: Event) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return
