# issuer_core/recorder/recorder_local.py
import threading
from collections import deque
from typing import List

from issuer_core.logger import get_logger
from issuer_core.recorder.recorder_base import Event, EventRecorder

log = get_logger("Issuer.Recorder.Local")


class LogRecorder(EventRecorder):
    name = "log"

    def record(self, ev: Event) -> None:
        log.info(f"[EVENT] {ev.type} {ev.reason} {ev.kind} {ev.object_key}: {ev.message}")


class MemoryRecorder(LogRecorder):
    """Keeps the last `capacity` events for inspection (tests, debugging)."""
    name = "memory"

    def __init__(self, capacity: int = 100):
        self._lock = threading.Lock()
        self._events = deque(maxlen=capacity)

    def record(self, ev: Event) -> None:
        super().record(ev)
        with self._lock:
            self._events.append(ev)

    @property
    def events(self) -> List[Event]:
        with self._lock:
            return list(self._events)

    def reasons(self, kind: str = None) -> List[str]:
        return [e.reason for e in self.events if kind is None or e.kind == kind]
