"""
issuer_core.event_source
------------------------
Mailbox that lets the request reconciler report "this trust anchor is
broken" to the trust-anchor reconciler without waiting for a resync.

- deposit(): last write wins per (kind, key); safe from any worker thread.
- consume_and_clear(): atomic pop under the same lock, so every deposited
  error is observed at most once. A deposit that lands after the pop
  simply wakes the trust anchor again.
- add_consumer(kind): a queue-backed source; every deposit for that kind
  enqueues the key in the consumer's work queue.

One EventSource is owned by each CombinedController and shared by all of
its reconcilers, one consumer per trust-anchor kind; there is no
process-global instance.
"""

from __future__ import annotations
import threading
from typing import Dict, List, Optional, Tuple

from issuer_core.logger import get_logger
from issuer_core.storage.models import ObjectKey
from issuer_core.workqueue import RateLimitingQueue

log = get_logger("Issuer.EventSource")


class RegistrySource:
    """
    Synthetic watch source. Keys deposited before start() are buffered;
    keys deposited after stop() are dropped.
    """

    def __init__(self, kind: str):
        self.kind = kind
        self._lock = threading.Lock()
        self._queue: Optional[RateLimitingQueue] = None
        self._pending: List[ObjectKey] = []
        self._stopped = False

    def notify(self, key: ObjectKey) -> None:
        with self._lock:
            if self._stopped:
                return
            queue = self._queue
            if queue is None:
                self._pending.append(key)
                return
        queue.add(key)

    def start(self, queue: RateLimitingQueue) -> None:
        with self._lock:
            self._queue = queue
            self._stopped = False
            pending, self._pending = self._pending, []
        for key in pending:
            queue.add(key)

    def stop(self) -> None:
        with self._lock:
            self._queue = None
            self._stopped = True
            self._pending = []


class EventSource:
    def __init__(self):
        self._lock = threading.Lock()
        self._errors: Dict[Tuple[str, ObjectKey], BaseException] = {}
        self._consumers: Dict[str, RegistrySource] = {}

    def add_consumer(self, kind: str) -> RegistrySource:
        with self._lock:
            if kind in self._consumers:
                raise ValueError(f"event source already has a consumer for {kind}")
            source = RegistrySource(kind)
            self._consumers[kind] = source
        return source

    def deposit(self, kind: str, key: ObjectKey, err: BaseException) -> None:
        with self._lock:
            self._errors[(kind, key)] = err
            consumer = self._consumers.get(kind)
        if consumer is None:
            log.warning(f"[REGISTRY] no consumer for {kind}; error for {key} will wait for the next pass")
            return
        log.debug(f"[REGISTRY] deposited error for {kind} {key}: {err}")
        consumer.notify(key)

    report_error = deposit

    def consume_and_clear(self, kind: str, key: ObjectKey) -> Tuple[Optional[BaseException], bool]:
        with self._lock:
            err = self._errors.pop((kind, key), None)
        return err, err is not None

    def pending(self, kind: str, key: ObjectKey) -> bool:
        with self._lock:
            return (kind, key) in self._errors

    def has_reported_error(self, kind: str, key: ObjectKey) -> Tuple[Optional[BaseException], bool]:
        """Consuming read; a second call returns (None, False) until the next report."""
        return self.consume_and_clear(kind, key)
