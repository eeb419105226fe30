"""
issuer_core.controller
----------------------
Worker runtime around a reconciler.

A Controller owns one RateLimitingQueue and N worker threads. Sources feed
keys into the queue; each key is processed by at most one worker at a
time, different keys in parallel.

Outcome handling per pass:
- returns Result()               -> forget backoff, done
- returns Result(requeue_after)  -> forget backoff, delayed requeue
- returns Result(requeue=True)   -> rate-limited requeue
- raises TerminalError           -> forget backoff, no requeue
- raises Cancelled               -> dropped (controller is stopping)
- raises anything else           -> rate-limited requeue
"""

from __future__ import annotations
import threading
from typing import Any, Callable, Iterable, List, Optional

from issuer_core.constants import DEFAULT_WORKERS
from issuer_core.logger import get_logger
from issuer_core.reconcile import Cancelled, Context, Result, TerminalError
from issuer_core.retry import ItemExponentialFailureRateLimiter
from issuer_core.storage.provider import ObjectStore
from issuer_core.workqueue import RateLimitingQueue

log = get_logger("Issuer.Controller")


class StoreSource:
    """Feeds a controller's queue from a store watch on one kind."""

    def __init__(self, store: ObjectStore, kind: str,
                 predicate: Optional[Callable[[str, Any, Any], bool]] = None,
                 mapper: Optional[Callable[[str, Any, Any], Iterable[Any]]] = None):
        self.store = store
        self.kind = kind
        self.predicate = predicate
        self.mapper = mapper
        self._stop: Optional[Callable[[], None]] = None

    def _default_keys(self, event_type, old, new):
        obj = new if new is not None else old
        return [obj.key]

    def start(self, queue: RateLimitingQueue) -> None:
        mapper = self.mapper or self._default_keys

        def handler(event_type, old, new):
            if self.predicate is not None and not self.predicate(event_type, old, new):
                return
            for key in mapper(event_type, old, new):
                queue.add(key)

        self._stop = self.store.watch(self.kind, handler)

    def stop(self) -> None:
        if self._stop is not None:
            self._stop()
            self._stop = None


class Controller:
    def __init__(self, name: str, reconciler, rate_limiter: Optional[ItemExponentialFailureRateLimiter] = None,
                 workers: int = DEFAULT_WORKERS):
        self.name = name
        self.reconciler = reconciler
        self.workers = workers
        self.queue = RateLimitingQueue(rate_limiter, name=name)
        self._sources: List[Any] = []
        self._threads: List[threading.Thread] = []
        self._ctx: Optional[Context] = None

    def watch(self, source) -> "Controller":
        self._sources.append(source)
        return self

    def start(self, ctx: Context) -> None:
        if self._ctx is not None:
            raise RuntimeError(f"controller {self.name} already started")
        self._ctx = ctx.child()
        for i in range(self.workers):
            t = threading.Thread(target=self._worker, args=(self.queue, self._ctx),
                                 name=f"{self.name}-{i}", daemon=True)
            t.start()
            self._threads.append(t)
        for source in self._sources:
            source.start(self.queue)
        log.info(f"[CONTROLLER] started {self.name} workers={self.workers}")

    def stop(self, timeout: float = 5.0) -> None:
        for source in self._sources:
            source.stop()
        if self._ctx is not None:
            self._ctx.cancel("controller stopping")
        self.queue.shut_down()
        for t in self._threads:
            t.join(timeout)
        self._threads = []
        # a shut-down queue cannot be reused; start() gets a fresh one
        self.queue = RateLimitingQueue(self.queue.rate_limiter, name=self.name)
        self._ctx = None
        log.info(f"[CONTROLLER] stopped {self.name}")

    def _worker(self, queue: RateLimitingQueue, ctx: Context) -> None:
        while True:
            key, shutdown = queue.get()
            if shutdown:
                return
            try:
                self._process(queue, ctx, key)
            finally:
                queue.done(key)

    def _process(self, queue: RateLimitingQueue, ctx: Context, key) -> None:
        pass_ctx = ctx.child()
        try:
            result = self.reconciler.reconcile(pass_ctx, key) or Result()
        except TerminalError as e:
            log.info(f"[CONTROLLER {self.name}] {key} terminal error, not requeuing: {e}")
            queue.forget(key)
            return
        except Cancelled:
            log.debug(f"[CONTROLLER {self.name}] {key} pass cancelled")
            return
        except Exception as e:
            log.info(f"[CONTROLLER {self.name}] {key} reconcile error, requeuing with backoff: {e}")
            queue.add_rate_limited(key, e)
            return
        finally:
            pass_ctx.cancel("pass finished")

        if result.requeue_after > 0:
            queue.forget(key)
            queue.add_after(key, result.requeue_after)
        elif result.requeue:
            queue.add_rate_limited(key)
        else:
            queue.forget(key)
