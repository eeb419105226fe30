# issuer_core/workqueue.py
"""
Rate-limited work queue keyed by object identity.

Guarantees:
- a key waiting in the queue is held once no matter how often it is added
- a key handed out by get() is not handed out again until done() is called;
  adds that arrive meanwhile mark it dirty and re-queue it on done()
- delayed adds keep the earliest deadline per key
"""

from __future__ import annotations
import heapq, itertools, threading, time
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

from issuer_core.logger import get_logger
from issuer_core.retry import ItemExponentialFailureRateLimiter

log = get_logger("Issuer.WorkQueue")


class RateLimitingQueue:
    def __init__(self, rate_limiter: Optional[ItemExponentialFailureRateLimiter] = None, name: str = ""):
        self.name = name
        self.rate_limiter = rate_limiter or ItemExponentialFailureRateLimiter()
        self._cond = threading.Condition()
        self._queue: Deque[Any] = deque()
        self._dirty: Set[Any] = set()
        self._processing: Set[Any] = set()
        self._waiting: List[Tuple[float, int, Any]] = []
        self._ready_at: Dict[Any, float] = {}
        self._seq = itertools.count()
        self._shutting_down = False

    # ------------------------------------------------------------------
    # adds
    # ------------------------------------------------------------------
    def _add_locked(self, item: Any) -> None:
        if self._shutting_down or item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._cond.notify()

    def add(self, item: Any) -> None:
        with self._cond:
            self._add_locked(item)

    def add_after(self, item: Any, delay: float) -> None:
        if delay <= 0:
            self.add(item)
            return
        ready_at = time.monotonic() + delay
        with self._cond:
            if self._shutting_down:
                return
            current = self._ready_at.get(item)
            if current is not None and current <= ready_at:
                return
            self._ready_at[item] = ready_at
            heapq.heappush(self._waiting, (ready_at, next(self._seq), item))
            self._cond.notify()
        log.debug(f"[QUEUE {self.name}] {item} requeued in {delay:.3f}s")

    def add_rate_limited(self, item: Any, err: Optional[BaseException] = None) -> None:
        self.add_after(item, self.rate_limiter.when(item, err))

    def forget(self, item: Any) -> None:
        self.rate_limiter.forget(item)

    def num_requeues(self, item: Any) -> int:
        return self.rate_limiter.num_requeues(item)

    # ------------------------------------------------------------------
    # consumption
    # ------------------------------------------------------------------
    def _promote_waiting(self, now: float) -> Optional[float]:
        """Move due delayed items into the queue; return seconds until the next one."""
        while self._waiting:
            ready_at, _, item = self._waiting[0]
            if self._ready_at.get(item) != ready_at:
                heapq.heappop(self._waiting)  # superseded by an earlier deadline
                continue
            if ready_at > now:
                return ready_at - now
            heapq.heappop(self._waiting)
            del self._ready_at[item]
            self._add_locked(item)
        return None

    def get(self, timeout: Optional[float] = None) -> Tuple[Any, bool]:
        """Blocks until an item is ready. Returns (item, shutdown)."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                now = time.monotonic()
                next_due = self._promote_waiting(now)
                if self._queue:
                    item = self._queue.popleft()
                    self._processing.add(item)
                    self._dirty.discard(item)
                    return item, False
                if self._shutting_down:
                    return None, True
                wait_for = next_due
                if deadline is not None:
                    remaining = deadline - now
                    if remaining <= 0:
                        return None, False
                    wait_for = remaining if wait_for is None else min(wait_for, remaining)
                self._cond.wait(wait_for)

    def done(self, item: Any) -> None:
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty and not self._shutting_down:
                self._queue.append(item)
                self._cond.notify()

    def shut_down(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._waiting.clear()
            self._ready_at.clear()
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)
