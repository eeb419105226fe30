"""
issuer_core.retry
-----------------
Retry bookkeeping shared by the reconcilers.

RetryTracker records when the current failure incident of an object began,
so a transient failure can be escalated to permanent once it has lasted
longer than the configured budget. ItemExponentialFailureRateLimiter
computes the per-key requeue delay.
"""

from __future__ import annotations
import threading
from datetime import timedelta
from typing import Any, Dict, Hashable, Optional, Tuple

from issuer_core.constants import DEFAULT_BACKOFF_MAX_SECONDS, DEFAULT_BACKOFF_MIN_SECONDS


class RetryTracker:
    def __init__(self):
        self._lock = threading.Lock()
        self._first_failure: Dict[Hashable, float] = {}

    def observe(self, key: Hashable, is_failure: bool, now: float) -> Optional[timedelta]:
        """
        Returns the elapsed time since the first failure of the current
        incident, or None when the object is healthy.
        """
        with self._lock:
            if not is_failure:
                self._first_failure.pop(key, None)
                return None
            first = self._first_failure.setdefault(key, now)
        return timedelta(seconds=max(0.0, now - first))

    def elapsed(self, key: Hashable, now: float) -> Optional[timedelta]:
        with self._lock:
            first = self._first_failure.get(key)
        if first is None:
            return None
        return timedelta(seconds=max(0.0, now - first))

    def clear(self, key: Hashable) -> None:
        with self._lock:
            self._first_failure.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._first_failure)


def should_escalate(elapsed: Optional[timedelta], max_retry_duration: timedelta) -> bool:
    return elapsed is not None and elapsed > max_retry_duration


def _error_signature(err: Optional[BaseException]) -> Optional[Tuple[str, str]]:
    if err is None:
        return None
    return type(err).__name__, str(err)


class ItemExponentialFailureRateLimiter:
    """
    delay = base_delay * 2**failures, capped at max_delay.

    The failure count of a key resets on forget() (success) and whenever
    the key fails with a different error than last time.
    """

    def __init__(self, base_delay: float = DEFAULT_BACKOFF_MIN_SECONDS,
                 max_delay: float = DEFAULT_BACKOFF_MAX_SECONDS):
        if base_delay <= 0 or max_delay < base_delay:
            raise ValueError(f"invalid backoff bounds: min={base_delay} max={max_delay}")
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._lock = threading.Lock()
        self._failures: Dict[Any, int] = {}
        self._last_error: Dict[Any, Optional[Tuple[str, str]]] = {}

    def when(self, item: Any, err: Optional[BaseException] = None) -> float:
        signature = _error_signature(err)
        with self._lock:
            if signature is not None and item in self._last_error and self._last_error[item] != signature:
                self._failures.pop(item, None)
            if signature is not None:
                self._last_error[item] = signature
            exp = self._failures.get(item, 0)
            self._failures[item] = exp + 1
        # guard against overflow for long-failing keys
        if exp > 62:
            return self.max_delay
        return min(self.base_delay * (2 ** exp), self.max_delay)

    def num_requeues(self, item: Any) -> int:
        with self._lock:
            return self._failures.get(item, 0)

    def forget(self, item: Any) -> None:
        with self._lock:
            self._failures.pop(item, None)
            self._last_error.pop(item, None)
