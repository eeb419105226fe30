"""
issuer_core.utils
-----------------
Small helpers for base64 fields, timestamps, identifiers and clocks.
"""

from __future__ import annotations
import base64, time, uuid
from datetime import datetime, timezone


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")

def b64d(s: str) -> bytes:
    return base64.b64decode(s.encode("ascii"))

def utcnow() -> datetime:
    # Conditions use second precision, like the API server does
    return datetime.now(timezone.utc).replace(microsecond=0)

def to_rfc3339(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

def from_rfc3339(s: str) -> datetime:
    return datetime.strptime(s, "%Y-%m-%dT%H:%M:%SZ").replace(tzinfo=timezone.utc)

def new_id() -> str:
    return uuid.uuid4().hex


class Clock:
    """Wall clock for condition timestamps, monotonic clock for retry bookkeeping."""

    def now(self) -> datetime:
        return utcnow()

    def monotonic(self) -> float:
        return time.monotonic()
