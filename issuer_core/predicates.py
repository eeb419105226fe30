# issuer_core/predicates.py
"""
Watch-event filters.

Status writes by the reconcilers themselves must not immediately
re-trigger them (retries are paced by backoff, not by our own updates),
so plain status-only updates are dropped. What still gets through:
creation, deletion, spec (generation) changes, and the Ready condition
appearing or disappearing, which is how the Initializing write leads into
the first real pass. A pass for a deleted object finds nothing and drops
whatever per-object state the reconciler still holds.
"""

from issuer_core.constants import CONDITION_READY
from issuer_core.storage.models import get_condition
from issuer_core.storage.provider import ADDED, DELETED, MODIFIED


def _ready(obj):
    return None if obj is None else get_condition(obj.conditions, CONDITION_READY)


def _condition_status(obj, cond_type):
    c = None if obj is None else get_condition(obj.conditions, cond_type)
    return None if c is None else c.status


def issuer_predicate(event_type, old, new) -> bool:
    if event_type in (ADDED, DELETED):
        return True
    if event_type != MODIFIED:
        return False
    if old.generation != new.generation:
        return True
    return (_ready(old) is None) != (_ready(new) is None)


def request_predicate(event_type, old, new) -> bool:
    if issuer_predicate(event_type, old, new):
        return True
    if event_type != MODIFIED:
        return False
    # approval is written by another field manager
    return any(
        _condition_status(old, t) != _condition_status(new, t)
        for t in ("Approved", "Denied")
    )


def linked_issuer_predicate(event_type, old, new) -> bool:
    """Trust-anchor changes that requests waiting on it care about."""
    if event_type in (ADDED, DELETED):
        return True
    if old.generation != new.generation:
        return True
    r_old, r_new = _ready(old), _ready(new)
    if (r_old is None) != (r_new is None):
        return True
    if r_old is None:
        return False
    return (
        r_old.status != r_new.status
        or r_old.reason != r_new.reason
        or r_old.message != r_new.message
        or r_old.observed_generation != r_new.observed_generation
    )
