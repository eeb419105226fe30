"""
issuer_core.conditions
----------------------
Pure state-machine logic for the Ready condition. No I/O.

A reconciliation pass computes at most one new Ready condition and places
it in a sparse patch list; set_condition() carries lastTransitionTime
forward unless the status value actually changes.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from issuer_core.constants import (
    CONDITION_FALSE, CONDITION_READY, CONDITION_TRUE, CONDITION_UNKNOWN,
    REASON_CHECKED, REASON_FAILED, REASON_INITIALIZING, REASON_ISSUED, REASON_PENDING,
)
from issuer_core.errors import Outcome
from issuer_core.storage.models import Condition, get_condition


@dataclass(frozen=True)
class ReadyVocabulary:
    """Reasons and message templates for one object family."""
    subject: str
    success_reason: str
    success_message: str
    permanent_message: str
    transient_message: str
    pending_message: str


ISSUER_VOCABULARY = ReadyVocabulary(
    subject="Issuer",
    success_reason=REASON_CHECKED,
    success_message="checked",
    permanent_message="Issuer has failed permanently: {err}",
    transient_message="Issuer is not ready yet: {err}",
    pending_message="Issuer is not ready yet: {err}",
)

REQUEST_VOCABULARY = ReadyVocabulary(
    subject="CertificateRequest",
    success_reason=REASON_ISSUED,
    success_message="issued",
    permanent_message="CertificateRequest has failed permanently: {err}",
    transient_message="CertificateRequest is not ready yet: {err}",
    pending_message="Signing still in progress. Reason: {err}",
)


def set_condition(
    existing: List[Condition],
    patch: List[Condition],
    generation: int,
    condition_type: str,
    status: str,
    reason: str,
    message: str,
    now: datetime,
) -> Tuple[Condition, Optional[str]]:
    """
    Upsert a condition into ``patch`` (not ``existing``).

    Returns the new condition and the previous status (None if there was
    no previous condition of that type).
    """
    condition = Condition(
        type=condition_type,
        status=status,
        reason=reason,
        message=message,
        observed_generation=generation,
        last_transition_time=now,
    )

    previous = get_condition(existing, condition_type)
    previous_status = previous.status if previous is not None else None
    if previous is not None and previous.status == status and previous.last_transition_time is not None:
        condition.last_transition_time = previous.last_transition_time

    for i, c in enumerate(patch):
        if c.type == condition_type:
            patch[i] = condition
            break
    else:
        patch.append(condition)

    return condition, previous_status


def outcome_to_status(outcome: Outcome, vocabulary: ReadyVocabulary) -> Tuple[str, str]:
    if outcome is Outcome.INITIALIZING:
        return CONDITION_UNKNOWN, REASON_INITIALIZING
    if outcome is Outcome.SUCCESS:
        return CONDITION_TRUE, vocabulary.success_reason
    if outcome is Outcome.PERMANENT:
        return CONDITION_FALSE, REASON_FAILED
    return CONDITION_FALSE, REASON_PENDING


def outcome_message(outcome: Outcome, vocabulary: ReadyVocabulary,
                    err: Optional[BaseException] = None, field_owner: str = "") -> str:
    if outcome is Outcome.INITIALIZING:
        return f"{field_owner} has started reconciling this {vocabulary.subject}"
    if outcome is Outcome.SUCCESS:
        return vocabulary.success_message
    if outcome is Outcome.PERMANENT:
        return vocabulary.permanent_message.format(err=err)
    if outcome is Outcome.PENDING:
        return vocabulary.pending_message.format(err=err)
    return vocabulary.transient_message.format(err=err)


def compute_ready_condition(
    existing: List[Condition],
    patch: List[Condition],
    generation: int,
    outcome: Outcome,
    now: datetime,
    vocabulary: ReadyVocabulary = ISSUER_VOCABULARY,
    err: Optional[BaseException] = None,
    message: Optional[str] = None,
    field_owner: str = "",
) -> Tuple[Condition, str]:
    """
    Next Ready condition for an object given the outcome of this pass.

    A missing Ready condition always yields Unknown/Initializing first,
    whatever the outcome; the caller ends the pass after writing it.
    ``message`` overrides the vocabulary text (used for waiting states
    that quote another object's condition).
    """
    if get_condition(existing, CONDITION_READY) is None:
        outcome = Outcome.INITIALIZING
        message = None

    status, reason = outcome_to_status(outcome, vocabulary)
    if message is None:
        message = outcome_message(outcome, vocabulary, err, field_owner)

    condition, _ = set_condition(existing, patch, generation, CONDITION_READY, status, reason, message, now)
    return condition, condition.message


def is_failed_permanently(condition: Optional[Condition], generation: int, reasons=(REASON_FAILED,)) -> bool:
    """A Failed condition that already covers the current generation is terminal."""
    return (
        condition is not None
        and condition.status == CONDITION_FALSE
        and condition.reason in reasons
        and condition.observed_generation >= generation
    )
