"""
Verification State Policy.

Responsibilities:
- Map an attempt outcome onto the request status, escalating when automated
  attempts are exhausted.
- Decide whether an appeal or a manual review is allowed.
- Decide when a request is final.

Non-Responsibilities:
- No persistence.
- No scoring; decisions come from the matcher.

Invariant:
APPROVED and a manual decision are absorbing. A request never gets more
automated attempts than the configured maximum. The last automated attempt
approves only when its field scores are not ambiguous.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from credverify.errors import AppealLimitExceededError, InvalidTransitionError
from pipelines.matching.results import Decision
from pipelines.matching.scoring import is_ambiguous


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    MANUAL_REVIEW = "MANUAL_REVIEW"


class AttemptStatus(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


DEFAULT_MAX_ATTEMPTS = 3
MANUAL_REVIEW_ATTEMPT_NUMBER = 100

_DECISION_STATUS = {
    Decision.APPROVED: RequestStatus.APPROVED,
    Decision.PENDING_REVIEW: RequestStatus.MANUAL_REVIEW,
    Decision.REJECTED: RequestStatus.REJECTED,
}


@dataclass(frozen=True)
class Transition:
    status: RequestStatus
    escalation_reason: Optional[str] = None


def status_after_attempt(
    decision: Optional[Decision],
    attempt_number: int,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    field_scores: Optional[Dict[str, float]] = None,
) -> Transition:
    """Request status once an attempt ends; ``decision`` is None for a FAILED attempt."""
    ambiguous = bool(field_scores) and is_ambiguous(field_scores)
    last_attempt = attempt_number >= max_attempts

    if decision == Decision.APPROVED and not (last_attempt and ambiguous):
        return Transition(RequestStatus.APPROVED)

    # The last automated attempt never auto-decides an ambiguous match.
    if last_attempt:
        outcome = decision.value if decision else "FAILED"
        reason = f"Automated attempts exhausted ({attempt_number}/{max_attempts}); last outcome {outcome}"
        if ambiguous:
            reason += "; field scores are ambiguous"
        return Transition(RequestStatus.MANUAL_REVIEW, reason)

    if decision is None:
        return Transition(RequestStatus.REJECTED)

    if decision == Decision.PENDING_REVIEW:
        reason = "Overall score within the manual review band"
        if ambiguous:
            reason += "; field scores are ambiguous"
        return Transition(RequestStatus.MANUAL_REVIEW, reason)

    return Transition(_DECISION_STATUS[decision])


def check_appeal(
    request_id: str,
    status: str,
    manually_reviewed: bool,
    automated_attempts: int,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> None:
    """Raise unless an appeal may start. Ownership is checked by the caller first."""
    if manually_reviewed:
        raise InvalidTransitionError("A reviewer already decided this request; it cannot be appealed")
    if automated_attempts >= max_attempts:
        raise AppealLimitExceededError(request_id, automated_attempts)
    if status != RequestStatus.REJECTED.value:
        raise InvalidTransitionError(f"Only REJECTED requests can be appealed (status is {status})")


def check_manual_review(status: str, manually_reviewed: bool) -> None:
    if manually_reviewed:
        raise InvalidTransitionError("A reviewer already decided this request")
    if status != RequestStatus.MANUAL_REVIEW.value:
        raise InvalidTransitionError(f"Request is not awaiting manual review (status is {status})")


def is_final(
    status: str,
    manually_reviewed: bool,
    automated_attempts: int,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> bool:
    """True when no further automated or human step can change the request."""
    if manually_reviewed or status == RequestStatus.APPROVED.value:
        return True
    return status == RequestStatus.MANUAL_REVIEW.value and automated_attempts >= max_attempts
