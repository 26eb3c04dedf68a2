"""
Persisted-state integrity check.

Scans requests and attempts and reports rows that break the lifecycle rules:
attempt numbering, the automated attempt limit, request status agreeing with
its latest attempt, and one request per (user, document hash).
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Tuple

from pipelines.matching.results import Decision
from pipelines.verification.policy import (
    DEFAULT_MAX_ATTEMPTS,
    MANUAL_REVIEW_ATTEMPT_NUMBER,
    AttemptStatus,
    RequestStatus,
    status_after_attempt,
)
from storage.repositories.verifications import VerificationRepository

from .logger import get_logger

logger = get_logger()


@dataclass(frozen=True)
class Violation:
    request_id: str
    rule: str
    message: str

    def to_dict(self) -> dict:
        return {"request_id": self.request_id, "rule": self.rule, "message": self.message}


def _expected_status(attempt, max_attempts: int) -> str:
    if attempt.status == AttemptStatus.PROCESSING.value:
        return RequestStatus.PROCESSING.value
    decision = Decision(attempt.decision) if attempt.status == AttemptStatus.COMPLETED.value else None
    field_scores = {
        result["field"]: result["score"] for result in (attempt.matching_results or {}).get("field_results", [])
    }
    return status_after_attempt(decision, attempt.attempt_number, max_attempts, field_scores).status.value


def _check_request(request, attempts, max_attempts: int) -> List[Violation]:
    violations = []

    def flag(rule, message):
        violations.append(Violation(request.id, rule, message))

    automated = [a for a in attempts if a.attempt_number < MANUAL_REVIEW_ATTEMPT_NUMBER]
    manual = [a for a in attempts if a.attempt_number >= MANUAL_REVIEW_ATTEMPT_NUMBER]

    numbers = [a.attempt_number for a in automated]
    if numbers != list(range(1, len(numbers) + 1)):
        flag("attempt_numbering", f"Automated attempt numbers are not 1..n: {numbers}")

    by_time = [a.attempt_number for a in sorted(attempts, key=lambda a: (a.created_at, a.attempt_number))]
    if any(later <= earlier for earlier, later in zip(by_time, by_time[1:])):
        flag("attempt_order", f"Attempt numbers do not increase with creation time: {by_time}")

    if len(automated) > max_attempts:
        flag("attempt_limit", f"{len(automated)} automated attempts exceed the limit of {max_attempts}")

    for attempt in automated:
        if attempt.status == AttemptStatus.COMPLETED.value and not attempt.matching_results:
            flag("missing_results", f"Attempt {attempt.attempt_number} is COMPLETED without matching results")
        if attempt.status == AttemptStatus.FAILED.value and attempt.matching_results:
            flag("failed_with_results", f"Attempt {attempt.attempt_number} FAILED but carries matching results")

    if manual:
        if not request.manually_reviewed:
            flag("manual_flag", "Manual review attempt exists but request is not flagged as reviewed")
        if request.status != manual[-1].decision:
            flag("status_mismatch", f"Status {request.status} differs from manual decision {manual[-1].decision}")
        return violations

    if request.manually_reviewed:
        flag("manual_flag", "Request flagged as reviewed without a manual review attempt")

    if not automated:
        if request.status != RequestStatus.PENDING.value:
            flag("status_mismatch", f"Status {request.status} but no attempt was ever started")
        return violations

    expected = _expected_status(automated[-1], max_attempts)
    if request.status != expected:
        flag(
            "status_mismatch",
            f"Status {request.status} but attempt {automated[-1].attempt_number} "
            f"({automated[-1].status}) implies {expected}",
        )
    return violations


def check_invariants(session, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> List[Violation]:
    """Return every violation found; an empty list means the store is consistent."""
    repo = VerificationRepository(session)
    requests = repo.all_requests()
    violations: List[Violation] = []

    seen: Dict[Tuple[str, str], List[str]] = defaultdict(list)
    for request in requests:
        seen[(request.user_id, request.document_hash)].append(request.id)
        violations.extend(_check_request(request, repo.attempts_for(request.id), max_attempts))

    for (user_id, _), ids in seen.items():
        if len(ids) > 1:
            for request_id in ids:
                violations.append(
                    Violation(request_id, "duplicate_hash", f"User {user_id} has {len(ids)} requests for one document")
                )

    logger.info("Integrity check complete", requests=len(requests), violations=len(violations))
    return violations
