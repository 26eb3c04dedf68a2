"""
Periodic sweep.

Two time-driven transitions that no user action triggers:
- credential mappings past their ``valid_until`` become inactive;
- attempts stuck in PROCESSING (worker died mid-OCR) are failed so the
  request does not hang forever.

Both are idempotent: running the sweep twice with the same ``now`` changes
nothing the second time.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy.exc import OperationalError

from pipelines.verification.policy import AttemptStatus
from storage.repositories.verifications import VerificationRepository

from . import audit
from .logger import get_logger
from .retry import exponential_backoff

logger = get_logger()

TIMEOUT_REASON = "Processing timed out"


def _log_retry(attempt, error, delay):
    logger.warning("Sweep step hit a database error, retrying", attempt=attempt, delay=delay, error=str(error))


@dataclass
class SweepSummary:
    credentials_expired: int = 0
    attempts_timed_out: int = 0
    request_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "credentials_expired": self.credentials_expired,
            "attempts_timed_out": self.attempts_timed_out,
            "request_ids": list(self.request_ids),
        }


@exponential_backoff(max_retries=3, base_delay=0.5, exceptions=(OperationalError,), on_retry=_log_retry)
def expire_credentials(orchestrator, now: datetime) -> int:
    expired = orchestrator.credentials.expire_credentials(now)
    for credential in expired:
        audit.safe_append(
            orchestrator.audit_sink,
            credential.user_id,
            audit.CREDENTIAL_EXPIRED,
            audit.CREDENTIAL,
            credential.id,
            {"institution": credential.institution_name, "valid_until": credential.valid_until.isoformat()},
        )
    return len(expired)


@exponential_backoff(max_retries=3, base_delay=0.5, exceptions=(OperationalError,), on_retry=_log_retry)
def find_stale_attempts(session_factory, cutoff: datetime) -> List[Tuple[str, int]]:
    session = session_factory()
    try:
        repo = VerificationRepository(session)
        rows = repo.attempts_in_status_before(AttemptStatus.PROCESSING.value, cutoff)
        return [(row.request_id, row.attempt_number) for row in rows]
    finally:
        session.close()


def fail_stale_attempts(orchestrator, now: datetime, stale_after: timedelta) -> List[str]:
    """Fail in-flight attempts older than ``stale_after``; returns affected request ids."""
    touched = []
    for request_id, attempt_number in find_stale_attempts(orchestrator.session_factory, now - stale_after):
        status = orchestrator.fail_attempt(request_id, attempt_number, TIMEOUT_REASON, "TIMEOUT")
        if status is not None:
            touched.append(request_id)
    return touched


def run_sweep(orchestrator, now: Optional[datetime] = None, stale_after_minutes: int = 30) -> SweepSummary:
    """
    Run one sweep.

    Args:
        orchestrator: VerificationOrchestrator providing sessions, credentials and audit
        now: Reference time (default: orchestrator clock)
        stale_after_minutes: Age at which a PROCESSING attempt counts as abandoned

    Returns:
        SweepSummary with the number of rows changed
    """
    now = now or orchestrator.clock()
    summary = SweepSummary()
    summary.credentials_expired = expire_credentials(orchestrator, now)
    summary.request_ids = fail_stale_attempts(orchestrator, now, timedelta(minutes=stale_after_minutes))
    summary.attempts_timed_out = len(summary.request_ids)

    logger.info(
        f"Sweep complete: {summary.credentials_expired} credentials expired, "
        f"{summary.attempts_timed_out} attempts timed out",
        now=now,
        stale_after_minutes=stale_after_minutes,
    )
    return summary


def run_sweep_loop(orchestrator, interval: int, stale_after_minutes: int = 30, max_runs: Optional[int] = None) -> int:
    """Run the sweep every ``interval`` seconds. Returns the number of completed runs."""
    runs = 0
    while max_runs is None or runs < max_runs:
        try:
            run_sweep(orchestrator, stale_after_minutes=stale_after_minutes)
        except Exception as e:
            # keep the loop alive; the next run retries
            logger.error("Sweep failed", error=str(e), error_type=type(e).__name__)
        runs += 1
        if max_runs is None or runs < max_runs:
            time.sleep(interval)
    return runs
