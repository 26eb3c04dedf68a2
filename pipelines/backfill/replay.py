"""
Attempt Replay.

Responsibilities:
- Recompute extract -> resolve -> match for a persisted attempt from the OCR
  output stored with it.
- Report whether the recomputed decision and score equal the persisted ones.

Non-Responsibilities:
- No OCR calls.
- No writes; replay never changes a request or an attempt.

Invariant:
Replaying a COMPLETED attempt with an unchanged engine reproduces its
decision and overall score exactly.
"""

from dataclasses import dataclass
from typing import List, Optional

from credverify.errors import RequestNotFoundError
from credverify.logger import get_logger
from pipelines.extraction.field_extractor import FieldExtractor
from pipelines.verification.orchestrator import claims_record
from pipelines.verification.pipeline import DocumentText, documents_from_extracted_data, run_pipeline
from pipelines.verification.policy import AttemptStatus
from storage.repositories.verifications import VerificationRepository

logger = get_logger()

SCORE_TOLERANCE = 1e-9


@dataclass(frozen=True)
class ReplayReport:
    attempt_id: str
    request_id: str
    persisted_decision: Optional[str]
    persisted_score: Optional[float]
    replayed_decision: str
    replayed_score: float

    @property
    def matches(self) -> bool:
        if self.persisted_decision != self.replayed_decision:
            return False
        if self.persisted_score is None:
            return False
        return abs(self.persisted_score - self.replayed_score) <= SCORE_TOLERANCE

    def to_dict(self) -> dict:
        return {
            "attempt_id": self.attempt_id,
            "request_id": self.request_id,
            "persisted_decision": self.persisted_decision,
            "persisted_score": self.persisted_score,
            "replayed_decision": self.replayed_decision,
            "replayed_score": self.replayed_score,
            "matches": self.matches,
        }


def _documents(attempt) -> List[DocumentText]:
    docs = documents_from_extracted_data(attempt.extracted_data)
    if docs:
        return docs
    # older rows may only carry the flat OCR text
    return [DocumentText("replay", attempt.ocr_text or "")]


def replay_attempt(session_factory, attempt_id: str, extractor: Optional[FieldExtractor] = None) -> ReplayReport:
    """
    Rerun the pure pipeline for one attempt.

    Args:
        session_factory: SQLAlchemy sessionmaker
        attempt_id: Attempt to replay
        extractor: FieldExtractor to use (default: one pinned to the attempt's creation time)

    Returns:
        ReplayReport comparing persisted and recomputed outcomes

    Raises:
        RequestNotFoundError: unknown attempt
        ValueError: the attempt never completed, so there is nothing to compare
    """
    session = session_factory()
    try:
        repo = VerificationRepository(session)
        attempt = repo.get_attempt(attempt_id)
        if attempt is None:
            raise RequestNotFoundError(attempt_id)
        if attempt.status != AttemptStatus.COMPLETED.value or attempt.overall_score is None:
            raise ValueError(f"Attempt {attempt_id} has no automated result to replay (status {attempt.status})")
        request = repo.get_request(attempt.request_id)
        claims = claims_record(request)
        documents = _documents(attempt)
        created_at = attempt.created_at
        persisted_decision = attempt.decision
        persisted_score = attempt.overall_score
        request_id = attempt.request_id
    finally:
        session.close()

    extractor = extractor or FieldExtractor(clock=lambda: created_at)
    outcome = run_pipeline(claims, documents, extractor)
    report = ReplayReport(
        attempt_id=attempt_id,
        request_id=request_id,
        persisted_decision=persisted_decision,
        persisted_score=persisted_score,
        replayed_decision=outcome.match_result.decision.value,
        replayed_score=outcome.match_result.overall_score,
    )

    if report.matches:
        logger.info("Replay matches persisted result", attempt_id=attempt_id, decision=report.replayed_decision)
    else:
        logger.warning("Replay diverges from persisted result", **report.to_dict())
    return report
