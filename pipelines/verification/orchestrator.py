"""
Verification Orchestrator.

Responsibilities:
- Drive the attempt lifecycle: submit -> OCR -> extract -> resolve -> match -> decide.
- Persist requests and attempts with deduplication, appeal limits and locking.
- Trigger side effects on final states (credential, audit, document purge).

Non-Responsibilities:
- No field extraction, resolution or scoring logic.
- No HTTP routing or authentication; callers pass an authenticated user id.

Invariant:
The OCR call never runs inside a database transaction, and a failing side
effect (audit, credential, purge) never undoes a committed state change.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from credverify import audit
from credverify.credentials import SOURCE_MANUAL, SOURCE_OCR, CredentialService
from credverify.database import StoredDocumentRow, VerificationAttemptRow, VerificationRequestRow
from credverify.documents import DocumentStore, content_hash
from credverify.errors import (
    ClaimValidationError,
    ConcurrentModificationError,
    DocumentRejectedError,
    DuplicateSubmissionError,
    RequestNotFoundError,
)
from credverify.logger import get_logger
from credverify.ocr.client import OcrClient
from credverify.ocr.models import OCR_FAILED, OcrResult
from credverify.schema import Claims, validate_claims, validate_document
from pipelines.extraction.field_extractor import FieldExtractor
from pipelines.identity.record import IdentityRecord
from pipelines.matching.results import Decision
from storage.repositories.verifications import VerificationRepository

from .pipeline import DocumentText, PipelineOutcome, run_pipeline
from .policy import (
    DEFAULT_MAX_ATTEMPTS,
    MANUAL_REVIEW_ATTEMPT_NUMBER,
    AttemptStatus,
    RequestStatus,
    check_appeal,
    check_manual_review,
    is_final,
    status_after_attempt,
)

logger = get_logger()

ROLE_PRIMARY = "PRIMARY"
ROLE_SUPPLEMENTARY = "SUPPLEMENTARY"
DEFAULT_CREDENTIAL_VALIDITY = timedelta(days=365)
DEFAULT_MAX_DOCUMENT_BYTES = 10 * 1024 * 1024


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class SubmissionResult:
    request_id: str
    status: str


@dataclass(frozen=True)
class AppealResult:
    request_id: str
    attempt_number: int
    status: str


@dataclass(frozen=True)
class AttemptView:
    attempt_id: str
    attempt_number: int
    status: str
    decision: Optional[str]
    overall_score: Optional[float]
    explanation: Optional[str]
    failure_reason: Optional[str]
    appeal_reason: Optional[str]
    created_at: datetime
    completed_at: Optional[datetime]

    @property
    def is_manual(self) -> bool:
        return self.attempt_number >= MANUAL_REVIEW_ATTEMPT_NUMBER

    @classmethod
    def from_row(cls, row: VerificationAttemptRow) -> "AttemptView":
        results = row.matching_results or {}
        return cls(
            attempt_id=row.id,
            attempt_number=row.attempt_number,
            status=row.status,
            decision=row.decision,
            overall_score=row.overall_score,
            explanation=results.get("explanation") or row.failure_reason,
            failure_reason=row.failure_reason,
            appeal_reason=row.appeal_reason,
            created_at=row.created_at,
            completed_at=row.completed_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "attempt_number": self.attempt_number,
            "status": self.status,
            "decision": self.decision,
            "overall_score": self.overall_score,
            "explanation": self.explanation,
            "failure_reason": self.failure_reason,
            "appeal_reason": self.appeal_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(frozen=True)
class RequestView:
    request_id: str
    user_id: str
    institution_id: Optional[str]
    status: str
    claims: Claims
    escalation_reason: Optional[str]
    manually_reviewed: bool
    reviewed_by: Optional[str]
    review_notes: Optional[str]
    document_purged_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    attempts: List[AttemptView] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: VerificationRequestRow, attempts: List[VerificationAttemptRow]) -> "RequestView":
        return cls(
            request_id=row.id,
            user_id=row.user_id,
            institution_id=row.institution_id,
            status=row.status,
            claims=_claims_of(row),
            escalation_reason=row.escalation_reason,
            manually_reviewed=bool(row.manually_reviewed),
            reviewed_by=row.reviewed_by,
            review_notes=row.review_notes,
            document_purged_at=row.document_purged_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
            attempts=[AttemptView.from_row(a) for a in attempts],
        )

    @property
    def latest_attempt(self) -> Optional[AttemptView]:
        return self.attempts[-1] if self.attempts else None

    @property
    def explanation(self) -> Optional[str]:
        latest = self.latest_attempt
        return latest.explanation if latest else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "user_id": self.user_id,
            "institution_id": self.institution_id,
            "status": self.status,
            "claims": self.claims.to_dict(),
            "escalation_reason": self.escalation_reason,
            "manually_reviewed": self.manually_reviewed,
            "reviewed_by": self.reviewed_by,
            "review_notes": self.review_notes,
            "document_purged_at": self.document_purged_at.isoformat() if self.document_purged_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "explanation": self.explanation,
            "attempts": [a.to_dict() for a in self.attempts],
        }


def _claims_of(row: VerificationRequestRow) -> Claims:
    return Claims(
        name=row.claimed_name,
        institution=row.claimed_institution,
        program=row.claimed_program,
        start_year=row.claimed_start_year,
        end_year=row.claimed_end_year,
    )


def claims_record(row: VerificationRequestRow) -> IdentityRecord:
    """The user's side of the comparison, built from the persisted claims."""
    c = _claims_of(row)
    return IdentityRecord.from_claims(c.name, c.institution, c.program, c.start_year, c.end_year)


def _commit(session) -> None:
    """Commit, turning a lost optimistic-lock or uniqueness race into a typed error."""
    try:
        session.commit()
    except (StaleDataError, IntegrityError) as e:
        session.rollback()
        raise ConcurrentModificationError(f"Request was modified concurrently: {e.__class__.__name__}") from e


class VerificationOrchestrator:
    def __init__(
        self,
        session_factory,
        ocr_client: OcrClient,
        document_store: DocumentStore,
        credentials: CredentialService,
        audit_sink: audit.AuditSink,
        extractor: Optional[FieldExtractor] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        credential_validity: timedelta = DEFAULT_CREDENTIAL_VALIDITY,
        purge_documents: bool = True,
        max_document_bytes: int = DEFAULT_MAX_DOCUMENT_BYTES,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_factory = session_factory
        self.ocr_client = ocr_client
        self.document_store = document_store
        self.credentials = credentials
        self.audit_sink = audit_sink
        self.clock = clock
        self.extractor = extractor or FieldExtractor(clock=clock)
        self.max_attempts = max_attempts
        self.credential_validity = credential_validity
        self.purge_documents = purge_documents
        self.max_document_bytes = max_document_bytes

    @classmethod
    def from_settings(cls, settings, session_factory, ocr_client, document_store, **kwargs) -> "VerificationOrchestrator":
        clock = kwargs.pop("clock", datetime.now)
        return cls(
            session_factory=session_factory,
            ocr_client=ocr_client,
            document_store=document_store,
            credentials=CredentialService(session_factory, clock=clock),
            audit_sink=audit.DatabaseAuditSink(session_factory, clock=clock),
            max_attempts=settings.max_attempts,
            credential_validity=timedelta(days=settings.credential_validity_days),
            purge_documents=settings.purge_documents,
            max_document_bytes=settings.max_document_bytes,
            clock=clock,
            **kwargs,
        )

    # -- public surface ------------------------------------------------------

    def submit(
        self,
        user_id: str,
        claims: Claims,
        document: bytes,
        institution_id: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> SubmissionResult:
        """Validate, deduplicate and persist a new request, then run attempt 1."""
        if not user_id:
            raise ClaimValidationError(["Missing user id"])
        errors = validate_claims(claims, self.clock().year)
        if errors:
            logger.info("Submission rejected: invalid claims", user_id=user_id, errors=errors)
            raise ClaimValidationError(errors)
        doc_errors = validate_document(document, self.max_document_bytes)
        if doc_errors:
            logger.info("Submission rejected: invalid document", user_id=user_id, errors=doc_errors)
            raise DocumentRejectedError("; ".join(doc_errors))

        document_hash = content_hash(bytes(document))
        session = self.session_factory()
        try:
            repo = VerificationRepository(session)
            existing = repo.find_by_user_and_hash(user_id, document_hash)
            if existing is not None:
                logger.info("Duplicate submission", user_id=user_id, existing_request_id=existing.id)
                raise DuplicateSubmissionError(existing.id)

            locator = self.document_store.store(bytes(document))
            now = self.clock()
            request = repo.add_request(
                VerificationRequestRow(
                    id=_new_id(),
                    user_id=user_id,
                    institution_id=institution_id,
                    claimed_name=claims.name.strip(),
                    claimed_institution=claims.institution.strip(),
                    claimed_program=claims.program.strip(),
                    claimed_start_year=claims.start_year,
                    claimed_end_year=claims.end_year,
                    document_hash=document_hash,
                    status=RequestStatus.PENDING.value,
                    manually_reviewed=False,
                    created_at=now,
                    updated_at=now,
                )
            )
            repo.add_document(
                StoredDocumentRow(
                    id=_new_id(),
                    request_id=request.id,
                    locator=locator,
                    content_hash=document_hash,
                    role=ROLE_PRIMARY,
                    filename=filename,
                    created_at=now,
                )
            )
            repo.add_attempt(
                VerificationAttemptRow(
                    id=_new_id(),
                    request_id=request.id,
                    attempt_number=1,
                    status=AttemptStatus.PROCESSING.value,
                    created_at=now,
                )
            )
            try:
                session.commit()
            except IntegrityError:
                # lost the race against an identical concurrent upload
                session.rollback()
                self._discard_document(locator)
                winner = repo.find_by_user_and_hash(user_id, document_hash)
                raise DuplicateSubmissionError(winner.id if winner else None)
            request_id = request.id
        finally:
            session.close()

        logger.info("Verification submitted", request_id=request_id, user_id=user_id)
        self._audit(
            user_id,
            audit.VERIFICATION_SUBMITTED,
            audit.REQUEST,
            request_id,
            {"document_hash": document_hash, "claims": claims.to_dict()},
        )
        logger.record_attempt_started()
        status = self._process(request_id, 1)
        return SubmissionResult(request_id=request_id, status=status)

    def appeal(
        self,
        request_id: str,
        user_id: str,
        reason: str,
        document: Optional[bytes] = None,
        filename: Optional[str] = None,
    ) -> AppealResult:
        """Start the next automated attempt on a REJECTED request."""
        if not reason or not reason.strip():
            raise ClaimValidationError(["Appeal reason is required"])
        if document is not None:
            doc_errors = validate_document(document, self.max_document_bytes)
            if doc_errors:
                raise DocumentRejectedError("; ".join(doc_errors))

        locator = None
        session = self.session_factory()
        try:
            repo = VerificationRepository(session)
            request = repo.get_request(request_id, lock=True)
            if request is None or request.user_id != user_id:
                raise RequestNotFoundError(request_id)

            automated = repo.max_attempt_number(request_id, below=MANUAL_REVIEW_ATTEMPT_NUMBER)
            check_appeal(request_id, request.status, request.manually_reviewed, automated, self.max_attempts)

            now = self.clock()
            attempt_number = automated + 1
            if document is not None:
                locator = self.document_store.store(bytes(document))
                repo.add_document(
                    StoredDocumentRow(
                        id=_new_id(),
                        request_id=request_id,
                        locator=locator,
                        content_hash=content_hash(bytes(document)),
                        role=ROLE_SUPPLEMENTARY,
                        filename=filename,
                        created_at=now,
                    )
                )
            repo.add_attempt(
                VerificationAttemptRow(
                    id=_new_id(),
                    request_id=request_id,
                    attempt_number=attempt_number,
                    status=AttemptStatus.PROCESSING.value,
                    appeal_reason=reason.strip(),
                    created_at=now,
                )
            )
            request.status = RequestStatus.PROCESSING.value
            request.escalation_reason = None
            request.updated_at = now
            try:
                _commit(session)
            except ConcurrentModificationError:
                if locator:
                    self._discard_document(locator)
                raise
        finally:
            session.close()

        logger.info("Appeal accepted", request_id=request_id, attempt_number=attempt_number)
        self._audit(
            user_id,
            audit.APPEAL_SUBMITTED,
            audit.REQUEST,
            request_id,
            {
                "attempt_number": attempt_number,
                "reason": reason.strip(),
                "supplementary_document": document is not None,
            },
        )
        logger.record_attempt_started()
        status = self._process(request_id, attempt_number)
        return AppealResult(request_id=request_id, attempt_number=attempt_number, status=status)

    def manual_review(
        self,
        request_id: str,
        decision: str,
        notes: str = "",
        reviewer_id: Optional[str] = None,
    ) -> str:
        """Record a reviewer's final decision (privileged)."""
        try:
            decision = Decision(decision)
        except ValueError:
            raise ClaimValidationError([f"Unknown decision: {decision}"])
        if decision not in (Decision.APPROVED, Decision.REJECTED):
            raise ClaimValidationError(["Manual decision must be APPROVED or REJECTED"])

        session = self.session_factory()
        try:
            repo = VerificationRepository(session)
            request = repo.get_request(request_id, lock=True)
            if request is None:
                raise RequestNotFoundError(request_id)
            check_manual_review(request.status, request.manually_reviewed)

            now = self.clock()
            reviewer = reviewer_id or "reviewer"
            explanation = f"Manual review by {reviewer}: {decision.value}"
            if notes:
                explanation += f". Notes: {notes}"
            repo.add_attempt(
                VerificationAttemptRow(
                    id=_new_id(),
                    request_id=request_id,
                    attempt_number=MANUAL_REVIEW_ATTEMPT_NUMBER,
                    status=AttemptStatus.COMPLETED.value,
                    decision=decision.value,
                    matching_results={
                        "manual": True,
                        "reviewer_id": reviewer_id,
                        "notes": notes,
                        "explanation": explanation,
                    },
                    created_at=now,
                    completed_at=now,
                )
            )
            previous = request.status
            request.status = decision.value
            request.manually_reviewed = True
            request.reviewed_by = reviewer_id
            request.review_notes = notes
            request.updated_at = now
            user_id = request.user_id
            institution = request.claimed_institution
            _commit(session)
        finally:
            session.close()

        logger.info("Manual review recorded", request_id=request_id, decision=decision.value, reviewer_id=reviewer_id)
        self._audit(
            reviewer_id,
            audit.MANUAL_REVIEW_COMPLETED,
            audit.REQUEST,
            request_id,
            {"decision": decision.value, "notes": notes, "from_status": previous, "user_id": user_id},
        )
        if decision == Decision.APPROVED:
            self._record_credential(user_id, institution, request_id, SOURCE_MANUAL)
        self._purge(request_id, user_id)
        return decision.value

    def get_status(self, request_id: str, user_id: str) -> RequestView:
        """The caller's view of one request; someone else's request looks absent."""
        session = self.session_factory()
        try:
            repo = VerificationRepository(session)
            request = repo.get_request(request_id)
            if request is None or request.user_id != user_id:
                raise RequestNotFoundError(request_id)
            return RequestView.from_row(request, repo.attempts_for(request_id))
        finally:
            session.close()

    def list_requests(self, user_id: str) -> List[RequestView]:
        session = self.session_factory()
        try:
            repo = VerificationRepository(session)
            return [RequestView.from_row(r, repo.attempts_for(r.id)) for r in repo.list_for_user(user_id)]
        finally:
            session.close()

    def review_queue(self) -> List[RequestView]:
        """Requests waiting for a human decision, oldest first (privileged)."""
        session = self.session_factory()
        try:
            repo = VerificationRepository(session)
            rows = repo.list_by_status(RequestStatus.MANUAL_REVIEW.value, manually_reviewed=False)
            return [RequestView.from_row(r, repo.attempts_for(r.id)) for r in rows]
        finally:
            session.close()

    def fail_attempt(self, request_id: str, attempt_number: int, reason: str, error_type: str) -> Optional[str]:
        """Fail an in-flight attempt. Returns the new request status, or None if it already ended."""
        now = self.clock()
        transition = status_after_attempt(None, attempt_number, self.max_attempts)
        session = self.session_factory()
        try:
            repo = VerificationRepository(session)
            request = repo.get_request(request_id, lock=True)
            attempt = repo.get_attempt_by_number(request_id, attempt_number)
            if request is None or attempt is None or attempt.status != AttemptStatus.PROCESSING.value:
                return None
            attempt.status = AttemptStatus.FAILED.value
            attempt.failure_reason = reason
            attempt.completed_at = now
            request.status = transition.status.value
            request.escalation_reason = transition.escalation_reason
            request.updated_at = now
            user_id = request.user_id
            final = is_final(request.status, request.manually_reviewed, attempt_number, self.max_attempts)
            attempt_id = attempt.id
            _commit(session)
        finally:
            session.close()

        logger.record_attempt_failed(error_type)
        logger.warning(
            "Attempt failed",
            request_id=request_id,
            attempt_number=attempt_number,
            reason=reason,
            error_type=error_type,
            status=transition.status.value,
        )
        self._audit(
            user_id,
            audit.ATTEMPT_FAILED,
            audit.ATTEMPT,
            attempt_id,
            {"request_id": request_id, "attempt_number": attempt_number, "reason": reason, "error_type": error_type},
        )
        self._audit_status(user_id, request_id, transition.status.value, transition.escalation_reason)
        if final:
            self._purge(request_id, user_id)
        return transition.status.value

    # -- attempt processing --------------------------------------------------

    def _process(self, request_id: str, attempt_number: int) -> str:
        session = self.session_factory()
        try:
            repo = VerificationRepository(session)
            request = repo.get_request(request_id, lock=True)
            request.status = RequestStatus.PROCESSING.value
            request.updated_at = self.clock()
            user_id = request.user_id
            claims = claims_record(request)
            documents = [
                (d.locator, f"{d.role.lower()}:{d.filename or d.id}")
                for d in repo.documents_for(request_id, include_purged=False)
            ]
            _commit(session)
        finally:
            session.close()
        self._audit(user_id, audit.VERIFICATION_PROCESSING, audit.REQUEST, request_id, {"attempt_number": attempt_number})

        if not documents:
            return self.fail_attempt(request_id, attempt_number, "No stored document available", "DOCUMENT_UNAVAILABLE")

        texts, failure = self._ocr_documents(documents)
        if failure is not None:
            reason, error_type = failure
            return self.fail_attempt(request_id, attempt_number, reason, error_type)

        try:
            outcome = run_pipeline(claims, texts, self.extractor)
        except Exception as e:
            logger.error(
                "Verification pipeline raised",
                request_id=request_id,
                attempt_number=attempt_number,
                error=str(e),
                error_type=type(e).__name__,
            )
            return self.fail_attempt(request_id, attempt_number, f"Processing error: {e}", "PROCESSING_ERROR")

        return self._complete_attempt(request_id, attempt_number, outcome)

    def _ocr_documents(self, documents: List[Tuple[str, str]]) -> Tuple[List[DocumentText], Optional[Tuple[str, str]]]:
        texts: List[DocumentText] = []
        for locator, source in documents:
            try:
                data = self.document_store.load(locator)
            except (OSError, ValueError) as e:
                return texts, (f"Document unavailable: {e}", "DOCUMENT_UNAVAILABLE")

            try:
                result = self.ocr_client.extract_text(data)
            except Exception as e:
                # the contract says clients return failures; guard against ones that raise
                result = OcrResult.failed(f"OCR client error: {e}", OCR_FAILED)
            if not result.success:
                return texts, (f"OCR failed: {result.error}", result.error_code or OCR_FAILED)
            texts.append(DocumentText(source, result.raw_text or "", list(result.layout_blocks)))
        return texts, None

    def _complete_attempt(self, request_id: str, attempt_number: int, outcome: PipelineOutcome) -> str:
        match_result = outcome.match_result
        decision = match_result.decision
        transition = status_after_attempt(
            decision, attempt_number, self.max_attempts, match_result.field_scores()
        )
        now = self.clock()

        session = self.session_factory()
        try:
            repo = VerificationRepository(session)
            request = repo.get_request(request_id, lock=True)
            attempt = repo.get_attempt_by_number(request_id, attempt_number)
            if attempt.status != AttemptStatus.PROCESSING.value:
                # the sweep timed this attempt out while OCR was running
                logger.warning("Attempt already closed, dropping result", request_id=request_id, attempt_number=attempt_number)
                return request.status
            attempt.status = AttemptStatus.COMPLETED.value
            attempt.ocr_text = outcome.ocr_text
            attempt.extracted_data = outcome.extracted_data()
            attempt.matching_results = match_result.to_dict()
            attempt.decision = decision.value
            attempt.overall_score = match_result.overall_score
            attempt.completed_at = now
            request.status = transition.status.value
            request.escalation_reason = transition.escalation_reason
            request.updated_at = now
            user_id = request.user_id
            institution = request.claimed_institution
            attempt_id = attempt.id
            final = is_final(request.status, request.manually_reviewed, attempt_number, self.max_attempts)
            _commit(session)
        finally:
            session.close()

        logger.record_attempt_completed(decision.value)
        logger.info(
            "Attempt completed",
            request_id=request_id,
            attempt_number=attempt_number,
            score=round(match_result.overall_score, 1),
            decision=decision.value,
            status=transition.status.value,
        )
        self._audit(
            user_id,
            audit.ATTEMPT_COMPLETED,
            audit.ATTEMPT,
            attempt_id,
            {
                "request_id": request_id,
                "attempt_number": attempt_number,
                "decision": decision.value,
                "overall_score": match_result.overall_score,
                "explanation": match_result.explanation,
            },
        )
        self._audit_status(user_id, request_id, transition.status.value, transition.escalation_reason)
        if transition.status == RequestStatus.APPROVED:
            self._record_credential(user_id, institution, request_id, SOURCE_OCR)
        if final:
            self._purge(request_id, user_id)
        return transition.status.value

    # -- side effects --------------------------------------------------------

    def _audit(self, user_id, action, entity_type, entity_id, metadata=None) -> None:
        audit.safe_append(self.audit_sink, user_id, action, entity_type, entity_id, metadata)

    def _audit_status(self, user_id, request_id, status, escalation_reason=None) -> None:
        metadata = {"status": status}
        if escalation_reason:
            metadata["escalation_reason"] = escalation_reason
        self._audit(user_id, audit.STATUS_CHANGED, audit.REQUEST, request_id, metadata)

    def _record_credential(self, user_id: str, institution: str, request_id: str, source: str) -> None:
        now = self.clock()
        try:
            credential_id = self.credentials.record_credential(
                user_id,
                institution,
                valid_from=now,
                valid_until=now + self.credential_validity,
                source=source,
                request_id=request_id,
            )
        except Exception as e:
            logger.error(
                "Credential mapping failed; verification result stands",
                request_id=request_id,
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            logger.record_side_effect_failure("credential")
            return
        self._audit(
            user_id,
            audit.CREDENTIAL_RECORDED,
            audit.CREDENTIAL,
            credential_id,
            {"request_id": request_id, "institution": institution, "source": source},
        )

    def _discard_document(self, locator: str) -> None:
        try:
            self.document_store.delete(locator)
        except Exception as e:
            logger.warning("Could not discard stored document", locator=locator, error=str(e))
            logger.record_side_effect_failure("purge")

    def _purge(self, request_id: str, user_id: str) -> None:
        """Delete stored documents of a final request. Failures are logged only."""
        if not self.purge_documents:
            return
        try:
            purged = self._purge_documents(request_id)
        except Exception as e:
            logger.error("Document purge failed", request_id=request_id, error=str(e), error_type=type(e).__name__)
            logger.record_side_effect_failure("purge")
            return
        if purged:
            self._audit(user_id, audit.DOCUMENT_PURGED, audit.REQUEST, request_id, {"documents": purged})

    def _purge_documents(self, request_id: str) -> int:
        now = self.clock()
        purged = 0
        session = self.session_factory()
        try:
            repo = VerificationRepository(session)
            request = repo.get_request(request_id, lock=True)
            pending = repo.documents_for(request_id, include_purged=False)
            for doc in pending:
                try:
                    self.document_store.delete(doc.locator)
                except Exception as e:
                    logger.warning("Could not delete document", request_id=request_id, locator=doc.locator, error=str(e))
                    logger.record_side_effect_failure("purge")
                    continue
                doc.purged_at = now
                purged += 1
            if pending and purged == len(pending):
                request.document_purged_at = now
            _commit(session)
        finally:
            session.close()
        if purged:
            logger.info("Documents purged", request_id=request_id, count=purged)
        return purged
