"""
Tests for the verification orchestrator: lifecycle, appeals, manual review and side effects.
"""

import pytest

from credverify import audit as audit_module
from credverify.credentials import CredentialService
from credverify.database import StoredDocumentRow, VerificationRequestRow
from credverify.documents import FileDocumentStore
from credverify.errors import (
    AppealLimitExceededError,
    ClaimValidationError,
    ConcurrentModificationError,
    DocumentRejectedError,
    DuplicateSubmissionError,
    InvalidTransitionError,
    RequestNotFoundError,
)
from credverify.integrity import check_invariants
from credverify.ocr.models import OcrResult
from credverify.schema import Claims
from storage.repositories.verifications import VerificationRepository

from conftest import (
    IIT_CERTIFICATE,
    PRIMARY_PDF,
    SUPPLEMENT_PDF,
    UNRELATED_CERTIFICATE,
    FailingAuditSink,
    FailingCredentialService,
    FakeOcrClient,
)


def _attempts(session_factory, request_id):
    session = session_factory()
    try:
        return VerificationRepository(session).attempts_for(request_id)
    finally:
        session.close()


def _documents(session_factory, request_id):
    session = session_factory()
    try:
        return VerificationRepository(session).documents_for(request_id)
    finally:
        session.close()


def _request_count(session_factory):
    session = session_factory()
    try:
        return session.query(VerificationRequestRow).count()
    finally:
        session.close()


SHIFTED_YEARS_CERTIFICATE = IIT_CERTIFICATE.replace("Session: 2016-2020", "Session: 2010-2012")


class SequencedOcrClient(FakeOcrClient):
    """Answers each call with the next scripted text, whatever the document."""

    def __init__(self, *texts):
        super().__init__()
        self.texts = list(texts)

    def extract_text(self, document: bytes) -> OcrResult:
        self.calls.append(document)
        return OcrResult.ok(self.texts.pop(0))


class InterleavingStore(FileDocumentStore):
    """Runs ``hook`` once inside the first store() call.

    The orchestrator stores uploads after reading the request and before
    committing, so the hook acts as a competing writer in that window.
    """

    def __init__(self, root, hook):
        super().__init__(root)
        self.hook = hook

    def store(self, document: bytes) -> str:
        hook, self.hook = self.hook, None
        if hook is not None:
            hook()
        return super().store(document)


class TestSubmit:
    """Submission, deduplication and the first automated attempt."""

    def test_matching_document_is_approved(self, make_orchestrator, claims, session_factory):
        """A certificate that agrees with the claims approves the request."""
        orch = make_orchestrator()
        result = orch.submit("user-1", claims, PRIMARY_PDF)

        assert result.status == "APPROVED"
        attempts = _attempts(session_factory, result.request_id)
        assert len(attempts) == 1
        attempt = attempts[0]
        assert attempt.status == "COMPLETED"
        assert attempt.decision == "APPROVED"
        assert attempt.overall_score >= 90
        assert attempt.ocr_text == IIT_CERTIFICATE
        assert attempt.matching_results["decision"] == "APPROVED"

    def test_extracted_data_keeps_documents_and_classification(self, make_orchestrator, claims, session_factory):
        """Persisted extraction carries the OCR document and its type."""
        orch = make_orchestrator()
        result = orch.submit("user-1", claims, PRIMARY_PDF, filename="degree.pdf")

        data = _attempts(session_factory, result.request_id)[0].extracted_data
        assert data["resolved"]["full_name"]["value"] == "Ananya Rao"
        assert data["resolved"]["roll_number"]["value"] == "2016CS10234"
        assert len(data["documents"]) == 1
        assert data["documents"][0]["source"] == "primary:degree.pdf"
        assert data["documents"][0]["document_type"] == "DEGREE_CERTIFICATE"

    def test_explanation_is_exposed(self, make_orchestrator, claims):
        """The caller sees a readable explanation of the decision."""
        orch = make_orchestrator()
        result = orch.submit("user-1", claims, PRIMARY_PDF)

        view = orch.get_status(result.request_id, "user-1")
        assert view.explanation.startswith("Overall verification score:")
        assert "Decision: APPROVED" in view.explanation

    def test_mismatching_document_is_rejected(self, make_orchestrator, claims):
        """A certificate for someone else is rejected but stays appealable."""
        orch = make_orchestrator(FakeOcrClient(UNRELATED_CERTIFICATE))
        result = orch.submit("user-1", claims, PRIMARY_PDF)

        assert result.status == "REJECTED"
        view = orch.get_status(result.request_id, "user-1")
        assert view.document_purged_at is None

    def test_duplicate_document_rejected(self, make_orchestrator, claims, session_factory):
        """Same user, same document bytes: second submission fails without a new row."""
        orch = make_orchestrator()
        first = orch.submit("user-1", claims, PRIMARY_PDF)

        with pytest.raises(DuplicateSubmissionError) as exc:
            orch.submit("user-1", claims, PRIMARY_PDF)

        assert exc.value.existing_request_id == first.request_id
        assert exc.value.code == "VERIFICATION_ALREADY_EXISTS"
        assert _request_count(session_factory) == 1

    def test_same_document_other_user_allowed(self, make_orchestrator, claims, session_factory):
        """Deduplication is per user."""
        orch = make_orchestrator()
        orch.submit("user-1", claims, PRIMARY_PDF)
        orch.submit("user-2", claims, PRIMARY_PDF)

        assert _request_count(session_factory) == 2

    def test_invalid_claims_raise_before_anything_is_stored(self, make_orchestrator, session_factory):
        """Validation errors leave no request and make no OCR call."""
        ocr = FakeOcrClient(IIT_CERTIFICATE)
        orch = make_orchestrator(ocr)
        bad = Claims(name="", institution="IIT Delhi", program="B.Tech", start_year=1900, end_year=2020)

        with pytest.raises(ClaimValidationError) as exc:
            orch.submit("user-1", bad, PRIMARY_PDF)

        assert len(exc.value.errors) == 2
        assert _request_count(session_factory) == 0
        assert ocr.calls == []

    def test_unsupported_document_rejected(self, make_orchestrator, claims):
        """Plain text is not an accepted upload."""
        orch = make_orchestrator()

        with pytest.raises(DocumentRejectedError):
            orch.submit("user-1", claims, b"just some text")

    def test_oversize_document_rejected(self, make_orchestrator, claims):
        """Documents above the configured limit are refused."""
        orch = make_orchestrator(max_document_bytes=16)

        with pytest.raises(DocumentRejectedError):
            orch.submit("user-1", claims, PRIMARY_PDF)


class TestOcrFailure:
    """OCR failures become FAILED attempts, never exceptions."""

    def test_failed_ocr_rejects_without_results(self, make_orchestrator, claims, session_factory):
        """success:false from OCR -> attempt FAILED, request REJECTED, no matching results."""
        orch = make_orchestrator(FakeOcrClient(OcrResult.failed("Service returned success:false")))
        result = orch.submit("user-1", claims, PRIMARY_PDF)

        assert result.status == "REJECTED"
        attempt = _attempts(session_factory, result.request_id)[0]
        assert attempt.status == "FAILED"
        assert attempt.matching_results is None
        assert attempt.decision is None
        assert attempt.failure_reason.startswith("OCR failed:")

    def test_raising_ocr_client_is_contained(self, make_orchestrator, claims, session_factory):
        """An OCR client that raises is treated like a failed OCR call."""

        class ExplodingOcr:
            def extract_text(self, document):
                raise ConnectionError("socket closed")

        orch = make_orchestrator(ExplodingOcr())
        result = orch.submit("user-1", claims, PRIMARY_PDF)

        assert result.status == "REJECTED"
        assert "socket closed" in _attempts(session_factory, result.request_id)[0].failure_reason

    def test_missing_stored_document_fails_attempt(self, make_orchestrator, claims, document_store, session_factory):
        """A document lost from the store fails the attempt instead of crashing."""

        class ForgetfulStore(type(document_store)):
            def load(self, locator):
                raise FileNotFoundError(locator)

        orch = make_orchestrator(document_store=ForgetfulStore(document_store.root))
        result = orch.submit("user-1", claims, PRIMARY_PDF)

        assert result.status == "REJECTED"
        assert _attempts(session_factory, result.request_id)[0].failure_reason.startswith("Document unavailable")


class TestAppeal:
    """Appeals start the next automated attempt."""

    def test_appeal_limit(self, make_orchestrator, claims, session_factory):
        """Three failed attempts escalate to manual review and refuse a fourth."""
        ocr = FakeOcrClient(OcrResult.failed("unreadable scan"))
        orch = make_orchestrator(ocr)
        request_id = orch.submit("user-1", claims, PRIMARY_PDF).request_id

        second = orch.appeal(request_id, "user-1", "Scan was blurry")
        assert (second.attempt_number, second.status) == (2, "REJECTED")

        third = orch.appeal(request_id, "user-1", "Rescanned")
        assert (third.attempt_number, third.status) == (3, "MANUAL_REVIEW")

        with pytest.raises(AppealLimitExceededError):
            orch.appeal(request_id, "user-1", "Please try again")

        assert len(_attempts(session_factory, request_id)) == 3
        assert len(ocr.calls) == 3
        view = orch.get_status(request_id, "user-1")
        assert "exhausted" in view.escalation_reason
        assert [v.request_id for v in orch.review_queue()] == [request_id]

    def test_ambiguous_approval_on_last_attempt_escalates(self, make_orchestrator, session_factory):
        """A lopsided approval on attempt 3 goes to a reviewer and issues no credential."""
        ocr = SequencedOcrClient(UNRELATED_CERTIFICATE, UNRELATED_CERTIFICATE, SHIFTED_YEARS_CERTIFICATE)
        orch = make_orchestrator(ocr)
        claims = Claims(
            name="Ananya Rao",
            institution="Indian Institute of Technology Delhi",
            program="Bachelor of Technology in Computer Science and Engineering",
            start_year=2016,
            end_year=2020,
        )
        request_id = orch.submit("user-1", claims, PRIMARY_PDF).request_id
        assert orch.appeal(request_id, "user-1", "Wrong scan").status == "REJECTED"

        third = orch.appeal(request_id, "user-1", "Correct certificate attached")

        assert (third.attempt_number, third.status) == (3, "MANUAL_REVIEW")
        attempt = _attempts(session_factory, request_id)[2]
        assert attempt.decision == "APPROVED"
        assert attempt.overall_score == pytest.approx(85.0)
        view = orch.get_status(request_id, "user-1")
        assert view.escalation_reason.endswith("last outcome APPROVED; field scores are ambiguous")
        assert orch.credentials.active_credentials("user-1") == []
        assert [v.request_id for v in orch.review_queue()] == [request_id]

        session = session_factory()
        try:
            assert check_invariants(session) == []
        finally:
            session.close()

    def test_appeal_with_supplementary_document(self, make_orchestrator, claims, session_factory):
        """Supplementary documents are OCRed alongside the primary one."""
        ocr = FakeOcrClient(by_document={PRIMARY_PDF: UNRELATED_CERTIFICATE, SUPPLEMENT_PDF: IIT_CERTIFICATE})
        orch = make_orchestrator(ocr)
        request_id = orch.submit("user-1", claims, PRIMARY_PDF).request_id

        result = orch.appeal(request_id, "user-1", "Adding my transcript", document=SUPPLEMENT_PDF)

        assert result.attempt_number == 2
        assert ocr.calls == [PRIMARY_PDF, PRIMARY_PDF, SUPPLEMENT_PDF]
        attempt = _attempts(session_factory, request_id)[1]
        assert attempt.appeal_reason == "Adding my transcript"
        sources = [d["source"] for d in attempt.extracted_data["documents"]]
        assert sources[0].startswith("primary:")
        assert sources[1].startswith("supplementary:")
        assert [d.role for d in _documents(session_factory, request_id)] == ["PRIMARY", "SUPPLEMENTARY"]

    def test_appeal_requires_reason(self, make_orchestrator, claims):
        """An empty reason is invalid input."""
        orch = make_orchestrator(FakeOcrClient(UNRELATED_CERTIFICATE))
        request_id = orch.submit("user-1", claims, PRIMARY_PDF).request_id

        with pytest.raises(ClaimValidationError):
            orch.appeal(request_id, "user-1", "   ")

    def test_appeal_by_other_user_is_not_found(self, make_orchestrator, claims):
        """Another user's request looks absent."""
        orch = make_orchestrator(FakeOcrClient(UNRELATED_CERTIFICATE))
        request_id = orch.submit("user-1", claims, PRIMARY_PDF).request_id

        with pytest.raises(RequestNotFoundError):
            orch.appeal(request_id, "user-2", "mine now")

    def test_approved_request_cannot_be_appealed(self, make_orchestrator, claims):
        """APPROVED is final."""
        orch = make_orchestrator()
        request_id = orch.submit("user-1", claims, PRIMARY_PDF).request_id

        with pytest.raises(InvalidTransitionError):
            orch.appeal(request_id, "user-1", "why not")


class TestManualReview:
    """Escalation to and decisions by a human reviewer."""

    @pytest.fixture
    def escalated(self, make_orchestrator):
        """A request whose score lands in the review band."""
        orch = make_orchestrator()
        claims = Claims(
            name="Ananya Rao",
            institution="Stanford University",
            program="B.Tech Computer Science",
            start_year=2016,
            end_year=2020,
        )
        result = orch.submit("user-1", claims, PRIMARY_PDF)
        return orch, result

    def test_review_band_escalates(self, escalated, session_factory):
        """PENDING_REVIEW maps onto MANUAL_REVIEW with a reason."""
        orch, result = escalated

        assert result.status == "MANUAL_REVIEW"
        attempt = _attempts(session_factory, result.request_id)[0]
        assert attempt.decision == "PENDING_REVIEW"
        assert 60 <= attempt.overall_score < 80
        view = orch.get_status(result.request_id, "user-1")
        assert "manual review band" in view.escalation_reason
        assert view.document_purged_at is None

    def test_pending_review_cannot_be_appealed(self, escalated):
        """Only REJECTED requests accept appeals."""
        orch, result = escalated

        with pytest.raises(InvalidTransitionError):
            orch.appeal(result.request_id, "user-1", "approve me")

    def test_manual_approval_is_final(self, escalated, session_factory):
        """A reviewer's decision sticks: no further review or appeal."""
        orch, result = escalated

        status = orch.manual_review(result.request_id, "APPROVED", notes="Checked with registrar", reviewer_id="rev-9")

        assert status == "APPROVED"
        view = orch.get_status(result.request_id, "user-1")
        assert view.manually_reviewed is True
        assert view.reviewed_by == "rev-9"
        assert view.attempts[-1].attempt_number == 100
        assert view.attempts[-1].is_manual
        assert "Checked with registrar" in view.explanation
        assert view.document_purged_at is not None

        credentials = orch.credentials.active_credentials("user-1")
        assert [c.source for c in credentials] == ["MANUAL"]

        with pytest.raises(InvalidTransitionError):
            orch.manual_review(result.request_id, "REJECTED", notes="changed my mind")
        with pytest.raises(InvalidTransitionError):
            orch.appeal(result.request_id, "user-1", "again")

    def test_manual_review_needs_escalated_request(self, make_orchestrator, claims):
        """Reviewing a REJECTED request is not allowed."""
        orch = make_orchestrator(FakeOcrClient(UNRELATED_CERTIFICATE))
        request_id = orch.submit("user-1", claims, PRIMARY_PDF).request_id

        with pytest.raises(InvalidTransitionError):
            orch.manual_review(request_id, "APPROVED")

    def test_manual_review_rejects_unknown_decision(self, escalated):
        """Reviewers choose APPROVED or REJECTED only."""
        orch, result = escalated

        with pytest.raises(ClaimValidationError):
            orch.manual_review(result.request_id, "PENDING_REVIEW")

    def test_manual_review_unknown_request(self, make_orchestrator):
        """Unknown ids raise not-found."""
        orch = make_orchestrator()

        with pytest.raises(RequestNotFoundError):
            orch.manual_review("missing", "APPROVED")


class TestSideEffects:
    """Credential mapping, audit trail and document purge."""

    def test_approval_records_credential(self, make_orchestrator, claims):
        """Automated approval issues an OCR-sourced credential."""
        orch = make_orchestrator()
        result = orch.submit("user-1", claims, PRIMARY_PDF)

        credentials = orch.credentials.active_credentials("user-1")
        assert len(credentials) == 1
        assert credentials[0].source == "OCR"
        assert credentials[0].request_id == result.request_id
        assert orch.credentials.has_active_credential("user-1", "iit delhi")

    def test_audit_trail_order(self, make_orchestrator, claims, audit_sink):
        """An approval leaves the expected sequence of audit entries."""
        orch = make_orchestrator()
        orch.submit("user-1", claims, PRIMARY_PDF)

        assert audit_sink.actions() == [
            audit_module.VERIFICATION_SUBMITTED,
            audit_module.VERIFICATION_PROCESSING,
            audit_module.ATTEMPT_COMPLETED,
            audit_module.STATUS_CHANGED,
            audit_module.CREDENTIAL_RECORDED,
            audit_module.DOCUMENT_PURGED,
        ]

    def test_audit_failure_does_not_block(self, make_orchestrator, claims):
        """A broken audit sink is logged and counted, not raised."""
        before = audit_module.logger.get_metrics()["side_effect_failures"].get("audit", 0)
        orch = make_orchestrator(audit_sink=FailingAuditSink())

        result = orch.submit("user-1", claims, PRIMARY_PDF)

        assert result.status == "APPROVED"
        after = audit_module.logger.get_metrics()["side_effect_failures"].get("audit", 0)
        assert after > before

    def test_credential_failure_does_not_block(self, make_orchestrator, claims, session_factory, audit_sink):
        """The approval stands when the credential store is down."""
        orch = make_orchestrator(credentials=FailingCredentialService(session_factory))

        result = orch.submit("user-1", claims, PRIMARY_PDF)

        assert result.status == "APPROVED"
        assert audit_module.CREDENTIAL_RECORDED not in audit_sink.actions()
        assert CredentialService(session_factory).active_credentials("user-1") == []

    def test_final_state_purges_documents(self, make_orchestrator, claims, document_store, session_factory):
        """Stored bytes are deleted once the request is final."""
        orch = make_orchestrator()
        result = orch.submit("user-1", claims, PRIMARY_PDF)

        docs = _documents(session_factory, result.request_id)
        assert len(docs) == 1
        assert docs[0].purged_at is not None
        with pytest.raises(FileNotFoundError):
            document_store.load(docs[0].locator)

    def test_purge_can_be_disabled(self, make_orchestrator, claims, document_store, session_factory):
        """With purging off the document survives approval."""
        orch = make_orchestrator(purge_documents=False)
        result = orch.submit("user-1", claims, PRIMARY_PDF)

        doc = _documents(session_factory, result.request_id)[0]
        assert doc.purged_at is None
        assert document_store.load(doc.locator) == PRIMARY_PDF

    def test_purge_failure_is_logged(self, make_orchestrator, claims, document_store, session_factory):
        """A store that refuses deletes does not undo the approval."""

        class StickyStore(type(document_store)):
            def delete(self, locator):
                raise PermissionError("read-only volume")

        orch = make_orchestrator(document_store=StickyStore(document_store.root))
        result = orch.submit("user-1", claims, PRIMARY_PDF)

        assert result.status == "APPROVED"
        session = session_factory()
        try:
            doc = session.query(StoredDocumentRow).filter_by(request_id=result.request_id).one()
            assert doc.purged_at is None
        finally:
            session.close()


class TestReadModels:
    """Status, listing and the review queue."""

    def test_other_user_cannot_read_status(self, make_orchestrator, claims):
        """Ownership mismatch is reported as not found."""
        orch = make_orchestrator()
        request_id = orch.submit("user-1", claims, PRIMARY_PDF).request_id

        with pytest.raises(RequestNotFoundError):
            orch.get_status(request_id, "user-2")

    def test_list_requests_is_per_user(self, make_orchestrator, claims):
        """Each user only sees their own requests."""
        orch = make_orchestrator()
        orch.submit("user-1", claims, PRIMARY_PDF)
        orch.submit("user-1", claims, SUPPLEMENT_PDF)
        orch.submit("user-2", claims, PRIMARY_PDF)

        assert len(orch.list_requests("user-1")) == 2
        assert len(orch.list_requests("user-2")) == 1
        assert orch.list_requests("user-3") == []

    def test_view_serializes(self, make_orchestrator, claims):
        """RequestView.to_dict is JSON-friendly."""
        orch = make_orchestrator()
        request_id = orch.submit("user-1", claims, PRIMARY_PDF).request_id

        data = orch.get_status(request_id, "user-1").to_dict()
        assert data["status"] == "APPROVED"
        assert data["claims"]["institution"] == "IIT Delhi"
        assert data["attempts"][0]["attempt_number"] == 1

    def test_fail_attempt_ignores_finished_attempts(self, make_orchestrator, claims):
        """Failing an already completed attempt changes nothing."""
        orch = make_orchestrator()
        request_id = orch.submit("user-1", claims, PRIMARY_PDF).request_id

        assert orch.fail_attempt(request_id, 1, "late timeout", "TIMEOUT") is None
        assert orch.get_status(request_id, "user-1").status == "APPROVED"


class TestConcurrentWriters:
    """Competing writers on one request or one upload."""

    def test_concurrent_appeals_create_one_attempt(self, make_orchestrator, claims, document_store, session_factory):
        """The appeal that commits second loses and leaves no attempt behind."""
        ocr = FakeOcrClient(UNRELATED_CERTIFICATE)
        request_id = make_orchestrator(ocr).submit("user-1", claims, PRIMARY_PDF).request_id
        rival = make_orchestrator(ocr)
        rival_results = []

        def rival_appeal():
            rival_results.append(rival.appeal(request_id, "user-1", "Rival appeal"))

        store = InterleavingStore(document_store.root, rival_appeal)
        orch = make_orchestrator(ocr, document_store=store)

        with pytest.raises(ConcurrentModificationError):
            orch.appeal(request_id, "user-1", "Adding my transcript", document=SUPPLEMENT_PDF)

        assert [r.attempt_number for r in rival_results] == [2]
        attempts = _attempts(session_factory, request_id)
        assert [a.attempt_number for a in attempts] == [1, 2]
        assert attempts[1].appeal_reason == "Rival appeal"
        assert [d.role for d in _documents(session_factory, request_id)] == ["PRIMARY"]

    def test_concurrent_duplicate_submissions_create_one_request(
        self, make_orchestrator, claims, document_store, session_factory
    ):
        """Two uploads of one document by one user end in a single request."""
        rival = make_orchestrator()
        rival_results = []

        def rival_submit():
            rival_results.append(rival.submit("user-1", claims, PRIMARY_PDF))

        orch = make_orchestrator(document_store=InterleavingStore(document_store.root, rival_submit))

        with pytest.raises(DuplicateSubmissionError) as exc:
            orch.submit("user-1", claims, PRIMARY_PDF)

        assert exc.value.existing_request_id == rival_results[0].request_id
        assert _request_count(session_factory) == 1
        assert len(_attempts(session_factory, rival_results[0].request_id)) == 1
