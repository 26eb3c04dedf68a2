"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime
from typing import Dict, List, Optional, Union

import pytest

from credverify.audit import AuditSink
from credverify.credentials import CredentialService
from credverify.database import get_session_factory, init_database
from credverify.documents import FileDocumentStore
from credverify.ocr.models import OcrResult
from credverify.schema import Claims
from pipelines.verification.orchestrator import VerificationOrchestrator

IIT_CERTIFICATE = """INDIAN INSTITUTE OF TECHNOLOGY DELHI
DEGREE CERTIFICATE
Name: Ananya Rao
Roll No: 2016CS10234
Degree: Bachelor of Technology in Computer Science and Engineering
Session: 2016-2020
Date of Issue: 15/07/2020
"""

UNRELATED_CERTIFICATE = """UNIVERSITY OF MUMBAI
Name: Rahul Verma
Degree: Master of Business Administration
Session: 2001-2003
"""

PRIMARY_PDF = b"%PDF-1.4 primary certificate scan"
SUPPLEMENT_PDF = b"%PDF-1.4 supplementary transcript scan"


class FakeOcrClient:
    """Scripted OCR: answers by document bytes, falling back to ``default``."""

    def __init__(
        self,
        default: Union[str, OcrResult, None] = None,
        by_document: Optional[Dict[bytes, Union[str, OcrResult]]] = None,
    ):
        self.default = default
        self.by_document = by_document or {}
        self.calls: List[bytes] = []

    def extract_text(self, document: bytes) -> OcrResult:
        self.calls.append(document)
        answer = self.by_document.get(document, self.default)
        if answer is None:
            return OcrResult.failed("No text recognised")
        if isinstance(answer, OcrResult):
            return answer
        return OcrResult.ok(answer)


class RecordingAuditSink(AuditSink):
    def __init__(self):
        self.entries: List[dict] = []

    def append(self, user_id, action, entity_type, entity_id, metadata=None) -> None:
        self.entries.append(
            {
                "user_id": user_id,
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "metadata": metadata or {},
            }
        )

    def actions(self) -> List[str]:
        return [e["action"] for e in self.entries]


class FailingAuditSink(AuditSink):
    def append(self, user_id, action, entity_type, entity_id, metadata=None) -> None:
        raise RuntimeError("audit store offline")


class FailingCredentialService(CredentialService):
    def record_credential(self, *args, **kwargs):
        raise RuntimeError("credential store offline")


@pytest.fixture
def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite file."""
    db_path = tmp_path / "credverify.db"
    init_database(db_path)
    factory = get_session_factory(db_path)
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def document_store(tmp_path) -> FileDocumentStore:
    return FileDocumentStore(tmp_path / "documents")


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def claims() -> Claims:
    return Claims(
        name="Ananya Rao",
        institution="IIT Delhi",
        program="B.Tech Computer Science",
        start_year=2016,
        end_year=2020,
    )


@pytest.fixture
def make_orchestrator(session_factory, document_store, audit_sink):
    """Build an orchestrator around the shared database with overridable collaborators."""

    def _make(ocr_client=None, **kwargs) -> VerificationOrchestrator:
        clock = kwargs.pop("clock", datetime.now)
        credentials = kwargs.pop("credentials", None) or CredentialService(session_factory, clock=clock)
        return VerificationOrchestrator(
            session_factory=session_factory,
            ocr_client=ocr_client or FakeOcrClient(IIT_CERTIFICATE),
            document_store=kwargs.pop("document_store", document_store),
            credentials=credentials,
            audit_sink=kwargs.pop("audit_sink", audit_sink),
            clock=clock,
            **kwargs,
        )

    return _make
