"""
Verifications Repository.

Responsibilities:
- Read/write access to requests, attempts and stored documents.
- Row locking for read-modify-write sequences.

Non-Responsibilities:
- No business logic.
- No state-machine rules.
- No scoring.

Invariant:
Repositories must not encode domain decisions. Callers own the transaction:
nothing here commits.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from credverify.database import StoredDocumentRow, VerificationAttemptRow, VerificationRequestRow


class VerificationRepository:
    def __init__(self, session: Session):
        self.session = session

    # -- requests ------------------------------------------------------------

    def get_request(self, request_id: str, lock: bool = False) -> Optional[VerificationRequestRow]:
        query = self.session.query(VerificationRequestRow).filter_by(id=request_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    def find_by_user_and_hash(self, user_id: str, document_hash: str) -> Optional[VerificationRequestRow]:
        return (
            self.session.query(VerificationRequestRow)
            .filter_by(user_id=user_id, document_hash=document_hash)
            .first()
        )

    def list_for_user(self, user_id: str) -> List[VerificationRequestRow]:
        return (
            self.session.query(VerificationRequestRow)
            .filter_by(user_id=user_id)
            .order_by(VerificationRequestRow.created_at.desc(), VerificationRequestRow.id)
            .all()
        )

    def list_by_status(self, status: str, manually_reviewed: Optional[bool] = None) -> List[VerificationRequestRow]:
        query = self.session.query(VerificationRequestRow).filter_by(status=status)
        if manually_reviewed is not None:
            query = query.filter_by(manually_reviewed=manually_reviewed)
        return query.order_by(VerificationRequestRow.created_at, VerificationRequestRow.id).all()

    def all_requests(self) -> List[VerificationRequestRow]:
        return self.session.query(VerificationRequestRow).order_by(VerificationRequestRow.created_at).all()

    def add_request(self, row: VerificationRequestRow) -> VerificationRequestRow:
        self.session.add(row)
        return row

    # -- attempts ------------------------------------------------------------

    def add_attempt(self, row: VerificationAttemptRow) -> VerificationAttemptRow:
        self.session.add(row)
        return row

    def get_attempt(self, attempt_id: str) -> Optional[VerificationAttemptRow]:
        return self.session.query(VerificationAttemptRow).filter_by(id=attempt_id).first()

    def get_attempt_by_number(self, request_id: str, attempt_number: int) -> Optional[VerificationAttemptRow]:
        return (
            self.session.query(VerificationAttemptRow)
            .filter_by(request_id=request_id, attempt_number=attempt_number)
            .first()
        )

    def attempts_for(self, request_id: str) -> List[VerificationAttemptRow]:
        return (
            self.session.query(VerificationAttemptRow)
            .filter_by(request_id=request_id)
            .order_by(VerificationAttemptRow.attempt_number)
            .all()
        )

    def max_attempt_number(self, request_id: str, below: Optional[int] = None) -> int:
        query = self.session.query(func.max(VerificationAttemptRow.attempt_number)).filter(
            VerificationAttemptRow.request_id == request_id
        )
        if below is not None:
            query = query.filter(VerificationAttemptRow.attempt_number < below)
        return query.scalar() or 0

    def attempts_in_status_before(self, status: str, cutoff: datetime) -> List[VerificationAttemptRow]:
        return (
            self.session.query(VerificationAttemptRow)
            .filter(VerificationAttemptRow.status == status)
            .filter(VerificationAttemptRow.created_at < cutoff)
            .order_by(VerificationAttemptRow.created_at)
            .all()
        )

    # -- documents -----------------------------------------------------------

    def add_document(self, row: StoredDocumentRow) -> StoredDocumentRow:
        self.session.add(row)
        return row

    def documents_for(self, request_id: str, include_purged: bool = True) -> List[StoredDocumentRow]:
        query = self.session.query(StoredDocumentRow).filter_by(request_id=request_id)
        if not include_purged:
            query = query.filter(StoredDocumentRow.purged_at.is_(None))
        return query.order_by(StoredDocumentRow.created_at, StoredDocumentRow.role, StoredDocumentRow.id).all()
