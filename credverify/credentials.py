"""
Institution mapping: time-bounded credentials issued on approval.

A credential says "this user was verified as belonging to this institution"
and is only honoured while it is active and inside its validity window.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import func

from .database import CredentialMappingRow
from .logger import get_logger

logger = get_logger()

SOURCE_OCR = "OCR"
SOURCE_MANUAL = "MANUAL"
VALID_SOURCES = {SOURCE_OCR, SOURCE_MANUAL}


@dataclass(frozen=True)
class Credential:
    id: str
    user_id: str
    institution_name: str
    source: str
    request_id: Optional[str]
    valid_from: datetime
    valid_until: datetime
    is_active: bool

    @classmethod
    def from_row(cls, row: CredentialMappingRow) -> "Credential":
        return cls(
            id=row.id,
            user_id=row.user_id,
            institution_name=row.institution_name,
            source=row.source,
            request_id=row.request_id,
            valid_from=row.valid_from,
            valid_until=row.valid_until,
            is_active=row.is_active,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "institution_name": self.institution_name,
            "source": self.source,
            "request_id": self.request_id,
            "valid_from": self.valid_from.isoformat(),
            "valid_until": self.valid_until.isoformat(),
            "is_active": self.is_active,
        }


class CredentialService:
    def __init__(self, session_factory, clock: Callable[[], datetime] = datetime.now):
        self.session_factory = session_factory
        self.clock = clock

    def record_credential(
        self,
        user_id: str,
        institution_name: str,
        valid_from: datetime,
        valid_until: datetime,
        source: str = SOURCE_OCR,
        request_id: Optional[str] = None,
    ) -> str:
        """Insert an active credential and return its id."""
        if not user_id or not institution_name:
            raise ValueError("user_id and institution_name are required")
        if source not in VALID_SOURCES:
            raise ValueError(f"Invalid credential source: {source}")
        if valid_until <= valid_from:
            raise ValueError("valid_until must be after valid_from")

        credential_id = uuid.uuid4().hex
        session = self.session_factory()
        try:
            session.add(
                CredentialMappingRow(
                    id=credential_id,
                    user_id=user_id,
                    institution_name=institution_name,
                    source=source,
                    request_id=request_id,
                    valid_from=valid_from,
                    valid_until=valid_until,
                    is_active=True,
                    created_at=self.clock(),
                )
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        logger.info(
            "Credential recorded",
            credential_id=credential_id,
            user_id=user_id,
            institution=institution_name,
            source=source,
            valid_until=valid_until,
        )
        return credential_id

    def _active_query(self, session, user_id: str, now: datetime):
        return (
            session.query(CredentialMappingRow)
            .filter(CredentialMappingRow.user_id == user_id)
            .filter(CredentialMappingRow.is_active.is_(True))
            .filter(CredentialMappingRow.valid_until > now)
        )

    def active_credentials(self, user_id: str, now: Optional[datetime] = None) -> List[Credential]:
        now = now or self.clock()
        session = self.session_factory()
        try:
            rows = (
                self._active_query(session, user_id, now)
                .order_by(CredentialMappingRow.valid_from.desc())
                .all()
            )
            return [Credential.from_row(r) for r in rows]
        finally:
            session.close()

    def has_active_credential(
        self, user_id: str, institution_name: str, now: Optional[datetime] = None
    ) -> bool:
        now = now or self.clock()
        session = self.session_factory()
        try:
            row = (
                self._active_query(session, user_id, now)
                .filter(func.lower(CredentialMappingRow.institution_name) == institution_name.lower())
                .first()
            )
            return row is not None
        finally:
            session.close()

    def expire_credentials(self, now: Optional[datetime] = None) -> List[Credential]:
        """Deactivate every active credential whose window has closed. Idempotent."""
        now = now or self.clock()
        session = self.session_factory()
        try:
            rows = (
                session.query(CredentialMappingRow)
                .filter(CredentialMappingRow.is_active.is_(True))
                .filter(CredentialMappingRow.valid_until <= now)
                .all()
            )
            for row in rows:
                row.is_active = False
                row.expired_at = now
            session.commit()
            return [Credential.from_row(r) for r in rows]
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
