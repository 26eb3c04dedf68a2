"""
Audit trail sink.

``append`` writes one row in its own session so an audit entry never shares
a transaction with the state change it describes. The sink itself raises on
failure; callers that must not be blocked wrap it (see ``safe_append``).
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .database import AuditLogRow
from .logger import get_logger

logger = get_logger()

# actions
VERIFICATION_SUBMITTED = "VERIFICATION_SUBMITTED"
VERIFICATION_PROCESSING = "VERIFICATION_PROCESSING"
ATTEMPT_COMPLETED = "ATTEMPT_COMPLETED"
ATTEMPT_FAILED = "ATTEMPT_FAILED"
STATUS_CHANGED = "STATUS_CHANGED"
APPEAL_SUBMITTED = "APPEAL_SUBMITTED"
MANUAL_REVIEW_COMPLETED = "MANUAL_REVIEW_COMPLETED"
CREDENTIAL_RECORDED = "CREDENTIAL_RECORDED"
CREDENTIAL_EXPIRED = "CREDENTIAL_EXPIRED"
DOCUMENT_PURGED = "DOCUMENT_PURGED"

# entity types
REQUEST = "verification_request"
ATTEMPT = "verification_attempt"
CREDENTIAL = "credential_mapping"
DOCUMENT = "document"


class AuditSink:
    """Interface: ``append(user_id, action, entity_type, entity_id, metadata)``."""

    def append(
        self,
        user_id: Optional[str],
        action: str,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        raise NotImplementedError


class DatabaseAuditSink(AuditSink):
    def __init__(self, session_factory, clock: Callable[[], datetime] = datetime.now):
        self.session_factory = session_factory
        self.clock = clock

    def append(self, user_id, action, entity_type, entity_id, metadata=None) -> None:
        session = self.session_factory()
        try:
            session.add(
                AuditLogRow(
                    user_id=user_id,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    details=metadata or {},
                    created_at=self.clock(),
                )
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def entries_for(self, entity_id: str) -> List[AuditLogRow]:
        session = self.session_factory()
        try:
            return (
                session.query(AuditLogRow)
                .filter_by(entity_id=entity_id)
                .order_by(AuditLogRow.id)
                .all()
            )
        finally:
            session.close()


def safe_append(
    sink: AuditSink,
    user_id: Optional[str],
    action: str,
    entity_type: str,
    entity_id: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> bool:
    """Append without ever raising. Returns False when the entry was lost."""
    try:
        sink.append(user_id, action, entity_type, entity_id, metadata)
        return True
    except Exception as e:
        logger.warning(
            "Audit append failed",
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        logger.record_side_effect_failure("audit")
        return False
