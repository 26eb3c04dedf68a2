"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for verification requests, attempts, stored
documents, credential mappings and the audit trail.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

Base = declarative_base()


class VerificationRequestRow(Base):
    """One user's verification case. Never deleted."""

    __tablename__ = "verification_requests"
    __table_args__ = (
        UniqueConstraint("user_id", "document_hash", name="uq_request_user_document"),
    )

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    institution_id = Column(String, nullable=True)
    claimed_name = Column(String, nullable=False)
    claimed_institution = Column(String, nullable=False)
    claimed_program = Column(String, nullable=False)
    claimed_start_year = Column(Integer, nullable=False)
    claimed_end_year = Column(Integer, nullable=False)
    document_hash = Column(String, nullable=False)  # sha256 of the primary document
    status = Column(String, nullable=False, index=True)
    escalation_reason = Column(Text, nullable=True)
    manually_reviewed = Column(Boolean, nullable=False, default=False)
    reviewed_by = Column(String, nullable=True)
    review_notes = Column(Text, nullable=True)
    document_purged_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)
    version = Column(Integer, nullable=False)

    attempts = relationship(
        "VerificationAttemptRow",
        back_populates="request",
        order_by="VerificationAttemptRow.attempt_number",
    )
    documents = relationship(
        "StoredDocumentRow",
        back_populates="request",
        order_by="StoredDocumentRow.created_at",
    )

    __mapper_args__ = {"version_id_col": version}


class VerificationAttemptRow(Base):
    """One pipeline execution against a request. Append-only once completed."""

    __tablename__ = "verification_attempts"
    __table_args__ = (
        UniqueConstraint("request_id", "attempt_number", name="uq_attempt_request_number"),
    )

    id = Column(String, primary_key=True)
    request_id = Column(String, ForeignKey("verification_requests.id"), nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False)
    status = Column(String, nullable=False)  # PROCESSING, COMPLETED, FAILED
    ocr_text = Column(Text, nullable=True)
    extracted_data = Column(JSON, nullable=True)
    matching_results = Column(JSON, nullable=True)
    decision = Column(String, nullable=True)
    overall_score = Column(Float, nullable=True)
    failure_reason = Column(Text, nullable=True)
    appeal_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    completed_at = Column(DateTime, nullable=True)

    request = relationship("VerificationRequestRow", back_populates="attempts")


class StoredDocumentRow(Base):
    """A document attached to a request: the primary upload or an appeal supplement."""

    __tablename__ = "verification_documents"

    id = Column(String, primary_key=True)
    request_id = Column(String, ForeignKey("verification_requests.id"), nullable=False, index=True)
    locator = Column(String, nullable=False)
    content_hash = Column(String, nullable=False)
    role = Column(String, nullable=False)  # PRIMARY, SUPPLEMENTARY
    filename = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    purged_at = Column(DateTime, nullable=True)

    request = relationship("VerificationRequestRow", back_populates="documents")


class CredentialMappingRow(Base):
    """Time-bounded proof that a user belongs to an institution."""

    __tablename__ = "credential_mappings"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    institution_name = Column(String, nullable=False)
    source = Column(String, nullable=False)  # OCR, MANUAL
    request_id = Column(String, nullable=True)
    valid_from = Column(DateTime, nullable=False)
    valid_until = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    expired_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class AuditLogRow(Base):
    """Append-only audit trail entry."""

    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=True, index=True)
    action = Column(String, nullable=False)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False, index=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


def create_db_engine(db_path: Path) -> Engine:
    """SQLite engine usable from several worker threads."""
    return create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_db_engine(db_path)
    Base.metadata.create_all(engine)
    engine.dispose()


def get_session_factory(db_path: Path, engine: Optional[Engine] = None) -> sessionmaker:
    """
    Get a session factory bound to one engine.

    Args:
        db_path: Path to SQLite database file
        engine: Reuse an existing engine instead of creating one

    Returns:
        sessionmaker producing SQLAlchemy sessions
    """
    return sessionmaker(bind=engine or create_db_engine(db_path), expire_on_commit=False)


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    return get_session_factory(db_path)()
