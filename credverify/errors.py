"""
Error taxonomy for the verification surface.

Each error carries a stable ``code`` so callers (CLI, HTTP layer) can map it
to a response without parsing messages. OCR and infrastructure failures are
not here: they become FAILED attempts, not exceptions.
"""

from typing import List, Optional


class VerificationError(Exception):
    """Base class for errors raised by the verification surface."""

    code = "VERIFICATION_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ClaimValidationError(VerificationError):
    """Claimed fields failed validation; nothing was persisted."""

    code = "INVALID_INPUT"

    def __init__(self, errors: List[str]):
        super().__init__("Invalid claims: " + "; ".join(errors))
        self.errors = list(errors)


class DocumentRejectedError(VerificationError):
    """The uploaded document is empty, too large or of an unsupported type."""

    code = "INVALID_DOCUMENT"


class DuplicateSubmissionError(VerificationError):
    """The same user already submitted a document with this content hash."""

    code = "VERIFICATION_ALREADY_EXISTS"

    def __init__(self, existing_request_id: Optional[str]):
        super().__init__(
            f"Document already submitted (existing request: {existing_request_id})"
        )
        self.existing_request_id = existing_request_id


class RequestNotFoundError(VerificationError):
    """No such request, or it belongs to someone else (indistinguishable)."""

    code = "VERIFICATION_NOT_FOUND"

    def __init__(self, request_id: str):
        super().__init__(f"Verification request not found: {request_id}")
        self.request_id = request_id


class AppealLimitExceededError(VerificationError):
    """All automated attempts are used up; the request needs a human reviewer."""

    code = "APPEAL_LIMIT_REACHED"

    def __init__(self, request_id: str, attempts: int):
        super().__init__(
            f"Request {request_id} already has {attempts} automated attempts; "
            "it must go through manual review"
        )
        self.request_id = request_id
        self.attempts = attempts


class InvalidTransitionError(VerificationError):
    """The requested operation is not allowed from the request's current status."""

    code = "INVALID_STATE"


class ConcurrentModificationError(VerificationError):
    """Another writer changed the request first; the caller may reload and retry."""

    code = "CONCURRENT_MODIFICATION"
