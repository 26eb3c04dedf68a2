from .orchestrator import (
    AppealResult,
    AttemptView,
    RequestView,
    SubmissionResult,
    VerificationOrchestrator,
)
from .pipeline import DocumentText, PipelineOutcome, run_pipeline
from .policy import MANUAL_REVIEW_ATTEMPT_NUMBER, AttemptStatus, RequestStatus

__all__ = [
    "AppealResult",
    "AttemptStatus",
    "AttemptView",
    "DocumentText",
    "MANUAL_REVIEW_ATTEMPT_NUMBER",
    "PipelineOutcome",
    "RequestStatus",
    "RequestView",
    "SubmissionResult",
    "VerificationOrchestrator",
    "run_pipeline",
]
