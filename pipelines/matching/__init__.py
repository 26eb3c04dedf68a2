from .matcher import match
from .results import (
    Decision,
    EnrollmentMatch,
    InstitutionMatch,
    MatchResult,
    NameMatch,
    ProgramMatch,
)
from .scoring import decide, is_ambiguous, weighted_score

__all__ = [
    "Decision",
    "EnrollmentMatch",
    "InstitutionMatch",
    "MatchResult",
    "NameMatch",
    "ProgramMatch",
    "decide",
    "is_ambiguous",
    "match",
    "weighted_score",
]
