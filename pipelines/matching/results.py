"""
Typed comparison results, one variant per compared field.

Every variant carries the literal user and document values, the numeric
score in [0, 1] and the explanation shown to reviewers and appellants.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from pipelines.identity.record import EnrollmentPeriod


class Decision(str, Enum):
    APPROVED = "APPROVED"
    PENDING_REVIEW = "PENDING_REVIEW"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class NameMatch:
    field_name: ClassVar[str] = "full_name"
    label: ClassVar[str] = "Name"

    user_value: str
    document_value: str
    score: float
    explanation: str
    first_last_agree: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return _base_dict(self, first_last_agree=self.first_last_agree)


@dataclass(frozen=True)
class InstitutionMatch:
    field_name: ClassVar[str] = "institution"
    label: ClassVar[str] = "Institution"

    user_value: str
    document_value: str
    score: float
    explanation: str
    matched_alias: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _base_dict(self, matched_alias=self.matched_alias)


@dataclass(frozen=True)
class ProgramMatch:
    field_name: ClassVar[str] = "program_or_degree"
    label: ClassVar[str] = "Program"

    user_value: str
    document_value: str
    score: float
    explanation: str
    synonym_groups: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return _base_dict(self, synonym_groups=list(self.synonym_groups))


@dataclass(frozen=True)
class EnrollmentMatch:
    field_name: ClassVar[str] = "enrollment_period"
    label: ClassVar[str] = "Enrollment period"

    user_value: EnrollmentPeriod
    document_value: EnrollmentPeriod
    score: float
    explanation: str
    overlap_years: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return _base_dict(
            self,
            user_value=str(self.user_value),
            document_value=str(self.document_value),
            overlap_years=self.overlap_years,
        )


FieldMatch = Union[NameMatch, InstitutionMatch, ProgramMatch, EnrollmentMatch]


def _base_dict(result, **extra) -> Dict[str, Any]:
    out = {
        "field": result.field_name,
        "user_value": result.user_value,
        "document_value": result.document_value,
        "score": result.score,
        "explanation": result.explanation,
    }
    out.update(extra)
    return out


@dataclass(frozen=True)
class MatchResult:
    overall_score: float
    decision: Decision
    field_results: List[FieldMatch] = field(default_factory=list)
    explanation: str = ""

    def field_scores(self) -> Dict[str, float]:
        return {r.field_name: r.score for r in self.field_results}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_score": self.overall_score,
            "decision": self.decision.value,
            "field_results": [r.to_dict() for r in self.field_results],
            "explanation": self.explanation,
        }
