"""
Evidence Model.

Responsibilities:
- Describe where a datum came from (EvidenceRef).
- Wrap every extracted or claimed datum with a confidence and its evidence (FieldValue).

Non-Responsibilities:
- No extraction, resolution or matching logic.

Invariant:
Evidence is immutable once created. Confidence is always within [0, 1].
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, Optional, Tuple, TypeVar

T = TypeVar("T")


class EvidenceKind(str, Enum):
    USER_CLAIM = "USER_CLAIM"
    DOCUMENT_OCR = "DOCUMENT_OCR"
    DOCUMENT_METADATA = "DOCUMENT_METADATA"
    EXTERNAL_API = "EXTERNAL_API"


@dataclass(frozen=True)
class Region:
    """Bounding box on a page, in the OCR service's pixel coordinates."""

    x: float
    y: float
    width: float
    height: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class EvidenceRef:
    """Provenance of a single datum."""

    kind: EvidenceKind
    source: str
    page: Optional[int] = None
    region: Optional[Region] = None
    extracted_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "source": self.source,
            "page": self.page,
            "region": self.region.to_dict() if self.region else None,
            "extracted_at": self.extracted_at.isoformat() if self.extracted_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvidenceRef":
        region = data.get("region")
        extracted_at = data.get("extracted_at")
        return cls(
            kind=EvidenceKind(data["kind"]),
            source=data["source"],
            page=data.get("page"),
            region=Region(**region) if region else None,
            extracted_at=datetime.fromisoformat(extracted_at) if extracted_at else None,
        )


@dataclass(frozen=True)
class FieldValue(Generic[T]):
    """A value plus the belief that it is right and the evidence behind it."""

    value: T
    confidence: float
    evidence: Tuple[EvidenceRef, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        if not isinstance(self.evidence, tuple):
            object.__setattr__(self, "evidence", tuple(self.evidence))

    def with_confidence(self, confidence: float) -> "FieldValue[T]":
        return replace(self, confidence=confidence)
