"""
Identity records: sparse bags of FieldValues describing one academic identity.

A missing field means "not found" and is different from a present value with
low confidence. Records are immutable; resolution builds new ones.
"""

from dataclasses import dataclass, fields, replace
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from .evidence import EvidenceKind, EvidenceRef, FieldValue

CLAIM_SOURCE = "verification_form"


@dataclass(frozen=True)
class EnrollmentPeriod:
    """Inclusive range of academic years."""

    start_year: int
    end_year: int

    def __post_init__(self):
        if self.end_year < self.start_year:
            raise ValueError(
                f"end_year {self.end_year} is before start_year {self.start_year}"
            )

    @property
    def duration(self) -> int:
        return self.end_year - self.start_year + 1

    def as_tuple(self) -> Tuple[int, int]:
        return (self.start_year, self.end_year)

    def __str__(self) -> str:
        return f"{self.start_year}-{self.end_year}"


@dataclass(frozen=True)
class IdentityRecord:
    full_name: Optional[FieldValue[str]] = None
    fathers_name: Optional[FieldValue[str]] = None
    date_of_birth: Optional[FieldValue[date]] = None
    institution: Optional[FieldValue[str]] = None
    program_or_degree: Optional[FieldValue[str]] = None
    department: Optional[FieldValue[str]] = None
    enrollment_period: Optional[FieldValue[EnrollmentPeriod]] = None
    roll_number: Optional[FieldValue[str]] = None

    def get(self, name: str) -> Optional[FieldValue]:
        if name not in FIELD_NAMES:
            raise KeyError(f"Unknown identity field: {name}")
        return getattr(self, name)

    def present_fields(self) -> List[str]:
        return [name for name in FIELD_NAMES if getattr(self, name) is not None]

    def is_empty(self) -> bool:
        return not self.present_fields()

    def with_field(self, name: str, value: Optional[FieldValue]) -> "IdentityRecord":
        return replace(self, **{name: value})

    def min_confidence(self) -> float:
        """Lowest confidence across present fields (0.0 for an empty record)."""
        present = [getattr(self, name).confidence for name in self.present_fields()]
        return min(present) if present else 0.0

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for name in self.present_fields():
            fv = getattr(self, name)
            encode, _ = _CODECS[name]
            out[name] = {
                "value": encode(fv.value),
                "confidence": fv.confidence,
                "evidence": [ev.to_dict() for ev in fv.evidence],
            }
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IdentityRecord":
        kwargs = {}
        for name, raw in data.items():
            if name not in FIELD_NAMES or raw is None:
                continue
            _, decode = _CODECS[name]
            kwargs[name] = FieldValue(
                value=decode(raw["value"]),
                confidence=raw["confidence"],
                evidence=tuple(EvidenceRef.from_dict(ev) for ev in raw.get("evidence", [])),
            )
        return cls(**kwargs)

    @classmethod
    def from_claims(
        cls,
        name: str,
        institution: str,
        program: str,
        start_year: int,
        end_year: int,
        source: str = CLAIM_SOURCE,
    ) -> "IdentityRecord":
        """Build the user-side record; claims are full-confidence evidence."""
        evidence = (EvidenceRef(kind=EvidenceKind.USER_CLAIM, source=source),)
        return cls(
            full_name=FieldValue(name, 1.0, evidence),
            institution=FieldValue(institution, 1.0, evidence),
            program_or_degree=FieldValue(program, 1.0, evidence),
            enrollment_period=FieldValue(EnrollmentPeriod(start_year, end_year), 1.0, evidence),
        )


FIELD_NAMES: Tuple[str, ...] = tuple(f.name for f in fields(IdentityRecord))


def _identity(v):
    return v


def _encode_period(p: EnrollmentPeriod) -> Dict[str, int]:
    return {"start_year": p.start_year, "end_year": p.end_year}


def _decode_period(d: Dict[str, int]) -> EnrollmentPeriod:
    return EnrollmentPeriod(int(d["start_year"]), int(d["end_year"]))


_CODECS: Dict[str, Tuple[Callable, Callable]] = {
    "full_name": (_identity, _identity),
    "fathers_name": (_identity, _identity),
    "date_of_birth": (date.isoformat, date.fromisoformat),
    "institution": (_identity, _identity),
    "program_or_degree": (_identity, _identity),
    "department": (_identity, _identity),
    "enrollment_period": (_encode_period, _decode_period),
    "roll_number": (_identity, _identity),
}
