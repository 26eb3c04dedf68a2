"""
Candidate Selection Logic.

Responsibilities:
- Collect the present FieldValues of one field across partial records.
- Group candidates that denote the same value after normalization.

Non-Responsibilities:
- No scoring.
- No resolution decisions.

Invariant:
Grouping never drops a candidate; every input value lands in exactly one
group, and groups keep first-seen order.
"""

from datetime import date
from typing import Any, Dict, Hashable, List, Sequence

from credverify.normalize import normalize_text
from pipelines.identity.evidence import FieldValue
from pipelines.identity.record import EnrollmentPeriod, IdentityRecord


def group_key(value: Any) -> Hashable:
    """Normalized comparison key: strings are case-folded, structures compared exactly."""
    if isinstance(value, str):
        return normalize_text(value)
    if isinstance(value, EnrollmentPeriod):
        return value.as_tuple()
    if isinstance(value, date):
        return value.isoformat()
    return value


def collect_candidates(records: Sequence[IdentityRecord], field_name: str) -> List[FieldValue]:
    return [r.get(field_name) for r in records if r.get(field_name) is not None]


def group_candidates(candidates: Sequence[FieldValue]) -> List[List[FieldValue]]:
    groups: Dict[Hashable, List[FieldValue]] = {}
    for fv in candidates:
        groups.setdefault(group_key(fv.value), []).append(fv)
    return list(groups.values())
