"""
Identity Resolver.

Responsibilities:
- Fuse partial IdentityRecords (pages, documents, OCR passes) into one record.
- Pick, per field, the most reliable value and boost it when corroborated.
- Keep the evidence of every agreeing candidate.

Non-Responsibilities:
- No database access.
- No comparison against user claims.
- No mutation of its inputs.

Invariant:
This module must be deterministic given the same inputs, and resolving a
single record returns that record unchanged.
"""

from typing import List, Optional, Sequence

from pipelines.identity.evidence import EvidenceRef, FieldValue
from pipelines.identity.record import FIELD_NAMES, IdentityRecord

from .candidate_selector import collect_candidates, group_candidates

REPETITION_STEP = 0.1
MAX_REPETITION_BONUS = 0.3


def repetition_bonus(group_size: int) -> float:
    return min(MAX_REPETITION_BONUS, (group_size - 1) * REPETITION_STEP)


def group_score(group: Sequence[FieldValue]) -> float:
    avg = sum(fv.confidence for fv in group) / len(group)
    return avg + repetition_bonus(len(group))


def resolve_field(candidates: Sequence[FieldValue]) -> Optional[FieldValue]:
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0]

    best_group: List[FieldValue] = []
    best_score = -1.0
    for group in group_candidates(candidates):
        score = group_score(group)
        # strict comparison: on ties the first-seen group wins
        if score > best_score:
            best_score = score
            best_group = group

    best = best_group[0]
    for fv in best_group[1:]:
        if fv.confidence > best.confidence:
            best = fv

    evidence: List[EvidenceRef] = []
    for fv in best_group:
        for ev in fv.evidence:
            if ev not in evidence:
                evidence.append(ev)

    return FieldValue(
        value=best.value,
        confidence=min(1.0, best.confidence + repetition_bonus(len(best_group))),
        evidence=tuple(evidence),
    )


def resolve(records: Sequence[IdentityRecord]) -> IdentityRecord:
    """Merge partial records into the best available document-side identity."""
    if not records:
        return IdentityRecord()
    if len(records) == 1:
        return records[0]

    resolved = IdentityRecord()
    for name in FIELD_NAMES:
        value = resolve_field(collect_candidates(records, name))
        if value is not None:
            resolved = resolved.with_field(name, value)
    return resolved
