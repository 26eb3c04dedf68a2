"""
Scoring Logic for Identity Matching (v1).

Responsibilities:
- Combine per-field scores into a 0-100 overall score with fixed weights.
- Map an overall score onto a Decision.
- Flag ambiguous field-score patterns for escalation.

Non-Responsibilities:
- No similarity computation.
- No database access.

Invariant:
Given identical inputs, this module must always return the same score and
decision. These thresholds are the only escalation thresholds in the system.
"""

from typing import Dict, Sequence

from .results import Decision, FieldMatch

WEIGHTS: Dict[str, float] = {
    "full_name": 0.30,
    "institution": 0.30,
    "program_or_degree": 0.25,
    "enrollment_period": 0.15,
}

APPROVE_THRESHOLD = 80.0
REVIEW_THRESHOLD = 60.0

AMBIGUOUS_HIGH = 0.8
AMBIGUOUS_LOW = 0.6


def weighted_score(results: Sequence[FieldMatch]) -> float:
    """Weighted mean over compared fields only, scaled to [0, 100]."""
    total_weight = sum(WEIGHTS[r.field_name] for r in results)
    if total_weight <= 0:
        return 0.0
    weighted = sum(r.score * WEIGHTS[r.field_name] for r in results)
    return max(0.0, min(100.0, weighted / total_weight * 100))


def decide(score: float) -> Decision:
    if score >= APPROVE_THRESHOLD:
        return Decision.APPROVED
    if score >= REVIEW_THRESHOLD:
        return Decision.PENDING_REVIEW
    return Decision.REJECTED


def is_ambiguous(field_scores: Dict[str, float]) -> bool:
    """Some fields agree strongly while others clearly disagree."""
    scores = list(field_scores.values())
    return any(s >= AMBIGUOUS_HIGH for s in scores) and any(s < AMBIGUOUS_LOW for s in scores)
