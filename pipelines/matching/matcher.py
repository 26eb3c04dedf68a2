"""
Identity Matcher.

Responsibilities:
- Compare a claimed IdentityRecord against the resolved document record.
- Produce per-field typed results with explanations, an overall score and a decision.

Non-Responsibilities:
- No persistence.
- No state transitions; the decision is advisory to the orchestrator.

Invariant:
Only fields present on both sides are compared. The explanation is always
populated because reviewers and appellants read it.
"""

from typing import List

from pipelines.identity.record import IdentityRecord

from .features import enrollment_overlap, institution_similarity, name_similarity, program_similarity
from .results import (
    Decision,
    EnrollmentMatch,
    FieldMatch,
    InstitutionMatch,
    MatchResult,
    NameMatch,
    ProgramMatch,
)
from .scoring import decide, weighted_score


def match_name(user: str, document: str) -> NameMatch:
    score, agree = name_similarity(user, document)
    if score >= 0.9:
        text = "Names match exactly or nearly exactly"
    elif score >= 0.7:
        text = "Names are similar with minor differences"
    elif score >= 0.5:
        text = "Names have some similarity but significant differences"
    else:
        text = "Names do not match"
    if score < 1.0:
        if agree:
            text += "; first and last names agree"
        else:
            text += "; first and last names differ"
    return NameMatch(user, document, score, text, first_last_agree=agree)


def match_institution(user: str, document: str) -> InstitutionMatch:
    score, alias = institution_similarity(user, document)
    if score >= 0.8:
        text = "Institution names match closely"
    elif score >= 0.6:
        text = "Institution names are similar"
    else:
        text = "Institution names do not match"
    if alias == "acronym":
        text += " (acronym)"
    elif alias:
        text += f" (known alias of {alias})"
    return InstitutionMatch(user, document, score, text, matched_alias=alias)


def match_program(user: str, document: str) -> ProgramMatch:
    score, groups = program_similarity(user, document)
    if score >= 0.8:
        text = "Programs match or are equivalent"
    elif score >= 0.6:
        text = "Programs are similar"
    else:
        text = "Programs do not match well"
    if groups:
        text += f" (synonyms: {', '.join(groups)})"
    return ProgramMatch(user, document, score, text, synonym_groups=groups)


def match_enrollment(user, document) -> EnrollmentMatch:
    score, overlap = enrollment_overlap(user, document)
    if score >= 0.8:
        text = "Enrollment periods overlap significantly"
    elif score > 0:
        text = "Enrollment periods partially overlap"
    else:
        text = "Enrollment periods do not overlap"
    text += f" ({overlap} shared year{'s' if overlap != 1 else ''})"
    return EnrollmentMatch(user, document, score, text, overlap_years=overlap)


def explain(results: List[FieldMatch], score: float, decision: Decision) -> str:
    parts = [f"Overall verification score: {score:.1f}/100"]
    if not results:
        parts.append("No comparable fields were found in the document")
    for r in results:
        parts.append(f"{r.label}: {round(r.score * 100)}% - {r.explanation}")
    parts.append(f"Decision: {decision.value}")
    return ". ".join(parts)


def match(claims: IdentityRecord, document: IdentityRecord) -> MatchResult:
    results: List[FieldMatch] = []

    if claims.full_name and document.full_name:
        results.append(match_name(claims.full_name.value, document.full_name.value))
    if claims.institution and document.institution:
        results.append(match_institution(claims.institution.value, document.institution.value))
    if claims.program_or_degree and document.program_or_degree:
        results.append(
            match_program(claims.program_or_degree.value, document.program_or_degree.value)
        )
    if claims.enrollment_period and document.enrollment_period:
        results.append(
            match_enrollment(claims.enrollment_period.value, document.enrollment_period.value)
        )

    score = weighted_score(results)
    decision = decide(score)
    return MatchResult(
        overall_score=score,
        decision=decision,
        field_results=results,
        explanation=explain(results, score, decision),
    )
