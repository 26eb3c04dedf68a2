"""
Feature Extraction for Identity Matching.

Responsibilities:
- Compute per-field similarity features between a claimed and a documented value.
- Normalize and compare fields (name, institution, program, enrollment period).

Non-Responsibilities:
- No weighting logic.
- No threshold logic.
- No persistence.

Invariant:
Every similarity is within [0, 1]. Missing data is never scored here; the
matcher only calls these functions when both sides are present.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Set, Tuple

from rapidfuzz.distance import Levenshtein

from credverify.normalize import (
    normalize_institution,
    normalize_name,
    normalize_program,
    tokens,
)
from pipelines.identity.record import EnrollmentPeriod

TOKEN_AGREEMENT = 0.8
ALIAS_FLOOR = 0.95
SYNONYM_FLOOR = 0.8

PROGRAM_FILLER = {"in", "of", "and", "the", "with", "hons", "honours"}

# Each tuple is one institution under its common spellings.
INSTITUTION_ALIASES: Tuple[Tuple[str, ...], ...] = (
    ("IIT Delhi", "Indian Institute of Technology Delhi", "IIT-D", "IITD"),
    ("IIT Bombay", "Indian Institute of Technology Bombay", "IIT-B", "IITB"),
    ("IIT Madras", "Indian Institute of Technology Madras", "IIT-M", "IITM"),
    ("Stanford University", "Stanford", "Stanford Univ", "Leland Stanford Junior University"),
    ("MIT", "Massachusetts Institute of Technology", "MIT Cambridge"),
)


@dataclass(frozen=True)
class SynonymBucket:
    canonical: str
    kind: str  # "degree" or "subject"
    aliases: Tuple[str, ...]

    def variants(self) -> List[List[str]]:
        return [tokens(v) for v in (self.canonical,) + self.aliases]


PROGRAM_SYNONYMS: Tuple[SynonymBucket, ...] = (
    SynonymBucket("computer science", "subject",
                  ("cs", "cse", "computer science engineering", "computer engineering",
                   "information technology")),
    SynonymBucket("mechanical engineering", "subject", ("mech", "mechanical", "mechanical engg")),
    SynonymBucket("electrical engineering", "subject", ("ee", "eee", "ece", "electrical", "electronics")),
    SynonymBucket("business administration", "subject", ("management", "business studies")),
    SynonymBucket("bachelor of technology", "degree",
                  ("btech", "bachelor technology", "bachelor of engineering", "be")),
    SynonymBucket("master of technology", "degree", ("mtech", "master of engineering", "me")),
    SynonymBucket("master of science", "degree", ("msc", "ms")),
    SynonymBucket("master of business administration", "degree", ("mba",)),
)


def string_similarity(a: str, b: str) -> float:
    """1 - editDistance / maxLen; two empty strings are identical."""
    if a == b:
        return 1.0
    return Levenshtein.normalized_similarity(a, b)


# -- name --------------------------------------------------------------------

def name_similarity(user: str, document: str) -> Tuple[float, bool]:
    """Return (score, first_and_last_tokens_agree)."""
    u, d = normalize_name(user), normalize_name(document)
    score = 1.0 if u == d else string_similarity(u, d)

    ut, dt = u.split(), d.split()
    agree = bool(ut and dt) and (
        string_similarity(ut[0], dt[0]) >= TOKEN_AGREEMENT
        and string_similarity(ut[-1], dt[-1]) >= TOKEN_AGREEMENT
    )
    return score, agree


# -- institution -------------------------------------------------------------

def _alias_key(name: str) -> str:
    return "".join(tokens(name))


def alias_group(name: str) -> Optional[Tuple[str, ...]]:
    key = _alias_key(name)
    for group in INSTITUTION_ALIASES:
        if key in {_alias_key(n) for n in group}:
            return group
    return None


def _significant_tokens(name: str) -> List[str]:
    return [t for t in tokens(name) if t not in {"of", "the", "and"}]


def is_acronym_of(short: str, long: str) -> bool:
    """True when ``short`` abbreviates a prefix of ``long`` and the rest agrees.

    "MIT" / "Massachusetts Institute of Technology" and
    "IIT Delhi" / "Indian Institute of Technology Delhi" both qualify.
    """
    s = _significant_tokens(short)
    t = _significant_tokens(long)
    if not s or len(s[0]) < 2 or len(t) <= len(s):
        return False
    head, rest = s[0], s[1:]
    for k in range(2, len(t) + 1):
        if "".join(w[0] for w in t[:k]) == head and t[k:] == rest:
            return True
    return False


def institution_similarity(user: str, document: str) -> Tuple[float, Optional[str]]:
    """Return (score, alias_note); the note is set when an alias or acronym rule fired."""
    score = string_similarity(normalize_institution(user), normalize_institution(document))
    if score >= ALIAS_FLOOR:
        return score, None

    group = alias_group(user)
    if group is not None and group == alias_group(document):
        return ALIAS_FLOOR, group[0]
    if is_acronym_of(user, document) or is_acronym_of(document, user):
        return ALIAS_FLOOR, "acronym"
    return score, None


# -- program -----------------------------------------------------------------

def _contains(haystack: Sequence[str], needle: Sequence[str]) -> bool:
    n = len(needle)
    if n == 0:
        return False
    return any(list(haystack[i:i + n]) == list(needle) for i in range(len(haystack) - n + 1))


def synonym_buckets(program: str) -> Set[SynonymBucket]:
    toks = tokens(program)
    return {b for b in PROGRAM_SYNONYMS if any(_contains(toks, v) for v in b.variants())}


def _uncovered_tokens(program: str, buckets: Set[SynonymBucket]) -> List[str]:
    """Tokens of ``program`` that none of ``buckets`` account for, filler words aside."""
    toks = tokens(program)
    covered = [False] * len(toks)
    for bucket in buckets:
        for variant in bucket.variants():
            n = len(variant)
            for i in range(len(toks) - n + 1):
                if toks[i:i + n] == variant:
                    covered[i:i + n] = [True] * n
    return [t for t, c in zip(toks, covered) if not c and t not in PROGRAM_FILLER]


def program_similarity(user: str, document: str) -> Tuple[float, Tuple[str, ...]]:
    """Return (score, shared synonym canonicals).

    The synonym floor applies when the sides share a bucket and do not name
    different buckets of the same kind (B.Tech CSE is not B.Tech Mechanical).
    A shared degree alone is not enough: either a subject bucket is shared
    too, or neither side names a subject (B.Tech Civil is not B.Tech CSE).
    """
    score = string_similarity(normalize_program(user), normalize_program(document))

    ub, db = synonym_buckets(user), synonym_buckets(document)
    shared = ub & db
    if not shared:
        return score, ()
    for kind in ("degree", "subject"):
        uk = {b for b in ub if b.kind == kind}
        dk = {b for b in db if b.kind == kind}
        if uk and dk and uk != dk:
            return score, ()
    if not any(b.kind == "subject" for b in shared):
        if _uncovered_tokens(user, shared) or _uncovered_tokens(document, shared):
            return score, ()
    names = tuple(sorted(b.canonical for b in shared))
    return max(score, SYNONYM_FLOOR), names


# -- enrollment --------------------------------------------------------------

def enrollment_overlap(user: EnrollmentPeriod, document: EnrollmentPeriod) -> Tuple[float, int]:
    """Return (overlap / average duration clamped to [0, 1], overlapping years)."""
    overlap = max(0, min(user.end_year, document.end_year) - max(user.start_year, document.start_year) + 1)
    average = (user.duration + document.duration) / 2
    if average <= 0:
        return 0.0, overlap
    return max(0.0, min(1.0, overlap / average)), overlap

