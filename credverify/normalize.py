import re
from typing import List

_DROP_CHARS = re.compile(r"[.'’`]")
_SEPARATORS = re.compile(r"[^\w\s]")

INSTITUTION_STOPWORDS = {"university", "college", "institute", "of", "the", "and"}


def normalize_text(s: str) -> str:
    return " ".join(s.strip().casefold().split())


def strip_punctuation(s: str) -> str:
    # "B.Tech" -> "BTech", "Jean-Luc" -> "Jean Luc"
    s = _DROP_CHARS.sub("", s)
    return _SEPARATORS.sub(" ", s)


def tokens(s: str) -> List[str]:
    return normalize_text(strip_punctuation(s)).split()


def normalize_name(name: str) -> str:
    return " ".join(tokens(name))


def normalize_program(program: str) -> str:
    return " ".join(tokens(program))


def normalize_institution(institution: str) -> str:
    return " ".join(t for t in tokens(institution) if t not in INSTITUTION_STOPWORDS)


def collapse_whitespace(s: str) -> str:
    return " ".join(s.split())


def tidy_case(s: str) -> str:
    """Title-case text that OCR returned in all caps; leave mixed case alone."""
    s = collapse_whitespace(s)
    letters = [c for c in s if c.isalpha()]
    if letters and all(c.isupper() for c in letters):
        return " ".join(w[:1].upper() + w[1:].lower() for w in s.split())
    return s
