"""
Field Extractor.

Responsibilities:
- Turn OCR text (and optional layout blocks) into a sparse IdentityRecord.
- Attach an OCR EvidenceRef with page and region to every field it finds.
- Grade each field with the fixed confidence of the rule that produced it.

Non-Responsibilities:
- No OCR calls, no comparison against claims, no persistence.

Invariant:
Extraction is deterministic for a given (text, layout, clock) and never
raises on garbled input; unrecognisable text yields an empty record.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Iterable, List, Optional, Pattern, Sequence, Tuple

from credverify.normalize import collapse_whitespace, normalize_text, tidy_case
from credverify.ocr.models import LayoutBlock
from pipelines.identity.evidence import EvidenceKind, EvidenceRef, FieldValue
from pipelines.identity.record import EnrollmentPeriod, IdentityRecord

MIN_YEAR = 1950
FUTURE_YEAR_SLACK = 5
TYPICAL_PROGRAM_YEARS = 4
HEURISTIC_NAME_LINES = 5

# Label-anchored rules sit in the 0.85-0.95 band, heuristics in 0.55-0.75.
RANGE_CONFIDENCE = 0.9
YEAR_SPREAD_CONFIDENCE = 0.75
SINGLE_YEAR_CONFIDENCE = 0.55
HEURISTIC_NAME_CONFIDENCE = 0.65
HEURISTIC_INSTITUTION_CONFIDENCE = 0.7


@dataclass(frozen=True)
class Rule:
    pattern: Pattern
    confidence: float


def _label(expr: str) -> str:
    return r"^\s*" + expr + r"\s*[:\-]\s*(?P<value>.+)$"


NAME_RULES: Tuple[Rule, ...] = (
    Rule(
        re.compile(
            _label(r"(?:full\s+|student(?:'s|s)?\s+|candidate(?:'s|s)?\s+)?name"
                   r"(?:\s+of\s+(?:the\s+)?(?:student|candidate))?"),
            re.I,
        ),
        0.92,
    ),
    Rule(re.compile(_label(r"student"), re.I), 0.88),
    Rule(re.compile(_label(r"candidate"), re.I), 0.86),
    Rule(
        re.compile(
            r"(?i:certify\s+that)\s+(?:(?i:mr|ms|mrs|miss|shri|smt|kumari|km)\.?\s+)?"
            r"(?P<value>[A-Z][A-Za-z.'\-]*(?:\s+[A-Z][A-Za-z.'\-]*){0,4})"
            r"(?=\s*,|\s+(?:son|daughter|s/o|d/o|has|had|was|is|bearing|with)\b)",
        ),
        0.85,
    ),
)

FATHERS_NAME_RULES: Tuple[Rule, ...] = (
    Rule(re.compile(_label(r"father(?:'s|s)?\s*name"), re.I), 0.9),
    Rule(
        re.compile(
            r"\b(?i:s/o|son\s+of|d/o|daughter\s+of)\s+(?:(?i:mr|shri|sh)\.?\s+)?"
            r"(?P<value>[A-Z][A-Za-z.'\-]*(?:\s+[A-Z][A-Za-z.'\-]*){0,4})"
        ),
        0.8,
    ),
)

INSTITUTION_RULES: Tuple[Rule, ...] = (
    Rule(re.compile(_label(r"(?:name\s+of\s+(?:the\s+)?)?university(?:\s+name)?"), re.I), 0.92),
    Rule(re.compile(_label(r"(?:name\s+of\s+(?:the\s+)?)?college(?:\s+name)?"), re.I), 0.9),
    Rule(re.compile(_label(r"(?:name\s+of\s+(?:the\s+)?)?institut(?:e|ion)(?:\s+name)?"), re.I), 0.9),
)

PROGRAM_RULES: Tuple[Rule, ...] = (
    Rule(re.compile(_label(r"(?:name\s+of\s+(?:the\s+)?)?degree(?:\s+awarded)?"), re.I), 0.92),
    Rule(re.compile(_label(r"program(?:me)?(?:\s+of\s+study)?"), re.I), 0.9),
    Rule(re.compile(_label(r"course(?:\s+name)?"), re.I), 0.88),
)

DEPARTMENT_RULES: Tuple[Rule, ...] = (
    Rule(re.compile(_label(r"(?:department|dept\.?)"), re.I), 0.9),
    Rule(re.compile(_label(r"(?:branch|discipline|speciali[sz]ation)"), re.I), 0.86),
)

ROLL_NUMBER_RULES: Tuple[Rule, ...] = (
    Rule(
        re.compile(
            r"^\s*(?:roll|enrol(?:l)?ment|registration|reg\.?)\s*(?:no\.?|number|#)\s*[:\-]?\s*"
            r"(?P<value>[A-Za-z0-9/\-]+)",
            re.I,
        ),
        0.9,
    ),
)

DOB_RULE = Rule(
    re.compile(_label(r"(?:date\s+of\s+birth|d\.?\s?o\.?\s?b\.?|birth\s*date)"), re.I), 0.9
)

# Degree names appearing in running text
DEGREE_PHRASE = re.compile(
    r"\b(?P<value>(?:Bachelor|Master|Doctor)\s+of\s+[A-Za-z&() ]+?)"
    r"(?=\s+(?:with|on|from|at|during|for|in\s+the\s+year|session|batch)\b|[,.;:]|\s{2,}|$)",
    re.I,
)
DEGREE_ABBREVIATION = re.compile(
    r"(?<![A-Za-z])(?:[BM]\.?\s?(?:Tech|Sc|Com|Des|Arch|Pharm|Phil)|MBA|BBA|BCA|MCA|Ph\.?\s?D)\b\.?",
    re.I,
)
DEGREE_DOTTED = re.compile(r"(?<![A-Za-z])[BM]\.(?:E|A)\.")
DEGREE_TAIL_STOP = re.compile(
    r"\s+(?:with|on|from|at|during|for|in\s+the\s+year|session|batch)\b|[,;:]|\s{2,}|\d"
)
PHRASE_CONFIDENCE = 0.85
ABBREVIATION_CONFIDENCE = 0.8

INSTITUTION_KEYWORDS = re.compile(
    r"\b(?:university|college|institute|institution|school|academy|vidyalaya|vishwavidyalaya)\b", re.I
)
SENTENCE_MARKERS = re.compile(r"\b(?:certify|certified|awarded|conferred|hereby|passed)\b", re.I)

NON_NAME_WORDS = {
    "university", "college", "institute", "school", "academy", "certificate", "degree",
    "transcript", "provisional", "bachelor", "master", "doctor", "marks", "statement",
    "grade", "semester", "examination", "board", "government", "republic", "department",
    "faculty", "technology", "engineering", "science", "arts", "commerce", "registrar",
    "controller", "dean", "convocation", "diploma", "record", "academic",
}
CAPITALIZED_WORD = re.compile(r"^[A-Z][a-z]+(?:[-'][A-Z]?[a-z]+)?$")
HONORIFIC = re.compile(r"^(?:mr|ms|mrs|miss|dr|shri|smt|sh|kumari|km)\.?\s+", re.I)
PERSON_NAME_CHARS = re.compile(r"^[A-Za-z][A-Za-z.'\- ]*")

YEAR = re.compile(r"(?<!\d)(19\d{2}|20\d{2})(?!\d)")
YEAR_RANGE = re.compile(
    r"(?<!\d)(?P<start>19\d{2}|20\d{2})\s*(?:-|–|—|to|/|till|until)\s*"
    r"(?P<end>19\d{2}|20\d{2}|\d{2}(?![/.\-]\d))(?!\d)",
    re.I,
)
NON_ENROLLMENT_LINE = re.compile(
    r"birth|d\.?\s?o\.?\s?b|\bissued?\b|date\s+of\s+issue|printed|generated", re.I
)

DATE_CANDIDATE = re.compile(
    r"\d{1,2}[/.\-]\d{1,2}[/.\-]\d{4}"
    r"|\d{4}-\d{2}-\d{2}"
    r"|\d{1,2}(?:st|nd|rd|th)?\s+[A-Za-z]{3,9}\.?,?\s+\d{4}"
    r"|[A-Za-z]{3,9}\.?\s+\d{1,2}(?:st|nd|rd|th)?,?\s+\d{4}"
)
DATE_FORMATS = (
    "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%Y-%m-%d",
    "%d %B %Y", "%d %b %Y", "%B %d %Y", "%b %d %Y",
)
ORDINAL_SUFFIX = re.compile(r"(?<=\d)(?:st|nd|rd|th)\b")

SEGMENT_SPLIT = re.compile(r"\s{3,}|\t+|\s+\|\s+")


@dataclass(frozen=True)
class _Segment:
    """A logical line of OCR text with the line it came from."""

    text: str
    line: str


class FieldExtractor:
    """Heuristic, rule-based extractor for academic documents."""

    def __init__(
        self,
        current_year: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.now,
        typical_program_years: int = TYPICAL_PROGRAM_YEARS,
    ):
        self.clock = clock
        self._current_year = current_year
        self.typical_program_years = typical_program_years

    @property
    def current_year(self) -> int:
        return self._current_year or self.clock().year

    def extract(
        self,
        text: str,
        source: str,
        layout_blocks: Optional[Sequence[LayoutBlock]] = None,
        page: Optional[int] = None,
    ) -> IdentityRecord:
        """Extract one partial record from a single text (usually one page)."""
        if text is None:
            return IdentityRecord()
        if not isinstance(text, str):
            raise TypeError(f"OCR text must be str, got {type(text).__name__}")

        lines = [collapse_whitespace(l) for l in text.splitlines()]
        lines = [l for l in lines if l]
        if not lines:
            return IdentityRecord()

        ctx = _Context(
            source=source,
            page=page,
            blocks=list(layout_blocks or []),
            extracted_at=self.clock(),
        )
        segments = _segments(lines)

        return IdentityRecord(
            full_name=self._full_name(segments, lines, ctx),
            fathers_name=self._by_rules(FATHERS_NAME_RULES, segments, ctx, clean=_clean_person_name),
            date_of_birth=self._date_of_birth(segments, ctx),
            institution=self._institution(segments, lines, ctx),
            program_or_degree=self._program(segments, lines, ctx),
            department=self._by_rules(DEPARTMENT_RULES, segments, ctx, clean=_clean_label_value),
            enrollment_period=self._enrollment_period(lines, ctx),
            roll_number=self._by_rules(ROLL_NUMBER_RULES, segments, ctx, clean=_clean_roll_number),
        )

    def extract_document(
        self,
        raw_text: str,
        source: str,
        layout_blocks: Optional[Sequence[LayoutBlock]] = None,
    ) -> List[IdentityRecord]:
        """Extract one record per page when layout shows several pages."""
        blocks = list(layout_blocks or [])
        pages = sorted({b.page for b in blocks})
        if len(pages) < 2:
            page = pages[0] if pages else None
            return [self.extract(raw_text, source, blocks, page=page)]

        records = []
        for page in pages:
            page_blocks = [b for b in blocks if b.page == page]
            page_text = "\n".join(b.text for b in page_blocks)
            records.append(self.extract(page_text, source, page_blocks, page=page))
        return records

    # -- individual fields -------------------------------------------------

    def _by_rules(
        self,
        rules: Iterable[Rule],
        segments: Sequence[_Segment],
        ctx: "_Context",
        clean: Callable[[str], Optional[str]],
    ) -> Optional[FieldValue[str]]:
        for rule in rules:
            for seg in segments:
                m = rule.pattern.search(seg.text)
                if not m:
                    continue
                value = clean(m.group("value"))
                if value:
                    return FieldValue(value, rule.confidence, (ctx.evidence(seg.line),))
        return None

    def _full_name(self, segments, lines, ctx) -> Optional[FieldValue[str]]:
        found = self._by_rules(NAME_RULES, segments, ctx, clean=_clean_person_name)
        if found:
            return found
        for line in lines[:HEURISTIC_NAME_LINES]:
            candidate = tidy_case(line)
            if _looks_like_name(candidate):
                return FieldValue(candidate, HEURISTIC_NAME_CONFIDENCE, (ctx.evidence(line),))
        return None

    def _institution(self, segments, lines, ctx) -> Optional[FieldValue[str]]:
        found = self._by_rules(INSTITUTION_RULES, segments, ctx, clean=_clean_label_value)
        if found:
            return found
        for line in lines:
            if len(line) > 10 and INSTITUTION_KEYWORDS.search(line) and not SENTENCE_MARKERS.search(line):
                value = _clean_label_value(line)
                if value:
                    return FieldValue(value, HEURISTIC_INSTITUTION_CONFIDENCE, (ctx.evidence(line),))
        return None

    def _program(self, segments, lines, ctx) -> Optional[FieldValue[str]]:
        found = self._by_rules(PROGRAM_RULES, segments, ctx, clean=_clean_label_value)
        if found:
            return found
        for line in lines:
            m = DEGREE_PHRASE.search(line)
            if m:
                value = _clean_label_value(m.group("value"))
                if value:
                    return FieldValue(value, PHRASE_CONFIDENCE, (ctx.evidence(line),))
        for line in lines:
            m = DEGREE_ABBREVIATION.search(line) or DEGREE_DOTTED.search(line)
            if m:
                tail = line[m.end():]
                stop = DEGREE_TAIL_STOP.search(tail)
                if stop:
                    tail = tail[: stop.start()]
                value = _clean_label_value(m.group(0) + tail)
                if value:
                    return FieldValue(value, ABBREVIATION_CONFIDENCE, (ctx.evidence(line),))
        return None

    def _date_of_birth(self, segments, ctx) -> Optional[FieldValue[date]]:
        for seg in segments:
            m = DOB_RULE.pattern.search(seg.text)
            if not m:
                continue
            parsed = parse_date(m.group("value"))
            if parsed and parsed.year <= self.current_year:
                return FieldValue(parsed, DOB_RULE.confidence, (ctx.evidence(seg.line),))
        return None

    def _enrollment_period(self, lines, ctx) -> Optional[FieldValue[EnrollmentPeriod]]:
        latest = self.current_year + FUTURE_YEAR_SLACK
        candidates = [l for l in lines if not NON_ENROLLMENT_LINE.search(l)]

        for line in candidates:
            for m in YEAR_RANGE.finditer(line):
                start = int(m.group("start"))
                end_raw = m.group("end")
                if len(end_raw) == 2:
                    end = (start // 100) * 100 + int(end_raw)
                    if end < start:
                        continue
                else:
                    end = int(end_raw)
                start, end = min(start, end), max(start, end)
                if MIN_YEAR <= start and end <= latest:
                    return FieldValue(
                        EnrollmentPeriod(start, end), RANGE_CONFIDENCE, (ctx.evidence(line),)
                    )

        seen: List[Tuple[int, str]] = []
        for line in candidates:
            for m in YEAR.finditer(line):
                year = int(m.group(1))
                if MIN_YEAR <= year <= latest:
                    seen.append((year, line))
        if not seen:
            return None

        years = sorted({y for y, _ in seen})
        evidence = tuple(ctx.evidence(line) for line in _unique(l for _, l in seen))
        if len(years) >= 2:
            return FieldValue(
                EnrollmentPeriod(years[0], years[-1]), YEAR_SPREAD_CONFIDENCE, evidence
            )
        end = years[0]
        return FieldValue(
            EnrollmentPeriod(end - self.typical_program_years, end),
            SINGLE_YEAR_CONFIDENCE,
            evidence,
        )


@dataclass
class _Context:
    source: str
    page: Optional[int]
    blocks: List[LayoutBlock]
    extracted_at: datetime

    def evidence(self, line: str) -> EvidenceRef:
        block = _find_block(self.blocks, line)
        page = self.page
        region = None
        if block is not None:
            page = block.page
            region = block.region
        return EvidenceRef(
            kind=EvidenceKind.DOCUMENT_OCR,
            source=self.source,
            page=page,
            region=region,
            extracted_at=self.extracted_at,
        )


def _find_block(blocks: Sequence[LayoutBlock], line: str) -> Optional[LayoutBlock]:
    target = normalize_text(line)
    if not target:
        return None
    for block in blocks:
        if normalize_text(block.text) == target:
            return block
    for block in blocks:
        text = normalize_text(block.text)
        if text and (target in text or text in target):
            return block
    return None


def _segments(lines: Sequence[str]) -> List[_Segment]:
    out = []
    for line in lines:
        for part in SEGMENT_SPLIT.split(line):
            part = part.strip()
            if part:
                out.append(_Segment(part, line))
    return out


def _unique(items: Iterable[str]) -> List[str]:
    out: List[str] = []
    for item in items:
        if item not in out:
            out.append(item)
    return out


def _looks_like_name(line: str) -> bool:
    words = line.split()
    if not 2 <= len(words) <= 4:
        return False
    if any(w.lower() in NON_NAME_WORDS for w in words):
        return False
    return all(CAPITALIZED_WORD.match(w) for w in words)


def _clean_label_value(raw: str) -> Optional[str]:
    value = collapse_whitespace(raw).strip(" .,;:-|")
    if len(value) < 2 or not any(c.isalpha() for c in value):
        return None
    return tidy_case(value)


def _clean_person_name(raw: str) -> Optional[str]:
    value = HONORIFIC.sub("", collapse_whitespace(raw))
    m = PERSON_NAME_CHARS.match(value)
    if not m:
        return None
    value = m.group(0).strip(" .-'")
    words = value.split()
    if not words or len(words) > 6 or len(value) < 2:
        return None
    return tidy_case(value)


def _clean_roll_number(raw: str) -> Optional[str]:
    value = raw.strip(" .,;:-/")
    if not any(c.isdigit() for c in value):
        return None
    return value.upper()


def parse_date(raw: str) -> Optional[date]:
    """Parse the first date-looking substring of ``raw``; None if there is none."""
    m = DATE_CANDIDATE.search(raw)
    if not m:
        return None
    candidate = ORDINAL_SUFFIX.sub("", m.group(0))
    candidate = " ".join(candidate.replace(",", " ").split())
    if re.match(r"^[A-Za-z]", candidate) or re.match(r"^\d{1,2} [A-Za-z]", candidate):
        candidate = candidate.replace(".", "")
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue
    return None
