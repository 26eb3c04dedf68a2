from dataclasses import dataclass
from typing import Any, Dict, List, Optional

MIN_YEAR = 1950
END_YEAR_SLACK = 5
MAX_FIELD_LENGTH = 200

REQUIRED_STR_FIELDS = ["name", "institution", "program"]
REQUIRED_YEAR_FIELDS = ["start_year", "end_year"]

# magic bytes -> document type
DOCUMENT_SIGNATURES = {
    b"%PDF-": "application/pdf",
    b"\x89PNG\r\n\x1a\n": "image/png",
    b"\xff\xd8\xff": "image/jpeg",
}


@dataclass(frozen=True)
class Claims:
    """What the user says about themselves on the verification form."""

    name: str
    institution: str
    program: str
    start_year: int
    end_year: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Claims":
        return cls(
            name=data.get("name"),
            institution=data.get("institution"),
            program=data.get("program"),
            start_year=data.get("start_year"),
            end_year=data.get("end_year"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "institution": self.institution,
            "program": self.program,
            "start_year": self.start_year,
            "end_year": self.end_year,
        }


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _is_year(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def validate_claims(claims: Claims, current_year: int) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    Start year must be within [1950, current year]; end year within
    [start year, current year + 5].
    """
    errors: List[str] = []
    data = claims.to_dict()

    for f in REQUIRED_STR_FIELDS:
        if data.get(f) is None:
            errors.append(f"Missing required field: {f}")
        elif not _is_non_empty_str(data[f]):
            errors.append(f"Field '{f}' must be a non-empty string")
        elif len(data[f]) > MAX_FIELD_LENGTH:
            errors.append(f"Field '{f}' must be at most {MAX_FIELD_LENGTH} characters")

    for f in REQUIRED_YEAR_FIELDS:
        if data.get(f) is None:
            errors.append(f"Missing required field: {f}")
        elif not _is_year(data[f]):
            errors.append(f"Field '{f}' must be an integer year")

    start, end = data.get("start_year"), data.get("end_year")
    if _is_year(start) and not MIN_YEAR <= start <= current_year:
        errors.append(f"Field 'start_year' must be between {MIN_YEAR} and {current_year}")
    if _is_year(start) and _is_year(end):
        latest = current_year + END_YEAR_SLACK
        if not start <= end <= latest:
            errors.append(f"Field 'end_year' must be between start_year ({start}) and {latest}")

    return errors


def detect_document_type(document: bytes) -> Optional[str]:
    for signature, mime in DOCUMENT_SIGNATURES.items():
        if document.startswith(signature):
            return mime
    return None


def validate_document(document: Any, max_bytes: int) -> List[str]:
    """Returns a list of problems with an uploaded document. Empty list means acceptable."""
    if not isinstance(document, (bytes, bytearray)):
        return ["Document must be provided as bytes"]
    errors: List[str] = []
    if len(document) == 0:
        errors.append("Document is empty")
        return errors
    if len(document) > max_bytes:
        errors.append(f"Document exceeds the {max_bytes} byte limit")
    if detect_document_type(bytes(document)) is None:
        errors.append("Only PDF, PNG and JPEG documents are accepted")
    return errors
