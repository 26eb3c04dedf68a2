"""
Document Classifier.

Responsibilities:
- Guess what kind of academic document OCR text came from.

Non-Responsibilities:
- Does not gate verification; the type is recorded as metadata only.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Pattern


class DocumentType(str, Enum):
    PROVISIONAL_CERTIFICATE = "PROVISIONAL_CERTIFICATE"
    DEGREE_CERTIFICATE = "DEGREE_CERTIFICATE"
    TRANSCRIPT = "TRANSCRIPT"
    UNKNOWN = "UNKNOWN"


# Checked in order: "provisional degree certificate" is provisional.
DOCUMENT_PATTERNS: Dict[DocumentType, List[Pattern]] = {
    DocumentType.PROVISIONAL_CERTIFICATE: [
        re.compile(r"provisional.*certificate", re.I),
        re.compile(r"temporary.*certificate", re.I),
    ],
    DocumentType.DEGREE_CERTIFICATE: [
        re.compile(r"degree.*certificate", re.I),
        re.compile(r"bachelor.*degree", re.I),
        re.compile(r"master.*degree", re.I),
        re.compile(r"diploma", re.I),
        re.compile(r"graduation.*certificate", re.I),
    ],
    DocumentType.TRANSCRIPT: [
        re.compile(r"transcript", re.I),
        re.compile(r"mark.*sheet", re.I),
        re.compile(r"grade.*report", re.I),
        re.compile(r"academic.*record", re.I),
    ],
}

UNKNOWN_CONFIDENCE = 0.1


@dataclass(frozen=True)
class Classification:
    document_type: DocumentType
    confidence: float

    def to_dict(self) -> Dict[str, object]:
        return {"document_type": self.document_type.value, "confidence": self.confidence}


def classify_document(text: str) -> Classification:
    text = text or ""
    for doc_type, patterns in DOCUMENT_PATTERNS.items():
        matches = sum(1 for p in patterns if p.search(text))
        if matches:
            return Classification(doc_type, round(min(0.9, 0.3 + matches * 0.2), 2))
    return Classification(DocumentType.UNKNOWN, UNKNOWN_CONFIDENCE)
