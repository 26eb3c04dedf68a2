"""
Verification pipeline (pure part).

Responsibilities:
- Run extract -> resolve -> match over already-OCRed documents.
- Package everything an attempt must persist (extracted data, match result).

Non-Responsibilities:
- No OCR calls, no database access, no state transitions.

Invariant:
The outcome is a pure function of (claims, documents, extractor); running it
twice on the same inputs yields the same score and decision.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from credverify.ocr.models import LayoutBlock, block_from_dict, block_to_dict
from pipelines.entity_resolution.resolver import resolve
from pipelines.extraction.document_classifier import Classification, classify_document
from pipelines.extraction.field_extractor import FieldExtractor
from pipelines.identity.record import IdentityRecord
from pipelines.matching.matcher import match
from pipelines.matching.results import MatchResult

OCR_TEXT_SEPARATOR = "\n\f\n"


@dataclass(frozen=True)
class DocumentText:
    """OCR output for one stored document."""

    source: str
    raw_text: str
    layout_blocks: List[LayoutBlock] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "text": self.raw_text,
            "blocks": [block_to_dict(b) for b in self.layout_blocks],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentText":
        return cls(
            source=data["source"],
            raw_text=data.get("text") or "",
            layout_blocks=[block_from_dict(b) for b in data.get("blocks") or []],
        )


@dataclass(frozen=True)
class PipelineOutcome:
    documents: List[DocumentText]
    classifications: List[Classification]
    partials: List[IdentityRecord]
    resolved: IdentityRecord
    match_result: MatchResult

    @property
    def ocr_text(self) -> str:
        return OCR_TEXT_SEPARATOR.join(d.raw_text for d in self.documents)

    def extracted_data(self) -> Dict[str, Any]:
        docs = []
        for doc, cls in zip(self.documents, self.classifications):
            entry = doc.to_dict()
            entry.update(cls.to_dict())
            docs.append(entry)
        return {
            "resolved": self.resolved.to_dict(),
            "partials": [p.to_dict() for p in self.partials],
            "documents": docs,
        }


def run_pipeline(
    claims: IdentityRecord,
    documents: Sequence[DocumentText],
    extractor: FieldExtractor,
) -> PipelineOutcome:
    partials: List[IdentityRecord] = []
    classifications: List[Classification] = []
    for doc in documents:
        classifications.append(classify_document(doc.raw_text))
        partials.extend(extractor.extract_document(doc.raw_text, doc.source, doc.layout_blocks))

    resolved = resolve(partials)
    return PipelineOutcome(
        documents=list(documents),
        classifications=classifications,
        partials=partials,
        resolved=resolved,
        match_result=match(claims, resolved),
    )


def documents_from_extracted_data(extracted_data: Dict[str, Any]) -> List[DocumentText]:
    """Rebuild the pipeline input persisted with an attempt."""
    return [DocumentText.from_dict(d) for d in (extracted_data or {}).get("documents", [])]
