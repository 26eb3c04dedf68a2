from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pipelines.identity.evidence import Region

OCR_TRANSIENT = "OCR_TRANSIENT"
OCR_FAILED = "OCR_FAILED"
OCR_UNAVAILABLE = "OCR_UNAVAILABLE"


@dataclass(frozen=True)
class LayoutBlock:
    """One line or block of recognised text with its position."""

    text: str
    page: int = 1
    region: Optional[Region] = None
    confidence: Optional[float] = None


@dataclass
class OcrResult:
    success: bool
    raw_text: str = ""
    layout_blocks: List[LayoutBlock] = field(default_factory=list)
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, raw_text: str, layout_blocks: Optional[List[LayoutBlock]] = None) -> "OcrResult":
        return cls(success=True, raw_text=raw_text, layout_blocks=list(layout_blocks or []))

    @classmethod
    def failed(cls, error: str, error_code: str = OCR_FAILED) -> "OcrResult":
        return cls(success=False, error=error, error_code=error_code)


def block_to_dict(block: LayoutBlock) -> Dict[str, Any]:
    region = block.region
    return {
        "text": block.text,
        "page": block.page,
        "bbox": [region.x, region.y, region.width, region.height] if region else None,
        "confidence": block.confidence,
    }


def block_from_dict(data: Dict[str, Any]) -> LayoutBlock:
    bbox = data.get("bbox")
    return LayoutBlock(
        text=data["text"],
        page=int(data.get("page") or 1),
        region=Region(*bbox) if bbox and len(bbox) == 4 else None,
        confidence=data.get("confidence"),
    )
