from .client import HttpOcrClient, OcrClient, parse_json_payload
from .hocr import parse_hocr
from .models import OCR_FAILED, OCR_TRANSIENT, OCR_UNAVAILABLE, LayoutBlock, OcrResult

__all__ = [
    "HttpOcrClient",
    "LayoutBlock",
    "OCR_FAILED",
    "OCR_TRANSIENT",
    "OCR_UNAVAILABLE",
    "OcrClient",
    "OcrResult",
    "parse_hocr",
    "parse_json_payload",
]
