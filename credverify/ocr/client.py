"""
OCR collaborator contract and the HTTP client used in production.

The OCR service is treated as unreliable: ``extract_text`` never raises for
service-side problems. It returns an ``OcrResult`` with ``success=False``,
an ``error`` message and an ``error_code`` the caller can surface.
"""

from typing import Any, Dict, Optional

import requests

from ..logger import get_logger
from ..retry import CircuitBreaker, CircuitOpenError, is_transient_error, should_retry_http_status
from .hocr import parse_hocr
from .models import OCR_FAILED, OCR_TRANSIENT, OCR_UNAVAILABLE, OcrResult, block_from_dict

logger = get_logger()


class OcrClient:
    """Interface: anything with ``extract_text(bytes) -> OcrResult``."""

    def extract_text(self, document: bytes) -> OcrResult:
        raise NotImplementedError


class OcrServiceError(Exception):
    """Raised inside the HTTP client; converted to a failed OcrResult."""


class HttpOcrClient(OcrClient):
    """POSTs document bytes to an OCR endpoint.

    The endpoint may answer with JSON ``{"text": ..., "blocks": [...]}`` or
    with Tesseract hOCR HTML.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        breaker: Optional[CircuitBreaker] = None,
        session: Optional[requests.Session] = None,
    ):
        if not endpoint:
            raise ValueError("Missing OCR endpoint. Set CREDVERIFY_OCR_ENDPOINT.")
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=5, recovery_timeout=60, expected_exception=OcrServiceError
        )
        self.session = session or requests.Session()

    def extract_text(self, document: bytes) -> OcrResult:
        logger.record_ocr_call()
        try:
            return self.breaker.call(self._post, document)
        except CircuitOpenError as e:
            logger.warning("OCR circuit open, failing fast", retry_after=round(e.retry_after))
            return OcrResult.failed(str(e), OCR_UNAVAILABLE)
        except OcrServiceError as e:
            code = OCR_TRANSIENT if is_transient_error(e) else OCR_FAILED
            logger.warning("OCR request failed", endpoint=self.endpoint, error=str(e), code=code)
            return OcrResult.failed(str(e), code)

    def _post(self, document: bytes) -> OcrResult:
        headers = {"Content-Type": "application/octet-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            resp = self.session.post(
                self.endpoint, data=document, headers=headers, timeout=self.timeout
            )
            resp.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else 0
            kind = "temporary failure" if should_retry_http_status(status) else "rejected document"
            raise OcrServiceError(f"OCR service returned {status} ({kind})") from e
        except requests.exceptions.Timeout as e:
            raise OcrServiceError("OCR request timed out") from e
        except requests.exceptions.RequestException as e:
            raise OcrServiceError(f"OCR connection error: {e}") from e

        content_type = resp.headers.get("Content-Type", "")
        if "html" in content_type or resp.text.lstrip().startswith("<"):
            blocks = parse_hocr(resp.text)
            return OcrResult.ok("\n".join(b.text for b in blocks), blocks)

        try:
            payload = resp.json()
        except ValueError as e:
            raise OcrServiceError("OCR service returned an unreadable response") from e
        return parse_json_payload(payload)


def parse_json_payload(payload: Dict[str, Any]) -> OcrResult:
    """Convert the JSON answer of the OCR service into an OcrResult."""
    if payload.get("success") is False:
        return OcrResult.failed(payload.get("error") or "OCR service reported failure")

    blocks = []
    for raw in payload.get("blocks") or []:
        text = (raw.get("text") or "").strip()
        if not text:
            continue
        blocks.append(block_from_dict(dict(raw, text=text)))

    raw_text = payload.get("text")
    if raw_text is None:
        raw_text = "\n".join(b.text for b in blocks)
    return OcrResult.ok(raw_text, blocks)
