"""Parse Tesseract hOCR output into layout blocks."""

import re
from typing import List, Optional

from bs4 import BeautifulSoup

from pipelines.identity.evidence import Region

from .models import LayoutBlock

_BBOX = re.compile(r"bbox\s+(\d+)\s+(\d+)\s+(\d+)\s+(\d+)")
_CONF = re.compile(r"x_wconf\s+(\d+)")
_PAGE_NO = re.compile(r"ppageno\s+(\d+)")

LINE_CLASSES = ("ocr_line", "ocr_header", "ocr_caption", "ocr_textfloat")


def _bbox(title: str) -> Optional[Region]:
    m = _BBOX.search(title or "")
    if not m:
        return None
    x0, y0, x1, y1 = (int(v) for v in m.groups())
    return Region(x=x0, y=y0, width=x1 - x0, height=y1 - y0)


def parse_hocr(html: str) -> List[LayoutBlock]:
    """Return one LayoutBlock per hOCR text line, pages numbered from 1."""
    soup = BeautifulSoup(html, "html.parser")
    blocks: List[LayoutBlock] = []

    pages = soup.find_all(class_="ocr_page") or [soup]
    for index, page in enumerate(pages, start=1):
        page_no = index
        m = _PAGE_NO.search(page.get("title", "") if page is not soup else "")
        if m:
            page_no = int(m.group(1)) + 1  # ppageno is zero-based

        for line in page.find_all(class_=lambda c: c in LINE_CLASSES if c else False):
            words = line.find_all(class_="ocrx_word")
            if words:
                text = " ".join(w.get_text(strip=True) for w in words if w.get_text(strip=True))
                confs = [int(m.group(1)) for m in (_CONF.search(w.get("title", "")) for w in words) if m]
            else:
                text = line.get_text(" ", strip=True)
                confs = []
            text = " ".join(text.split())
            if not text:
                continue
            blocks.append(
                LayoutBlock(
                    text=text,
                    page=page_no,
                    region=_bbox(line.get("title", "")),
                    confidence=round(sum(confs) / len(confs) / 100, 3) if confs else None,
                )
            )
    return blocks
