"""
PDF text extraction for bill attachments.
"""

import io
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import PyPDF2
from PyPDF2.errors import PdfReadError

from billscan.config import settings
from billscan.utils.text import normalize_text

logger = logging.getLogger(__name__)


# Labels whose presence shows that a bill field has been read already
FIELD_PRESENCE_MARKERS: Dict[str, List[str]] = {
    'amount': ['total', 'amount due', 'fizetendo', 'osszesen', 'vegosszeg', 'gesamtbetrag'],
    'due_date': ['due date', 'payment due', 'hatarido', 'esedekes', 'fallig'],
    'invoice_number': ['invoice', 'szamla', 'sorszam', 'rechnung'],
    'account_number': ['account', 'customer', 'ugyfel', 'felhasznalo', 'kundennummer'],
}


@dataclass
class PdfText:
    """
    Text read from a PDF.

    items holds positioned text fragments ({text, x, y, width, height}) when
    positions were requested. Widths are estimated from the font size.
    """
    text: str
    items: List[Dict[str, Any]] = field(default_factory=list)
    pages_read: int = 0


def field_presence_ratio(text: str) -> float:
    """
    Share of bill fields whose label appears in text.

    Examples:
        >>> field_presence_ratio("Invoice 12 / Total: $5")
        0.5
    """
    normalized = normalize_text(text)
    present = sum(
        1 for markers in FIELD_PRESENCE_MARKERS.values()
        if any(marker in normalized for marker in markers)
    )
    return present / len(FIELD_PRESENCE_MARKERS)


class PdfTextService:
    """Service for extracting text from text-based PDF attachments."""

    def __init__(self, max_pages: Optional[int] = None):
        self.max_pages = max_pages or settings.PDF_MAX_PAGES

    def extract_text(
        self,
        pdf_bytes: bytes,
        *,
        stop_when: Optional[Callable[[float], bool]] = None,
        with_positions: bool = False
    ) -> PdfText:
        """
        Extract text from a PDF page by page.

        Args:
            pdf_bytes: Raw PDF bytes
            stop_when: Called after each page with the field-presence ratio of
                the text read so far; returning True stops reading
            with_positions: Also collect positioned text fragments

        Returns:
            PdfText; empty when the PDF cannot be read
        """
        try:
            reader = PyPDF2.PdfReader(io.BytesIO(pdf_bytes))
            pages = reader.pages
            page_count = len(pages)
        except (PdfReadError, ValueError, OSError) as e:
            logger.error("Could not open PDF", extra={"error": str(e)})
            return PdfText(text="")

        texts: List[str] = []
        items: List[Dict[str, Any]] = []
        pages_read = 0

        for page_number in range(min(page_count, self.max_pages)):
            page = pages[page_number]
            try:
                if with_positions:
                    page_text = page.extract_text(visitor_text=self._collect_item(items))
                else:
                    page_text = page.extract_text()
            except (PdfReadError, ValueError, KeyError) as e:
                logger.warning(
                    "Could not read PDF page",
                    extra={"page": page_number + 1, "error": str(e)}
                )
                continue

            texts.append(page_text or "")
            pages_read += 1

            if stop_when is not None and stop_when(field_presence_ratio("\n".join(texts))):
                logger.debug("Stopped reading PDF early", extra={"pages_read": pages_read})
                break

        text = "\n".join(texts).strip()
        logger.info(
            "Extracted PDF text",
            extra={"pages_read": pages_read, "page_count": page_count, "chars": len(text)}
        )
        return PdfText(text=text, items=items, pages_read=pages_read)

    @staticmethod
    def _collect_item(items: List[Dict[str, Any]]):
        def visitor(text, cm, tm, font_dict, font_size):
            if not text or not text.strip():
                return
            size = font_size or 0
            items.append({
                'text': text,
                'x': tm[4],
                'y': tm[5],
                'width': round(len(text) * size * 0.5, 2),
                'height': size,
            })
        return visitor
