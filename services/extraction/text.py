"""Best-effort text extraction from invoice documents.

Extractors are registered per mimetype. Unsupported types and extraction
failures yield an empty string; the caller stores the invoice either way.

PDF parsing uses pypdf:
https://pypdf.readthedocs.io/
"""

import io
import logging
from collections.abc import Callable

from pypdf import PdfReader

logger = logging.getLogger(__name__)

Extractor = Callable[[bytes], str]


def extract_pdf_text(content: bytes) -> str:
    """Extract text from every page of a PDF.

    Args:
        content: Raw PDF bytes

    Returns:
        Page texts joined by newlines
    """
    reader = PdfReader(io.BytesIO(content))
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n".join(text for text in pages if text).strip()


def decode_xml_text(content: bytes) -> str:
    return content.decode("utf-8")


class TextExtractor:
    """Dispatches documents to an extractor by mimetype."""

    def __init__(self, extractors: dict[str, Extractor] | None = None) -> None:
        self._extractors: dict[str, Extractor] = {
            "application/pdf": extract_pdf_text,
            "text/xml": decode_xml_text,
            "application/xml": decode_xml_text,
        }
        if extractors:
            self._extractors.update(extractors)

    def supports(self, mimetype: str | None) -> bool:
        return self._normalize(mimetype) in self._extractors

    @staticmethod
    def _normalize(mimetype: str | None) -> str:
        # "text/xml; charset=utf-8" -> "text/xml"
        return (mimetype or "").split(";")[0].strip().lower()

    def extract(self, content: bytes, mimetype: str | None) -> str:
        """Extract text, never raising.

        Args:
            content: Document bytes
            mimetype: Declared document mimetype

        Returns:
            Extracted text, or "" if unsupported or extraction failed
        """
        extractor = self._extractors.get(self._normalize(mimetype))
        if extractor is None:
            logger.info(f"No text extractor for mimetype '{mimetype}'")
            return ""
        try:
            return extractor(content)
        except Exception as e:
            logger.warning(f"Text extraction failed for '{mimetype}': {e}")
            return ""
