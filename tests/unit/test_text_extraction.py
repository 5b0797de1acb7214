"""Unit tests for mimetype-based text extraction."""

from unittest.mock import MagicMock, patch

from services.extraction.text import TextExtractor, decode_xml_text, extract_pdf_text


def test_xml_decoded_as_utf8() -> None:
    assert decode_xml_text("<a>Fatura nº 1</a>".encode()) == "<a>Fatura nº 1</a>"


def test_supported_mimetypes() -> None:
    extractor = TextExtractor()

    assert extractor.supports("application/pdf")
    assert extractor.supports("text/xml; charset=utf-8")
    assert extractor.supports("APPLICATION/XML")
    assert not extractor.supports("image/jpeg")
    assert not extractor.supports(None)


def test_unsupported_type_returns_empty() -> None:
    assert TextExtractor().extract(b"\xff\xd8\xff", "image/jpeg") == ""


def test_invalid_utf8_xml_returns_empty() -> None:
    assert TextExtractor().extract(b"<a>\xff\xfe</a>", "application/xml") == ""


def test_invalid_pdf_returns_empty() -> None:
    assert TextExtractor().extract(b"not a pdf", "application/pdf") == ""


def test_pdf_pages_joined() -> None:
    pages = [MagicMock(), MagicMock(), MagicMock()]
    pages[0].extract_text.return_value = "Page one"
    pages[1].extract_text.return_value = ""
    pages[2].extract_text.return_value = "Page three"

    with patch("services.extraction.text.PdfReader") as reader:
        reader.return_value.pages = pages
        assert extract_pdf_text(b"%PDF") == "Page one\nPage three"


def test_custom_extractor_registered() -> None:
    extractor = TextExtractor({"text/plain": lambda content: content.decode("ascii").upper()})

    assert extractor.extract(b"total", "text/plain") == "TOTAL"
    assert extractor.supports("application/pdf")
