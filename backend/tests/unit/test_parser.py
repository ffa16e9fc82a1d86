"""
Unit Tests — DocumentParser
════════════════════════════
Text-based backends are exercised with real bytes; the PDF and DOCX
backends are exercised through their heuristics (pypdf / python-docx
are patched where a real file would be needed).
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from grantsignal.processing.parser import (
    EMPTY_WARNING,
    FEW_WORDS_WARNING,
    LOW_CONFIDENCE_WARNING,
    SCANNED_WARNING,
    DocumentParser,
    ParseError,
    ParseResult,
    count_words,
    extract_amounts,
    has_structured_data,
    text_confidence,
)


@pytest.fixture
def parser() -> DocumentParser:
    return DocumentParser()


@pytest.mark.unit
class TestPlainText:

    async def test_plain_text_confidence_is_95(self, parser):
        body = ("Grant narrative sentence with several words in it. " * 20).encode()
        result = await parser.parse(body, "text/plain")

        assert result.confidence == 95
        assert result.metadata["detectedType"] == "text"
        assert result.metadata["wordCount"] == 160
        assert result.warnings == []

    async def test_markdown_is_treated_as_text(self, parser):
        result = await parser.parse(b"# Title\n\nSome words here.", "text/markdown")
        assert result.confidence == 95
        assert FEW_WORDS_WARNING in result.warnings

    async def test_empty_text_has_zero_confidence(self, parser):
        result = await parser.parse(b"   \n  ", "text/plain")
        assert result.text == ""
        assert result.confidence == 0
        assert result.warnings == [EMPTY_WARNING]

    async def test_invalid_utf8_raises_parse_error(self, parser):
        with pytest.raises(ParseError, match="Text parsing failed"):
            await parser.parse(b"\xff\xfe\xfa", "text/plain")


@pytest.mark.unit
class TestDispatch:

    async def test_unsupported_mime_raises(self, parser):
        with pytest.raises(ParseError, match="Unsupported MIME type: image/png"):
            await parser.parse(b"\x89PNG", "image/png")

    async def test_garbage_docx_raises_parse_error(self, parser):
        with pytest.raises(ParseError, match="DOCX parsing failed"):
            await parser.parse(b"not a zip", "application/vnd.openxmlformats-officedocument.wordprocessingml.document")


@pytest.mark.unit
class TestPdfHeuristics:

    def _reader(self, *page_texts):
        reader = MagicMock()
        reader.pages = [MagicMock(extract_text=MagicMock(return_value=t)) for t in page_texts]
        return reader

    async def test_scanned_pdf_gets_confidence_30(self, parser):
        with patch("pypdf.PdfReader", return_value=self._reader("Scan", "")):
            result = await parser.parse(b"%PDF-1.4", "application/pdf")

        assert result.confidence == 30
        assert result.metadata["detectedType"] == "pdf-scanned"
        assert result.metadata["pageCount"] == 2
        assert result.warnings == [SCANNED_WARNING]

    async def test_text_pdf_scores_full_confidence(self, parser):
        page = "The organization will deliver quarterly reports to the funder. " * 60
        with patch("pypdf.PdfReader", return_value=self._reader(page)):
            result = await parser.parse(b"%PDF-1.4", "application/pdf")

        assert result.confidence == 100
        assert result.metadata["detectedType"] == "pdf-text"
        assert result.warnings == []

    async def test_unreadable_pdf_raises_parse_error(self, parser):
        from pypdf.errors import PdfReadError

        with patch("pypdf.PdfReader", side_effect=PdfReadError("EOF marker not found")):
            with pytest.raises(ParseError, match="PDF parsing failed: EOF marker not found"):
                await parser.parse(b"%PDF-1.4", "application/pdf")


@pytest.mark.unit
class TestHeuristics:

    def test_count_words(self):
        assert count_words("") == 0
        assert count_words("  one two\nthree ") == 3

    def test_short_text_penalties(self):
        # < 100 chars (-50), < 50 words (-30), alnum ratio >= 0.7
        assert text_confidence("Short award text here", 4) == 20

    def test_noisy_text_penalised(self):
        noisy = "@@ ## $$ %% ^^ && ** (( )) " * 30
        assert text_confidence(noisy, count_words(noisy)) < 70

    def test_extract_amounts(self):
        text = "Award of $250,000.00 plus 5,000 dollars and another $250,000.00."
        assert extract_amounts(text) == ["$250,000.00", "5,000 dollars"]

    def test_structured_data_detection(self):
        assert has_structured_data("| Item | Cost |\n| Staff | 10 |")
        assert not has_structured_data("Plain prose only.")

    async def test_amounts_added_to_metadata(self, parser):
        result = await parser.parse(b"The grant totals $10,000 for the year.", "text/plain")
        assert result.metadata["extractedAmounts"] == ["$10,000"]
        assert result.metadata["hasStructuredData"] is False


@pytest.mark.unit
class TestParseResultSerialization:

    def test_from_dict_restores_fields(self):
        original = ParseResult("text", 81.5, {"wordCount": 1}, [LOW_CONFIDENCE_WARNING])
        restored = ParseResult.from_dict(original.to_dict())
        assert restored == original
