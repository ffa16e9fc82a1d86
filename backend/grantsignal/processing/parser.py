"""
Document Parser — bytes + MIME type → text, confidence, metadata, warnings
══════════════════════════════════════════════════════════════════════════

Backends
────────
  application/pdf                         pypdf (native text layer only)
  application/vnd...wordprocessingml...   python-docx
  application/msword                      python-docx (fails cleanly on
                                          legacy binary .doc files)
  text/plain, text/markdown               UTF-8 decode

Confidence (0–100)
──────────────────
  The confidence score is the only signal used downstream to route a
  document to NEEDS_REVIEW, so the heuristics are deliberately simple
  and deterministic:

    PDF with < 100 extracted chars   → 30, flagged as probably scanned
    PDF / DOCX otherwise             → 100 minus penalties:
        len(text)   < 100   -50      or  < 500   -20
        word count  < 50    -30      or  < 200   -10
        alnum ratio < 0.5   -40      or  < 0.7   -20
    Plain text                       → 95 (0 when empty)

Parsing is CPU-bound; the synchronous backends run in the default
thread-pool executor so the worker's event loop stays responsive.
"""

from __future__ import annotations

import asyncio
import io
import logging
import re
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

PDF_MIME  = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC_MIME  = "application/msword"
TEXT_MIMES = ("text/plain", "text/markdown")

SUPPORTED_MIME_TYPES = (PDF_MIME, DOCX_MIME, DOC_MIME, *TEXT_MIMES)

# Below this many characters a PDF almost certainly has no text layer
SCANNED_PDF_MIN_CHARS  = 100
SCANNED_PDF_CONFIDENCE = 30
PLAIN_TEXT_CONFIDENCE  = 95
REVIEW_THRESHOLD       = 70

SCANNED_WARNING = "Very little text extracted. This may be a scanned PDF that requires OCR."
LOW_CONFIDENCE_WARNING = "Text extraction confidence is below threshold. Manual review recommended."
MINIMAL_CONTENT_WARNING = "Document appears to have minimal content. Manual review recommended."
EMPTY_WARNING = "Document is empty."
FEW_WORDS_WARNING = "Document has very few words. Manual review recommended."

_ALNUM_RE = re.compile(r"[A-Za-z0-9]")
_AMOUNT_RES = (
    re.compile(r"\$[\d,]+(?:\.\d{2})?"),
    re.compile(r"\b\d+(?:,\d{3})*(?:\.\d{2})?\s*(?:dollars?|USD)\b", re.IGNORECASE),
)
_STRUCTURE_RES = (
    re.compile(r"\|\s*[^\n]+\s*\|"),            # pipe tables
    re.compile(r"^\s*[\d\-*+]\.\s+", re.MULTILINE),
    re.compile(r"\t{2,}"),
    re.compile(r"^[-=]{3,}$", re.MULTILINE),
)


class ParseError(Exception):
    """Unsupported MIME type or a backend failed to read the file."""


@dataclass
class ParseResult:
    """
    text       : extracted plain text, stripped
    confidence : 0–100 (float; rounded when persisted)
    metadata   : wordCount, detectedType, pageCount (PDF), hasStructuredData,
                 extractedAmounts (when any)
    warnings   : non-fatal, human-readable
    """
    text:       str
    confidence: float
    metadata:   dict[str, Any] = field(default_factory=dict)
    warnings:   list[str]      = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "confidence": self.confidence,
            "metadata": self.metadata,
            "warnings": self.warnings,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ParseResult":
        return cls(
            text=data["text"],
            confidence=data["confidence"],
            metadata=dict(data.get("metadata") or {}),
            warnings=list(data.get("warnings") or []),
        )


# ---------------------------------------------------------------------------
# Heuristics
# ---------------------------------------------------------------------------

def count_words(text: str) -> int:
    return len(text.split()) if text.strip() else 0


def text_confidence(text: str, word_count: int) -> int:
    confidence = 100

    if len(text) < 100:
        confidence -= 50
    elif len(text) < 500:
        confidence -= 20

    if word_count < 50:
        confidence -= 30
    elif word_count < 200:
        confidence -= 10

    # gibberish / OCR noise check
    ratio = len(_ALNUM_RE.findall(text)) / len(text) if text else 0.0
    if ratio < 0.5:
        confidence -= 40
    elif ratio < 0.7:
        confidence -= 20

    return max(0, min(100, confidence))


def extract_amounts(text: str) -> list[str]:
    seen: dict[str, None] = {}
    for pattern in _AMOUNT_RES:
        for match in pattern.finditer(text):
            seen.setdefault(match.group(0), None)
    return list(seen)


def has_structured_data(text: str) -> bool:
    return any(p.search(text) for p in _STRUCTURE_RES)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class DocumentParser:
    """
    Stateless; safe to share across jobs.

    Usage:
        parser = DocumentParser()
        result = await parser.parse(raw_bytes, "application/pdf")
    """

    async def parse(self, data: bytes, mime_type: str) -> ParseResult:
        if mime_type == PDF_MIME:
            sync_fn = self._parse_pdf
        elif mime_type in (DOCX_MIME, DOC_MIME):
            sync_fn = self._parse_docx
        elif mime_type in TEXT_MIMES:
            sync_fn = self._parse_text
        else:
            raise ParseError(f"Unsupported MIME type: {mime_type}")

        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, sync_fn, data)
        self._enrich(result)

        logger.info(
            "Parsed | mime=%s words=%d confidence=%.0f warnings=%d",
            mime_type, result.metadata.get("wordCount", 0),
            result.confidence, len(result.warnings),
        )
        return result

    # ------------------------------------------------------------------
    # Backends (run in executor)
    # ------------------------------------------------------------------

    def _parse_pdf(self, data: bytes) -> ParseResult:
        from pypdf import PdfReader
        from pypdf.errors import PyPdfError

        try:
            reader = PdfReader(io.BytesIO(data))
            pages = [page.extract_text() or "" for page in reader.pages]
        except (PyPdfError, ValueError, OSError) as exc:
            raise ParseError(f"PDF parsing failed: {exc}") from exc

        text = "\n\n".join(pages).strip()
        word_count = count_words(text)
        metadata = {"pageCount": len(pages), "wordCount": word_count}

        if len(text) < SCANNED_PDF_MIN_CHARS:
            return ParseResult(
                text=text,
                confidence=SCANNED_PDF_CONFIDENCE,
                metadata={**metadata, "detectedType": "pdf-scanned"},
                warnings=[SCANNED_WARNING],
            )

        confidence = text_confidence(text, word_count)
        warnings = [LOW_CONFIDENCE_WARNING] if confidence < REVIEW_THRESHOLD else []
        return ParseResult(
            text=text,
            confidence=confidence,
            metadata={**metadata, "detectedType": "pdf-text"},
            warnings=warnings,
        )

    def _parse_docx(self, data: bytes) -> ParseResult:
        import docx
        from docx.opc.exceptions import PackageNotFoundError
        from zipfile import BadZipFile

        try:
            document = docx.Document(io.BytesIO(data))
        except (PackageNotFoundError, BadZipFile, KeyError, ValueError) as exc:
            raise ParseError(f"DOCX parsing failed: {exc}") from exc

        blocks = [p.text for p in document.paragraphs]
        for table in document.tables:
            for row in table.rows:
                blocks.append("\t".join(cell.text for cell in row.cells))

        text = "\n".join(blocks).strip()
        word_count = count_words(text)
        confidence = text_confidence(text, word_count)
        warnings = [MINIMAL_CONTENT_WARNING] if confidence < REVIEW_THRESHOLD else []

        return ParseResult(
            text=text,
            confidence=confidence,
            metadata={"wordCount": word_count, "detectedType": "docx"},
            warnings=warnings,
        )

    def _parse_text(self, data: bytes) -> ParseResult:
        try:
            text = data.decode("utf-8").strip()
        except UnicodeDecodeError as exc:
            raise ParseError(f"Text parsing failed: {exc}") from exc

        word_count = count_words(text)
        warnings: list[str] = []
        if not text:
            warnings.append(EMPTY_WARNING)
        elif word_count < 50:
            warnings.append(FEW_WORDS_WARNING)

        return ParseResult(
            text=text,
            confidence=PLAIN_TEXT_CONFIDENCE if text else 0,
            metadata={"wordCount": word_count, "detectedType": "text"},
            warnings=warnings,
        )

    @staticmethod
    def _enrich(result: ParseResult) -> None:
        result.metadata["hasStructuredData"] = has_structured_data(result.text)
        amounts = extract_amounts(result.text)
        if amounts:
            result.metadata["extractedAmounts"] = amounts
