"""
Text Chunker — overlapping character windows for embedding
══════════════════════════════════════════════════════════

Splits extracted document text into ~2000-character chunks with a
200-character overlap using LangChain's RecursiveCharacterTextSplitter.

Separator priority: paragraph → line → sentence → word → character, so
chunks break on the coarsest boundary that still fits the size limit.

Each chunk carries a stable zero-based index; the vector id
`{documentId}-{index}` depends on it, so re-chunking identical text
always produces identical ids and a re-run overwrites instead of
duplicating vectors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from langchain_text_splitters import RecursiveCharacterTextSplitter

logger = logging.getLogger(__name__)

CHUNK_SIZE    = 2000
CHUNK_OVERLAP = 200
SEPARATORS    = ["\n\n", "\n", ". ", " ", ""]


@dataclass(frozen=True)
class Chunk:
    index:      int   # 0-based position within the document
    text:       str
    start_char: int   # offset of the chunk in the source text (-1 if unknown)


def chunk_text(
    text:          str,
    chunk_size:    int = CHUNK_SIZE,
    chunk_overlap: int = CHUNK_OVERLAP,
) -> list[Chunk]:
    """Return the ordered chunks for `text`; empty/whitespace input yields []."""
    if not text or not text.strip():
        return []

    splitter = RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        separators=SEPARATORS,
        length_function=len,
        add_start_index=True,
    )
    docs = splitter.create_documents([text])

    chunks = [
        Chunk(
            index=i,
            text=doc.page_content,
            start_char=int(doc.metadata.get("start_index", -1)),
        )
        for i, doc in enumerate(d for d in docs if d.page_content.strip())
    ]

    logger.debug("Chunked | chars=%d chunks=%d", len(text), len(chunks))
    return chunks
